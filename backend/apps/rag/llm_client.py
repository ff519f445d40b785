"""
LLM Client Abstraction Layer.

Provides a unified async interface for text generation that can switch
between:
- Ollama (local inference)
- OpenAI-compatible APIs (OpenAI, Groq, Together, local servers, ...)

Each client supports two modes:
- chat(): buffered, returns the whole answer
- stream(): async generator of text fragments, consumed once

Closing a stream() generator early (aclose) exits the underlying HTTP
stream, so the model host stops generating for a disconnected caller.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

import httpx
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.rag.errors import UpstreamError

logger = logging.getLogger(__name__)

# Default chat parameters
DEFAULT_TEMPERATURE = 0.2  # Low for factuality
DEFAULT_MAX_TOKENS = 500


@dataclass
class LLMMessage:
    """A message in a chat conversation."""
    role: str  # "system", "user", or "assistant"
    content: str


@dataclass
class LLMResponse:
    """Response from an LLM call."""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None  # token usage if available


class LLMError(UpstreamError):
    """Raised when an LLM call fails."""
    code = 'LLM_UNAVAILABLE'


def to_wire_messages(messages: List[LLMMessage]) -> List[Dict[str, str]]:
    return [{"role": msg.role, "content": msg.content} for msg in messages]


def expect_object(value, source: str) -> dict:
    """Return a decoded JSON object, or raise LLMError for any other shape."""
    if not isinstance(value, dict):
        logger.error(f"Unexpected {source} response shape: {type(value).__name__}")
        raise LLMError(f"Invalid response from {source}")
    return value


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    def __init__(
        self,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self.temperature = temperature
        self.max_tokens = max_tokens

    @abstractmethod
    async def chat(self, messages: List[LLMMessage]) -> LLMResponse:
        """
        Send a chat completion request and wait for the full answer.

        Args:
            messages: List of messages in the conversation

        Returns:
            LLMResponse with the model's response

        Raises:
            LLMError: If the request fails or times out
        """

    @abstractmethod
    def stream(self, messages: List[LLMMessage]) -> AsyncIterator[str]:
        """
        Stream the answer as text fragments.

        Returns an async generator; fragments arrive in generation order
        and the generator ends when the model signals completion.

        Raises:
            LLMError: If the request fails, before or during streaming
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name being used."""


class OllamaClient(BaseLLMClient):
    """LLM client for Ollama local inference."""

    def __init__(self, base_url: str, model: str, timeout: float, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout

    @property
    def model_name(self) -> str:
        return self.model

    def _payload(self, messages: List[LLMMessage], stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": to_wire_messages(messages),
            "stream": stream,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            }
        }

    async def chat(self, messages: List[LLMMessage]) -> LLMResponse:
        """Send chat request to Ollama."""
        logger.info(f"Calling Ollama chat: model={self.model}, temp={self.temperature}")

        try:
            async with httpx.AsyncClient(timeout=float(self.timeout)) as client:
                response = await client.post(
                    f"{self.base_url}/api/chat",
                    json=self._payload(messages, stream=False),
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {e}")
            raise LLMError(f"Ollama service error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("Ollama request timed out")
            raise LLMError("Ollama service timed out")
        except httpx.RequestError as e:
            logger.error(f"Ollama connection error: {e}")
            raise LLMError("Could not connect to Ollama")
        except ValueError as e:
            logger.error(f"Unexpected Ollama response format: {e}")
            raise LLMError("Invalid response from Ollama")

        data = expect_object(data, "Ollama")
        content = expect_object(data.get("message") or {}, "Ollama").get("content", "")
        if not content:
            raise LLMError("Empty response from Ollama")

        logger.info(f"Ollama response: {len(content)} chars")
        return LLMResponse(content=content, model=self.model)

    async def stream(self, messages: List[LLMMessage]) -> AsyncIterator[str]:
        """Stream chat fragments from Ollama (NDJSON, one object per line)."""
        logger.info(f"Streaming Ollama chat: model={self.model}")

        try:
            async with httpx.AsyncClient(timeout=float(self.timeout)) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/chat",
                    json=self._payload(messages, stream=True),
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        data = expect_object(json.loads(line), "Ollama")
                        if data.get("error"):
                            raise LLMError(f"Ollama stream error: {data['error']}")
                        content = expect_object(data.get("message") or {}, "Ollama").get("content", "")
                        if not isinstance(content, str):
                            raise LLMError("Invalid response from Ollama")
                        if content:
                            yield content
                        if data.get("done"):
                            break

        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {e}")
            raise LLMError(f"Ollama service error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("Ollama stream timed out")
            raise LLMError("Ollama service timed out")
        except httpx.RequestError as e:
            logger.error(f"Ollama connection error: {e}")
            raise LLMError("Could not connect to Ollama")
        except ValueError as e:
            logger.error(f"Unexpected Ollama stream format: {e}")
            raise LLMError("Invalid response from Ollama")


class OpenAICompatibleClient(BaseLLMClient):
    """
    LLM client for OpenAI-compatible APIs.

    Works with: OpenAI, Azure OpenAI, Groq, Together, local servers, etc.
    """

    def __init__(self, api_key: str, base_url: str, model: str, timeout: float, **kwargs):
        super().__init__(**kwargs)
        if not api_key:
            raise ImproperlyConfigured("OPENAI_API_KEY not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout

    @property
    def model_name(self) -> str:
        return self.model

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, messages: List[LLMMessage], stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": to_wire_messages(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": stream,
        }

    async def chat(self, messages: List[LLMMessage]) -> LLMResponse:
        """Send chat request to OpenAI-compatible API."""
        logger.info(f"Calling OpenAI API: model={self.model}, temp={self.temperature}")

        try:
            async with httpx.AsyncClient(timeout=float(self.timeout)) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=self._payload(messages, stream=False),
                    headers=self._headers(),
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"OpenAI HTTP error: {e}")
            raise LLMError(f"OpenAI API error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("OpenAI request timed out")
            raise LLMError("OpenAI API timed out")
        except httpx.RequestError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise LLMError("Could not connect to OpenAI API")
        except ValueError as e:
            logger.error(f"Unexpected OpenAI response format: {e}")
            raise LLMError("Invalid response from OpenAI API")

        data = expect_object(data, "OpenAI API")
        choices = data.get("choices") or []
        if not isinstance(choices, list) or not choices:
            raise LLMError("No choices in OpenAI response")

        choice = expect_object(choices[0], "OpenAI API")
        content = expect_object(choice.get("message") or {}, "OpenAI API").get("content", "")
        if isinstance(content, list):
            # Content parts format
            content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
        if not content:
            raise LLMError("Empty response from OpenAI")

        logger.info(f"OpenAI response: {len(content)} chars")
        return LLMResponse(content=content, model=self.model, usage=data.get("usage"))

    async def stream(self, messages: List[LLMMessage]) -> AsyncIterator[str]:
        """Stream chat fragments from an OpenAI-compatible API (SSE)."""
        logger.info(f"Streaming OpenAI chat: model={self.model}")

        try:
            async with httpx.AsyncClient(timeout=float(self.timeout)) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=self._payload(messages, stream=True),
                    headers=self._headers(),
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        payload = line[len("data:"):].strip()
                        if payload == "[DONE]":
                            break
                        data = expect_object(json.loads(payload), "OpenAI API")
                        choices = data.get("choices") or []
                        if not isinstance(choices, list):
                            raise LLMError("Invalid response from OpenAI API")
                        if not choices:
                            continue
                        choice = expect_object(choices[0], "OpenAI API")
                        content = expect_object(choice.get("delta") or {}, "OpenAI API").get("content") or ""
                        if not isinstance(content, str):
                            raise LLMError("Invalid response from OpenAI API")
                        if content:
                            yield content

        except httpx.HTTPStatusError as e:
            logger.error(f"OpenAI HTTP error: {e}")
            raise LLMError(f"OpenAI API error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("OpenAI stream timed out")
            raise LLMError("OpenAI API timed out")
        except httpx.RequestError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise LLMError("Could not connect to OpenAI API")
        except ValueError as e:
            logger.error(f"Unexpected OpenAI stream format: {e}")
            raise LLMError("Invalid response from OpenAI API")


# =============================================================================
# Client Factory
# =============================================================================

def build_llm_client() -> BaseLLMClient:
    """
    Build the configured LLM client.

    Uses LLM_PROVIDER setting to determine which client to use:
    - "ollama" (default): Local Ollama inference
    - "openai": OpenAI or compatible API
    """
    provider = getattr(settings, 'LLM_PROVIDER', 'ollama').lower()
    generation = {
        'temperature': getattr(settings, 'LLM_TEMPERATURE', DEFAULT_TEMPERATURE),
        'max_tokens': getattr(settings, 'LLM_MAX_TOKENS', DEFAULT_MAX_TOKENS),
    }

    if provider == 'openai':
        logger.info("Using OpenAI-compatible API for LLM inference")
        return OpenAICompatibleClient(
            api_key=getattr(settings, 'OPENAI_API_KEY', ''),
            base_url=getattr(settings, 'OPENAI_BASE_URL', 'https://api.openai.com/v1'),
            model=getattr(settings, 'OPENAI_MODEL', 'gpt-4.1-mini'),
            timeout=getattr(settings, 'OPENAI_TIMEOUT', 120),
            **generation,
        )

    logger.info("Using Ollama for LLM inference")
    return OllamaClient(
        base_url=getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434'),
        model=getattr(settings, 'OLLAMA_CHAT_MODEL', 'llama3.2'),
        timeout=getattr(settings, 'OLLAMA_CHAT_TIMEOUT', 600),
        **generation,
    )
