"""
Embedding gateway.

Wraps the external embedding capability behind a single async call,
`embed(text) -> vector`. The same gateway embeds document chunks during
ingest and user questions at query time, so both sides of the similarity
comparison always come from the same model and dimension.

The gateway never retries; retry policy belongs to the caller.
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import List

import httpx
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.rag.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

# Must match the dimension in DocumentChunk.embedding
EMBEDDING_DIMENSION = 768

# Upper bound on question length accepted for embedding
MAX_QUERY_LENGTH = 2000


class EmbeddingError(UpstreamError):
    """Raised when embedding generation fails."""
    code = 'EMBEDDING_FAILED'


def normalize_query(query: str) -> str:
    """
    Normalize a user query for embedding.

    - Strip leading/trailing whitespace
    - Collapse multiple whitespace to single space
    - Raise if empty or too long

    Args:
        query: Raw user question

    Returns:
        Normalized query string

    Raises:
        ValidationError: If query is empty after normalization or too long
    """
    if not isinstance(query, str) or not query:
        raise ValidationError("question is required", code='MISSING_QUESTION')

    normalized = re.sub(r'\s+', ' ', query.strip())

    if not normalized:
        raise ValidationError("question is required", code='MISSING_QUESTION')

    max_length = getattr(settings, 'MAX_QUESTION_LENGTH', MAX_QUERY_LENGTH)
    if len(normalized) > max_length:
        raise ValidationError(
            f"question too long (max {max_length} characters)",
            code='QUESTION_TOO_LONG',
        )

    return normalized


def check_dimension(vector: List[float], expected: int) -> None:
    """
    Fail hard when a vector does not have the process-wide dimension.

    A mismatch means the embedding model and the index disagree, which no
    single request can recover from.
    """
    if len(vector) != expected:
        raise ImproperlyConfigured(
            f"Embedding dimension mismatch: expected {expected}, got {len(vector)}. "
            f"Check EMBEDDING_DIMENSION against the configured embedding model."
        )


def to_float_vector(values: list) -> List[float]:
    """Coerce a decoded embedding into floats, rejecting non-numeric entries."""
    try:
        return [float(x) for x in values]
    except (TypeError, ValueError) as e:
        logger.error(f"Embedding contains non-numeric values: {e}")
        raise EmbeddingError("Invalid response from embedding service")


class EmbeddingGateway(ABC):
    """Abstract embedding capability."""

    def __init__(self, dimension: int):
        self.dimension = dimension

    @abstractmethod
    async def _request_embedding(self, text: str) -> List[float]:
        """Perform the outbound call and return the raw vector."""

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding vector for a single text.

        Args:
            text: The text to embed

        Returns:
            Embedding vector with exactly `self.dimension` floats

        Raises:
            ValidationError: If text is empty
            EmbeddingError: On transport failure, timeout or malformed response
            ImproperlyConfigured: If the vector has the wrong dimension
        """
        if not text:
            raise ValidationError("Cannot generate embedding for empty text", code='EMPTY_TEXT')

        embedding = await self._request_embedding(text)
        check_dimension(embedding, self.dimension)
        return embedding


class OllamaEmbeddingGateway(EmbeddingGateway):
    """Embeddings from Ollama's /api/embeddings endpoint."""

    def __init__(self, base_url: str, model: str, timeout: float, dimension: int):
        super().__init__(dimension)
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout

    async def _request_embedding(self, text: str) -> List[float]:
        try:
            async with httpx.AsyncClient(timeout=float(self.timeout)) as client:
                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json={
                        "model": self.model,
                        "prompt": text,
                    }
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama embedding request failed: {e}")
            raise EmbeddingError(f"Embedding service error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("Ollama embedding request timed out")
            raise EmbeddingError("Embedding service timed out")
        except httpx.RequestError as e:
            logger.error(f"Ollama connection error: {e}")
            raise EmbeddingError("Could not connect to embedding service")
        except ValueError as e:
            logger.error(f"Ollama returned non-JSON body: {e}")
            raise EmbeddingError("Invalid response from embedding service")

        # Ollama /api/embeddings returns {"embedding": [...]}
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not embedding or not isinstance(embedding, list):
            raise EmbeddingError("Ollama returned empty embedding")

        logger.debug(f"Generated embedding with {len(embedding)} dimensions")
        return to_float_vector(embedding)


class OpenAIEmbeddingGateway(EmbeddingGateway):
    """Embeddings from an OpenAI-compatible /embeddings endpoint."""

    def __init__(self, api_key: str, base_url: str, model: str, timeout: float, dimension: int):
        super().__init__(dimension)
        if not api_key:
            raise ImproperlyConfigured("OPENAI_API_KEY not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout

    async def _request_embedding(self, text: str) -> List[float]:
        try:
            async with httpx.AsyncClient(timeout=float(self.timeout)) as client:
                response = await client.post(
                    f"{self.base_url}/embeddings",
                    json={
                        "model": self.model,
                        "input": text,
                        "dimensions": self.dimension,
                    },
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"OpenAI embedding request failed: {e}")
            raise EmbeddingError(f"Embedding service error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("OpenAI embedding request timed out")
            raise EmbeddingError("Embedding service timed out")
        except httpx.RequestError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise EmbeddingError("Could not connect to embedding service")
        except ValueError as e:
            logger.error(f"OpenAI returned non-JSON body: {e}")
            raise EmbeddingError("Invalid response from embedding service")

        try:
            embedding = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"Unexpected OpenAI response format: {e}")
            raise EmbeddingError("Invalid response from embedding service")

        if not embedding or not isinstance(embedding, list):
            raise EmbeddingError("OpenAI returned empty embedding")

        return to_float_vector(embedding)


def build_embedding_gateway() -> EmbeddingGateway:
    """
    Build the embedding gateway from settings.

    Uses EMBEDDING_PROVIDER to pick the backend:
    - "ollama" (default): Local Ollama embeddings
    - "openai": OpenAI or compatible API
    """
    provider = getattr(settings, 'EMBEDDING_PROVIDER', 'ollama').lower()
    dimension = getattr(settings, 'EMBEDDING_DIMENSION', EMBEDDING_DIMENSION)

    if provider == 'openai':
        logger.info("Using OpenAI-compatible API for embeddings")
        return OpenAIEmbeddingGateway(
            api_key=getattr(settings, 'OPENAI_API_KEY', ''),
            base_url=getattr(settings, 'OPENAI_BASE_URL', 'https://api.openai.com/v1'),
            model=getattr(settings, 'OPENAI_EMBED_MODEL', 'text-embedding-3-small'),
            timeout=getattr(settings, 'OPENAI_TIMEOUT', 120),
            dimension=dimension,
        )

    logger.info("Using Ollama for embeddings")
    return OllamaEmbeddingGateway(
        base_url=getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434'),
        model=getattr(settings, 'OLLAMA_EMBED_MODEL', 'nomic-embed-text'),
        timeout=getattr(settings, 'OLLAMA_EMBED_TIMEOUT', 120),
        dimension=dimension,
    )
