"""
Shared fixtures and test doubles.

The doubles stand in for the external capabilities (embedding model,
generation model, message store) so the RAG core can be exercised
without network access or PostgreSQL.
"""
import time
from datetime import timedelta
from unittest.mock import patch
from typing import AsyncIterator, List, Optional

import httpx
import jwt
import pytest
from django.utils import timezone

from apps.chats.store import ConversationTurn, DjangoMessageStore, MessageStore, chat_not_found
from apps.docs.storage import reset_spool
from apps.rag.embeddings import EmbeddingGateway
from apps.rag.llm_client import BaseLLMClient, LLMError, LLMMessage, LLMResponse
from apps.rag.retrieval import InMemoryVectorIndex
from apps.rag.services import RAGServices, set_services

TEST_JWT_SECRET = 'test-secret'
TEST_DIMENSION = 8


# ============================================================================
# Test Doubles
# ============================================================================

def letter_vector(text: str, dimension: int = TEST_DIMENSION) -> List[float]:
    """Deterministic bag-of-characters vector; never all zeros."""
    vector = [0.0] * dimension
    for ch in text.lower():
        vector[ord(ch) % dimension] += 1.0
    vector[0] += 0.5
    return vector


class FakeEmbeddingGateway(EmbeddingGateway):
    """Embeds locally; records every text it was asked to embed."""

    def __init__(self, dimension: int = TEST_DIMENSION, failures: Optional[List[Exception]] = None):
        super().__init__(dimension)
        self.calls: List[str] = []
        self.failures = list(failures or [])

    async def _request_embedding(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.failures:
            raise self.failures.pop(0)
        return letter_vector(text, self.dimension)


class FakeLLMClient(BaseLLMClient):
    """
    Generation double.

    chat() returns a fixed answer; stream() yields `fragments` and counts
    how many were pulled from the upstream so tests can tell whether a
    closed stream kept generating.
    """

    def __init__(
        self,
        answer: str = "Generated answer",
        fragments: Optional[List[str]] = None,
        fail_chat: bool = False,
        fail_stream_at: Optional[int] = None,
    ):
        super().__init__()
        self.answer = answer
        self.fragments = fragments if fragments is not None else ["Hello", ", ", "world"]
        self.fail_chat = fail_chat
        self.fail_stream_at = fail_stream_at
        self.chat_calls: List[List[LLMMessage]] = []
        self.stream_calls: List[List[LLMMessage]] = []
        self.pulled = 0
        self.closed = False

    @property
    def model_name(self) -> str:
        return "fake-model"

    async def chat(self, messages: List[LLMMessage]) -> LLMResponse:
        self.chat_calls.append(messages)
        if self.fail_chat:
            raise LLMError("Could not connect to Ollama")
        return LLMResponse(content=self.answer, model=self.model_name)

    async def stream(self, messages: List[LLMMessage]) -> AsyncIterator[str]:
        self.stream_calls.append(messages)
        try:
            for i, fragment in enumerate(self.fragments):
                if self.fail_stream_at == i:
                    raise LLMError("Ollama service timed out")
                self.pulled += 1
                yield fragment
            if self.fail_stream_at == len(self.fragments):
                raise LLMError("Ollama service timed out")
        finally:
            self.closed = True


class InMemoryMessageStore(MessageStore):
    """Message store kept in a dict; timestamps strictly increase."""

    def __init__(self):
        self.chats = {}
        self.turns: List[ConversationTurn] = []
        self.touched: List[str] = []
        self._clock = timezone.now()

    def add_chat(self, chat_id: str, owner_id: str) -> None:
        self.chats[chat_id] = owner_id

    async def ensure_chat(self, chat_id: str, owner_id: str) -> None:
        if self.chats.get(chat_id) != owner_id:
            raise chat_not_found()

    async def append_turn(self, chat_id: str, owner_id: str, role: str, text: str) -> ConversationTurn:
        self._clock += timedelta(milliseconds=1)
        turn = ConversationTurn(chat_id, owner_id, role, text, self._clock)
        self.turns.append(turn)
        return turn

    async def load_history(self, chat_id: str, owner_id: str) -> List[ConversationTurn]:
        return sorted(
            (t for t in self.turns if t.chat_id == chat_id and t.owner_id == owner_id),
            key=lambda t: t.created_at,
        )

    async def touch_chat(self, chat_id: str) -> None:
        self.touched.append(chat_id)


# ============================================================================
# Tokens
# ============================================================================

def make_token(sub: str = 'user-1', secret: str = TEST_JWT_SECRET, expires_in: int = 3600, **extra) -> str:
    claims = {'sub': sub, 'exp': int(time.time()) + expires_in, **extra}
    return jwt.encode(claims, secret, algorithm='HS256')


def auth_headers(sub: str = 'user-1') -> dict:
    """Extra kwargs for the Django test client."""
    return {'HTTP_AUTHORIZATION': f'Bearer {make_token(sub)}'}


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def test_settings(settings, tmp_path):
    """Settings shared by every test: no Redis, small vectors, fast retries."""
    settings.JWT_SECRET = TEST_JWT_SECRET
    settings.RATELIMIT_ENABLED = False
    settings.UPLOAD_ROOT = tmp_path / 'uploads'
    settings.EMBEDDING_DIMENSION = TEST_DIMENSION
    settings.CHUNK_SIZE = 500
    settings.CHUNK_OVERLAP = 50
    settings.RETRIEVAL_TOP_K = 3
    settings.INGEST_EMBED_RETRY = {
        'max_retries': 2,
        'initial_backoff': 0.0,
        'backoff_multiplier': 2.0,
        'max_backoff': 0.0,
        'jitter_percent': 0.0,
    }
    reset_spool()
    yield settings
    reset_spool()


@pytest.fixture
def gateway():
    return FakeEmbeddingGateway()


@pytest.fixture
def llm():
    return FakeLLMClient()


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


@pytest.fixture
def services(test_settings, gateway, vector_index, llm):
    """Process services wired to the doubles and the Django message store."""
    built = RAGServices.build(
        gateway=gateway,
        index=vector_index,
        llm=llm,
        store=DjangoMessageStore(),
    )
    set_services(built)
    yield built
    set_services(None)


_RealAsyncClient = httpx.AsyncClient


def mock_http(handler):
    """
    Patch httpx.AsyncClient so every client routes through `handler`.

    Usage:
        with mock_http(lambda request: httpx.Response(200, json={...})):
            ...
    """
    def factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)
    return patch('httpx.AsyncClient', side_effect=factory)
