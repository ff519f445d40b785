"""
Tests for ingest retry with backoff.
"""
from unittest.mock import AsyncMock, patch

import pytest

from apps.indexing.retry import (
    RetryExhausted,
    calculate_backoff,
    is_retriable_error,
    retry_with_backoff,
)
from apps.rag.embeddings import EmbeddingError

FAST = {
    'max_retries': 2,
    'initial_backoff': 0.0,
    'backoff_multiplier': 2.0,
    'max_backoff': 0.0,
    'jitter_percent': 0.0,
}


# ============================================================================
# Backoff Calculation
# ============================================================================

class TestCalculateBackoff:

    def test_exponential_growth(self):
        assert calculate_backoff(0, 1.0, 2.0, 100.0, 0.0) == 1.0
        assert calculate_backoff(1, 1.0, 2.0, 100.0, 0.0) == 2.0
        assert calculate_backoff(3, 1.0, 2.0, 100.0, 0.0) == 8.0

    def test_capped(self):
        assert calculate_backoff(10, 1.0, 2.0, 10.0, 0.0) == 10.0

    def test_jitter_stays_in_range(self):
        for _ in range(50):
            assert 0.75 <= calculate_backoff(0, 1.0, 2.0, 10.0, 0.25) <= 1.25


# ============================================================================
# Error Classification
# ============================================================================

class TestIsRetriableError:

    @pytest.mark.parametrize("message", [
        "Embedding service timed out",
        "Could not connect to embedding service",
        "Embedding service error: 503",
        "Ollama returned empty embedding",
    ])
    def test_retriable(self, message):
        assert is_retriable_error(EmbeddingError(message))

    @pytest.mark.parametrize("message", [
        "Embedding service error: 400",
        "Embedding service error: 404",
        "Invalid response from embedding service",
    ])
    def test_not_retriable(self, message):
        assert not is_retriable_error(EmbeddingError(message))


# ============================================================================
# Retry Loop
# ============================================================================

class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        calls = []

        async def func():
            calls.append(1)
            return "ok"

        assert await retry_with_backoff(func, FAST) == "ok"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        attempts = []

        async def func():
            attempts.append(1)
            if len(attempts) < 3:
                raise EmbeddingError("Embedding service timed out")
            return [1.0]

        retries = []
        result = await retry_with_backoff(
            func, FAST, (EmbeddingError,), on_retry=lambda a, e, b: retries.append(a)
        )

        assert result == [1.0]
        assert retries == [0, 1]

    @pytest.mark.asyncio
    async def test_exhausted(self):
        async def func():
            raise EmbeddingError("Could not connect to embedding service")

        with pytest.raises(RetryExhausted) as exc:
            await retry_with_backoff(func, FAST, (EmbeddingError,))

        assert exc.value.attempts == 3
        assert isinstance(exc.value.last_exception, EmbeddingError)

    @pytest.mark.asyncio
    async def test_non_retriable_raised_immediately(self):
        attempts = []

        async def func():
            attempts.append(1)
            raise EmbeddingError("Embedding service error: 400")

        with pytest.raises(EmbeddingError):
            await retry_with_backoff(func, FAST, (EmbeddingError,))

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self):
        config = dict(FAST, initial_backoff=1.0, max_backoff=10.0)

        async def func():
            raise EmbeddingError("Embedding service timed out")

        with patch('apps.indexing.retry.asyncio.sleep', new_callable=AsyncMock) as sleep:
            with pytest.raises(RetryExhausted):
                await retry_with_backoff(func, config, (EmbeddingError,))

        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]
