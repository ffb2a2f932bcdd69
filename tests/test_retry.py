"""Tests for retry logic with exponential backoff."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from exam_rag.services.embedding_client import EmbeddingServiceError
from exam_rag.utils.retry import (
    NON_RETRYABLE_STATUS_CODES,
    RETRYABLE_STATUS_CODES,
    _extract_status_code,
    _should_retry_exception,
    retry_with_backoff,
)


# Status code extraction


def test_extract_status_code_from_embedding_error():
    assert _extract_status_code(EmbeddingServiceError("down", status_code=503)) == 503


def test_extract_status_code_from_http_status_error():
    request = httpx.Request("POST", "http://embedder/api/embeddings")
    response = httpx.Response(429, request=request)
    error = httpx.HTTPStatusError("rate limited", request=request, response=response)

    assert _extract_status_code(error) == 429


def test_extract_status_code_from_code_attribute():
    exception = Exception("Error")
    exception.code = 502  # type: ignore
    assert _extract_status_code(exception) == 502


def test_extract_status_code_none():
    assert _extract_status_code(EmbeddingServiceError("malformed body")) is None


# Retry decisions


def test_non_retryable_status_codes():
    for status_code in NON_RETRYABLE_STATUS_CODES:
        error = EmbeddingServiceError(f"Error {status_code}", status_code=status_code)
        assert _should_retry_exception(error, (Exception,)) is False


def test_retryable_status_codes():
    for status_code in RETRYABLE_STATUS_CODES:
        error = EmbeddingServiceError(f"Error {status_code}", status_code=status_code)
        assert _should_retry_exception(error, (httpx.TransportError,)) is True


def test_connection_errors_are_retryable():
    error = EmbeddingServiceError("Embedding service connection error: refused")
    assert _should_retry_exception(error, (httpx.TransportError,)) is True


def test_malformed_response_not_retryable():
    error = EmbeddingServiceError("Unexpected embedding response: {}")
    assert _should_retry_exception(error, (httpx.TransportError,)) is False


def test_transport_error_type_is_retryable():
    assert _should_retry_exception(httpx.ReadError("boom"), (httpx.TransportError,)) is True


# Sync decorator


def test_retry_eventually_succeeds():
    call_count = 0

    @retry_with_backoff(max_retries=3, base_delay=0.01, max_jitter=0.0)
    def flaky():
        nonlocal call_count
        call_count += 1
        if call_count < 3:
            raise EmbeddingServiceError("Server error", status_code=500)
        return "ok"

    with patch("exam_rag.utils.retry.time.sleep"):
        assert flaky() == "ok"
    assert call_count == 3


def test_retry_exponential_backoff():
    @retry_with_backoff(max_retries=3, base_delay=1.0, max_jitter=0.0)
    def always_fails():
        raise EmbeddingServiceError("Server error", status_code=503)

    with patch("exam_rag.utils.retry.time.sleep") as mock_sleep:
        with pytest.raises(EmbeddingServiceError):
            always_fails()

    delays = [call.args[0] for call in mock_sleep.call_args_list]
    assert delays == [1.0, 2.0, 4.0]


def test_retry_non_retryable_error():
    call_count = 0

    @retry_with_backoff(max_retries=3)
    def not_found():
        nonlocal call_count
        call_count += 1
        raise EmbeddingServiceError("model not found", status_code=404)

    with pytest.raises(EmbeddingServiceError):
        not_found()

    assert call_count == 1


def test_retry_logs_attempts_and_final_failure(caplog):
    caplog.set_level(logging.WARNING)

    @retry_with_backoff(max_retries=2, base_delay=0.01, max_jitter=0.0)
    def always_fails():
        raise EmbeddingServiceError("Server error", status_code=500)

    with patch("exam_rag.utils.retry.time.sleep"):
        with pytest.raises(EmbeddingServiceError):
            always_fails()

    assert "attempt 1/2" in caplog.text
    assert "attempt 2/2" in caplog.text
    assert "failed after 2 retries" in caplog.text


# Async decorator


@pytest.mark.asyncio
async def test_async_retry_uses_asyncio_sleep():
    call_count = 0

    @retry_with_backoff(max_retries=2, base_delay=1.0, max_jitter=0.0)
    async def always_fails():
        nonlocal call_count
        call_count += 1
        raise EmbeddingServiceError("Rate limit", status_code=429)

    with patch("exam_rag.utils.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        with pytest.raises(EmbeddingServiceError):
            await always_fails()

    assert call_count == 3
    assert [call.args[0] for call in mock_sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_async_retry_preserves_metadata():
    @retry_with_backoff()
    async def embed_question():
        """Docstring."""
        return [0.1]

    assert embed_question.__name__ == "embed_question"
    assert embed_question.__doc__ == "Docstring."
    assert await embed_question() == [0.1]


@pytest.mark.asyncio
async def test_async_retry_non_retryable_error():
    func = MagicMock(side_effect=EmbeddingServiceError("Unauthorized", status_code=401))

    @retry_with_backoff(max_retries=3)
    async def unauthorized():
        func()

    with pytest.raises(EmbeddingServiceError):
        await unauthorized()

    assert func.call_count == 1
