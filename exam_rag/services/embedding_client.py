"""Embedding service client with a deterministic keyword-hash fallback.

The remote service speaks the Ollama ``/api/embeddings`` protocol:
``POST {base_url}/api/embeddings`` with ``{"model", "prompt"}`` and a
``{"embedding": [...]}`` response.

Two entry points:

* :meth:`EmbeddingClient.embed` never raises. If the service is down,
  answers non-2xx, or returns a malformed body, it returns the fallback
  vector from :func:`fallback_embedding` flagged with ``is_fallback=True``
  so query-time retrieval keeps working.
* :meth:`EmbeddingClient.embed_strict` raises :class:`EmbeddingServiceError`
  and is retried with backoff. Ingestion uses it, since storing fallback
  vectors would poison the index.
"""

import logging
import math
from numbers import Real
from typing import Any, List, Optional

import httpx
from pydantic import BaseModel

from exam_rag.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Fallback tuning: tokens must be longer than this; each token touches this many slots.
FALLBACK_MIN_TOKEN_LENGTH = 3
FALLBACK_SLOTS_PER_TOKEN = 5


class EmbeddingServiceError(Exception):
    """Raised when the embedding service cannot produce a vector."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmbeddingResult(BaseModel):
    vector: List[float]
    model: str
    is_fallback: bool = False


def fallback_embedding(text: str, dimension: int) -> List[float]:
    """Deterministic, non-learned pseudo-embedding of ``text``.

    Each whitespace token longer than three characters (lowercased) seeds
    five slots of a zero vector from the codes of its first and last
    characters; the result is L2-normalized when any slot is non-zero.
    Same text always gives the same vector.
    """
    if dimension <= 0:
        raise ValueError(f"dimension must be positive, got {dimension}")

    vector = [0.0] * dimension
    keywords = [w for w in text.lower().split() if len(w) > FALLBACK_MIN_TOKEN_LENGTH]
    for idx, keyword in enumerate(keywords):
        seed = ord(keyword[0]) + ord(keyword[-1])
        for k in range(min(FALLBACK_SLOTS_PER_TOKEN, dimension)):
            vector[(idx * FALLBACK_SLOTS_PER_TOKEN + k) % dimension] += ((seed * (k + 1)) % 100) / 100

    norm = math.sqrt(sum(v * v for v in vector))
    if norm > 0:
        vector = [v / norm for v in vector]
    return vector


def _parse_embedding(data: Any) -> Optional[List[float]]:
    """Return the ``embedding`` list if it is a non-empty list of finite numbers."""
    if not isinstance(data, dict):
        return None
    embedding = data.get("embedding")
    if not isinstance(embedding, list) or not embedding:
        return None
    vector: List[float] = []
    for value in embedding:
        if isinstance(value, bool) or not isinstance(value, Real):
            return None
        value = float(value)
        if not math.isfinite(value):
            return None
        vector.append(value)
    return vector


class EmbeddingClient:
    """Client for the remote embedding service.

    Args:
        base_url: Service base URL without trailing slash.
        model: Embedding model name sent with every request.
        dimension: Dimension of the fallback vector.
        timeout: Request timeout in seconds.
        http_client: Optional shared ``httpx.AsyncClient``; one is created
            (and owned) when omitted.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        dimension: int,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dimension = dimension
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/api/embeddings"

    async def _request_embedding(self, text: str) -> List[float]:
        try:
            response = await self._http.post(
                self.endpoint,
                json={"model": self.model, "prompt": text},
            )
        except httpx.HTTPError as e:
            raise EmbeddingServiceError(f"Embedding service unreachable: {e}") from e

        if not 200 <= response.status_code < 300:
            raise EmbeddingServiceError(
                f"Embedding service returned {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingServiceError(f"Embedding service returned invalid JSON: {e}") from e

        vector = _parse_embedding(data)
        if vector is None:
            raise EmbeddingServiceError(
                f"Unexpected embedding response: {str(data)[:300]}"
            )
        return vector

    @retry_with_backoff(retryable_exceptions=(EmbeddingServiceError,))
    async def embed_strict(self, text: str) -> List[float]:
        """Embed ``text`` with the remote service, raising on any failure.

        Raises:
            EmbeddingServiceError: After retries are exhausted or on a
                non-retryable response.
        """
        return await self._request_embedding(text)

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed ``text``, falling back to :func:`fallback_embedding` on any failure."""
        try:
            vector = await self._request_embedding(text)
            return EmbeddingResult(vector=vector, model=self.model)
        except EmbeddingServiceError as e:
            logger.warning(f"Embedding service unavailable, using keyword fallback: {e}")
            return EmbeddingResult(
                vector=fallback_embedding(text, self.dimension),
                model=self.model,
                is_fallback=True,
            )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
