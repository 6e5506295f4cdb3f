"""Embedding sources.

Each source has a name and async ``embed_post`` / ``embed_query`` methods that
return an :class:`EmbeddingResult`. Sources that cannot produce an embedding
raise :class:`EmbeddingUnavailableError`; callers pick the fallback.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod

import httpx
from pydantic import BaseModel, Field

from ..errors import EmbeddingUnavailableError
from .embeddings import MOCK_DIMENSIONS, MOCK_MODEL, mock_embedding

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_MODEL = "external-api-model"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class EmbeddingResult(BaseModel):
    """A vector together with the model that produced it."""

    vector: list[float] = Field(..., description="Embedding vector")
    model: str = Field(..., description="Model identifier")


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class Embedder(ABC):
    """Abstract base class for embedding sources.

    Subclasses must implement `name`, `embed_post` and `embed_query`.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short name used in logs (e.g. ``mock``)."""
        ...

    @abstractmethod
    async def embed_post(self, title: str, content: str) -> EmbeddingResult:
        """Embed a post from its title and content."""
        ...

    @abstractmethod
    async def embed_query(self, text: str) -> EmbeddingResult:
        """Embed a search query."""
        ...

    def adopt_dimensions(self, dimensions: int) -> None:
        """Match the vector size of another source. Fixed-size sources ignore this."""

    async def aclose(self) -> None:
        """Release any resources held by the source."""


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------

class MockEmbedder(Embedder):
    """Local deterministic pseudo-embeddings. Never fails."""

    def __init__(self, model: str = MOCK_MODEL, dimensions: int = MOCK_DIMENSIONS):
        self.model = model
        self.dimensions = dimensions

    @property
    def name(self) -> str:
        return "mock"

    def adopt_dimensions(self, dimensions: int) -> None:
        if dimensions != self.dimensions:
            logger.info("Mock embeddings now %d-d (were %d-d)", dimensions, self.dimensions)
            self.dimensions = dimensions

    async def embed_post(self, title: str, content: str) -> EmbeddingResult:
        return await self.embed_query(f"{title} {content}")

    async def embed_query(self, text: str) -> EmbeddingResult:
        return EmbeddingResult(vector=mock_embedding(text, self.dimensions), model=self.model)


def _parse_vector(data, key: str) -> list[float]:
    if not isinstance(data, dict):
        raise EmbeddingUnavailableError("Embedding service returned a non-object body")
    vec = data.get(key)
    if not isinstance(vec, list) or not vec:
        raise EmbeddingUnavailableError(f"Embedding service response has no '{key}' list")
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in vec):
        raise EmbeddingUnavailableError(f"Embedding service '{key}' contains non-numeric values")
    try:
        values = [float(v) for v in vec]
    except OverflowError as exc:
        raise EmbeddingUnavailableError(f"Embedding service '{key}' contains non-finite values") from exc
    if not all(math.isfinite(v) for v in values):
        raise EmbeddingUnavailableError(f"Embedding service '{key}' contains non-finite values")
    return values


def _parse_model(data: dict) -> str:
    model = data.get("model")
    if isinstance(model, str) and model:
        return model
    return DEFAULT_REMOTE_MODEL


class HttpEmbedder(Embedder):
    """Client for the external embedding service.

    ``POST /generate-embeddings`` embeds posts and ``GET
    /generate-search-embeddings`` embeds queries. Every call is bounded by
    *timeout* seconds overall.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def name(self) -> str:
        return "http"

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = await asyncio.wait_for(
                self._client.request(method, url, **kwargs), timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("Embedding request to %s timed out after %.1fs", url, self.timeout)
            raise EmbeddingUnavailableError("Embedding generation timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Embedding service error: status=%s body=%s",
                exc.response.status_code,
                exc.response.text[:500],
            )
            raise EmbeddingUnavailableError(
                f"Embedding service returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Cannot reach embedding service at %s: %s", url, exc)
            raise EmbeddingUnavailableError("Cannot connect to embedding service") from exc
        except ValueError as exc:
            raise EmbeddingUnavailableError("Embedding service returned invalid JSON") from exc

    async def embed_post(self, title: str, content: str) -> EmbeddingResult:
        data = await self._request(
            "POST", "/generate-embeddings", json={"title": title, "content": content}
        )
        vector = _parse_vector(data, "postEmbeddings")
        return EmbeddingResult(vector=vector, model=_parse_model(data))

    async def embed_query(self, text: str) -> EmbeddingResult:
        data = await self._request(
            "GET", "/generate-search-embeddings", params={"searchKey": text}
        )
        vector = _parse_vector(data, "searchEmbeddings")
        return EmbeddingResult(vector=vector, model=_parse_model(data))

    async def aclose(self) -> None:
        await self._client.aclose()
