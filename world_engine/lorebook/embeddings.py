"""Semantic ranking — embedding client, cosine similarity, cached ranker.

`EmbeddingClient` talks to an OpenAI-compatible ``/v1/embeddings``
endpoint. `SemanticRanker` wraps any object with an async ``embed(texts)``
method, caches vectors by content hash in a caller-owned `TTLCache`, and
degrades to an empty score map when the backend fails so retrieval can
fall back to lexical ranking.
"""

from __future__ import annotations

import logging
import zlib
from collections.abc import Sequence
from typing import Protocol

import httpx
import numpy as np

from world_engine.cache import TTLCache
from world_engine.models import LorebookEntry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"


class EmbeddingError(RuntimeError):
    """Raised when the embedding backend cannot be reached or returns garbage."""


class Embedder(Protocol):
    async def embed(self, texts: list[str]) -> list[list[float]]: ...


def content_hash(text: str) -> str:
    """Cheap non-cryptographic fingerprint used to spot stale embeddings."""
    return f"{zlib.crc32(text.encode('utf-8')):08x}"


def entry_text(entry: LorebookEntry) -> str:
    return f"{entry.name}\n{entry.content}" if entry.name else entry.content


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 on dimension mismatch or zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


# ---------------------------------------------------------------------------
# EmbeddingClient: HTTP backend
# ---------------------------------------------------------------------------

class EmbeddingClient:
    """Async client for OpenAI-compatible embedding endpoints.

    Args:
        base_url:   Base URL, e.g. "https://api.openai.com". "/v1/embeddings" is appended.
        api_key:    Bearer token, or empty string if not required.
        model:      Embedding model name.
        dimensions: Requested vector size, or None for the model default.
        timeout:    HTTP timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        dimensions: int | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._dimensions = dimensions
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        url = f"{self._base_url}/v1/embeddings"
        body: dict = {"model": self._model, "input": texts}
        if self._dimensions:
            body["dimensions"] = self._dimensions
        logger.debug("embedding call url=%s count=%d", url, len(texts))

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise EmbeddingError(f"Cannot connect to embedding backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                f"Embedding backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise EmbeddingError(f"Embedding backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding request failed: {e!r}") from e

        try:
            payload = resp.json()
        except ValueError as e:
            raise EmbeddingError("Embedding backend returned a non-JSON body") from e
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or len(data) != len(texts):
            raise EmbeddingError("Unexpected response format from embedding backend")
        try:
            ordered = sorted(data, key=lambda item: item["index"])
            return [list(item["embedding"]) for item in ordered]
        except (KeyError, TypeError) as e:
            raise EmbeddingError("Unexpected response format from embedding backend") from e


# ---------------------------------------------------------------------------
# SemanticRanker: cached scoring over lorebook entries
# ---------------------------------------------------------------------------

class SemanticRanker:
    """Scores entries by cosine similarity between the query and entry embeddings.

    Only entries with ``use_semantic`` take part. A stored ``entry.embedding``
    is reused when its ``embedding_hash`` matches the entry's current text.
    """

    def __init__(
        self,
        client: Embedder,
        cache: TTLCache[str, list[float]] | None = None,
        ttl: float | None = None,
    ) -> None:
        self.client = client
        self.cache: TTLCache[str, list[float]] = cache if cache is not None else TTLCache(default_ttl=3600.0)
        self.ttl = ttl

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts, sending only cache misses to the client."""
        found: dict[str, list[float]] = {}
        missing: dict[str, str] = {}
        for text in texts:
            key = content_hash(text)
            if key in found or key in missing:
                continue
            cached = self.cache.get(key)
            if cached is not None:
                found[key] = cached
            else:
                missing[key] = text

        if missing:
            vectors = await self.client.embed(list(missing.values()))
            if len(vectors) != len(missing):
                raise EmbeddingError(
                    f"Embedding backend returned {len(vectors)} vectors for {len(missing)} texts"
                )
            for key, vector in zip(missing, vectors):
                self.cache.put(key, vector, self.ttl)
                found[key] = vector

        return [found[content_hash(t)] for t in texts]

    async def score(self, query: str, entries: Sequence[LorebookEntry]) -> dict[str, float]:
        candidates = [e for e in entries if e.use_semantic and e.enabled]
        if not candidates or not query.strip():
            return {}

        stale = [e for e in candidates if not _fresh_embedding(e)]
        try:
            vectors = await self.embed([query] + [entry_text(e) for e in stale])
        except Exception as e:
            # custom Embedder implementations raise their own error types
            logger.warning("Semantic ranking unavailable, using lexical only: %s", e)
            return {}

        query_vec = vectors[0]
        fresh = dict(zip((e.id for e in stale), vectors[1:]))
        scores: dict[str, float] = {}
        for entry in candidates:
            vector = fresh.get(entry.id, entry.embedding)
            if vector is None:
                continue
            similarity = cosine_similarity(query_vec, vector)
            if similarity > 0:
                scores[entry.id] = similarity
        return scores


def _fresh_embedding(entry: LorebookEntry) -> bool:
    return (
        entry.embedding is not None
        and entry.embedding_hash is not None
        and entry.embedding_hash == content_hash(entry_text(entry))
    )
