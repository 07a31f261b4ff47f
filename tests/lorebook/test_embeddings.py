"""Tests for cosine similarity, the embedding client, and the cached semantic ranker."""

import json

import httpx
import pytest

from world_engine.cache import TTLCache
from world_engine.lorebook.embeddings import (
    EmbeddingClient,
    EmbeddingError,
    SemanticRanker,
    content_hash,
    cosine_similarity,
    entry_text,
)
from world_engine.models import LorebookEntry


class FakeEmbedder:
    """Maps known words to fixed 3-d vectors and records every call."""

    VECTORS = {
        "dragon": [1.0, 0.0, 0.0],
        "wyrm": [0.9, 0.1, 0.0],
        "tavern": [0.0, 1.0, 0.0],
    }

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[list[str]] = []
        self.fail = fail

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("backend down")
        out = []
        for text in texts:
            vec = [0.0, 0.0, 1.0]
            for word, v in self.VECTORS.items():
                if word in text.lower():
                    vec = v
                    break
            out.append(vec)
        return out


def _entry(id, content, **kw) -> LorebookEntry:
    return LorebookEntry(id=id, content=content, use_semantic=True, **kw)


# ---------------------------------------------------------------------------
# cosine_similarity / content_hash
# ---------------------------------------------------------------------------

class TestCosine:
    def test_identical_vectors(self) -> None:
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)

    def test_dimension_mismatch_is_zero(self) -> None:
        assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0

    def test_zero_vector_is_zero(self) -> None:
        assert cosine_similarity([0, 0], [1, 1]) == 0.0


def test_content_hash_stable_and_sensitive() -> None:
    assert content_hash("dragon") == content_hash("dragon")
    assert content_hash("dragon") != content_hash("dragons")


# ---------------------------------------------------------------------------
# SemanticRanker
# ---------------------------------------------------------------------------

class TestSemanticRanker:
    async def test_scores_similar_entry_highest(self) -> None:
        ranker = SemanticRanker(FakeEmbedder())
        entries = [_entry("d", "A dragon lair"), _entry("t", "The tavern")]
        scores = await ranker.score("tell me about the wyrm", entries)
        assert scores["d"] > scores.get("t", 0.0)

    async def test_only_semantic_entries_considered(self) -> None:
        ranker = SemanticRanker(FakeEmbedder())
        entries = [LorebookEntry(id="plain", content="A dragon lair")]
        assert await ranker.score("dragon", entries) == {}

    async def test_cache_prevents_repeat_calls(self) -> None:
        embedder = FakeEmbedder()
        ranker = SemanticRanker(embedder, TTLCache(default_ttl=60))
        await ranker.embed(["dragon", "tavern"])
        await ranker.embed(["dragon", "tavern"])
        assert embedder.calls == [["dragon", "tavern"]]

    async def test_only_misses_sent_to_client(self) -> None:
        embedder = FakeEmbedder()
        ranker = SemanticRanker(embedder)
        await ranker.embed(["dragon"])
        await ranker.embed(["dragon", "tavern"])
        assert embedder.calls == [["dragon"], ["tavern"]]

    async def test_expired_entries_are_refetched(self) -> None:
        now = [0.0]
        embedder = FakeEmbedder()
        ranker = SemanticRanker(embedder, TTLCache(default_ttl=10, clock=lambda: now[0]))
        await ranker.embed(["dragon"])
        now[0] = 11.0
        await ranker.embed(["dragon"])
        assert len(embedder.calls) == 2

    async def test_fresh_stored_embedding_reused(self) -> None:
        embedder = FakeEmbedder()
        ranker = SemanticRanker(embedder)
        entry = _entry("d", "Some text", embedding=[1.0, 0.0, 0.0])
        entry.embedding_hash = content_hash(entry_text(entry))
        scores = await ranker.score("dragon", [entry])
        assert embedder.calls == [["dragon"]]
        assert scores["d"] == pytest.approx(1.0)

    async def test_stale_stored_embedding_recomputed(self) -> None:
        embedder = FakeEmbedder()
        ranker = SemanticRanker(embedder)
        entry = _entry("t", "The tavern", embedding=[1.0, 0.0, 0.0], embedding_hash="stale")
        await ranker.score("dragon", [entry])
        assert embedder.calls == [["dragon", "The tavern"]]

    async def test_failure_degrades_to_empty(self, caplog) -> None:
        ranker = SemanticRanker(FakeEmbedder(fail=True))
        scores = await ranker.score("dragon", [_entry("d", "A dragon lair")])
        assert scores == {}
        assert "lexical only" in caplog.text

    async def test_foreign_exception_degrades_to_empty(self) -> None:
        class BrokenEmbedder:
            async def embed(self, texts):
                raise KeyError("vectors")

        ranker = SemanticRanker(BrokenEmbedder())
        assert await ranker.score("dragon", [_entry("d", "A dragon lair")]) == {}

    async def test_non_json_backend_degrades_to_empty(self) -> None:
        client = EmbeddingClient(
            "http://embed.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>")),
        )
        ranker = SemanticRanker(client)
        assert await ranker.score("dragon", [_entry("d", "A dragon lair")]) == {}


# ---------------------------------------------------------------------------
# EmbeddingClient
# ---------------------------------------------------------------------------

class TestEmbeddingClient:
    async def test_orders_by_index_and_sends_model(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"data": [
                {"index": 1, "embedding": [0.0, 1.0]},
                {"index": 0, "embedding": [1.0, 0.0]},
            ]})

        client = EmbeddingClient("http://embed.local/", api_key="k", dimensions=2,
                                 transport=httpx.MockTransport(handler))
        vectors = await client.embed(["first", "second"])
        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert seen["url"] == "http://embed.local/v1/embeddings"
        assert seen["body"] == {"model": "text-embedding-3-small", "input": ["first", "second"], "dimensions": 2}
        assert seen["auth"] == "Bearer k"

    async def test_http_error_wrapped(self) -> None:
        client = EmbeddingClient(
            "http://embed.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(EmbeddingError, match="HTTP 500"):
            await client.embed(["x"])

    async def test_malformed_response_wrapped(self) -> None:
        client = EmbeddingClient(
            "http://embed.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"nope": 1})),
        )
        with pytest.raises(EmbeddingError, match="Unexpected response"):
            await client.embed(["x"])

    async def test_empty_input_skips_request(self) -> None:
        def handler(request):
            raise AssertionError("no request expected")

        client = EmbeddingClient("http://embed.local", transport=httpx.MockTransport(handler))
        assert await client.embed([]) == []

    async def test_non_json_body_wrapped(self) -> None:
        client = EmbeddingClient(
            "http://embed.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>")),
        )
        with pytest.raises(EmbeddingError, match="non-JSON"):
            await client.embed(["x"])

    async def test_list_body_wrapped(self) -> None:
        client = EmbeddingClient(
            "http://embed.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[[1.0, 0.0]])),
        )
        with pytest.raises(EmbeddingError, match="Unexpected response"):
            await client.embed(["x"])

    async def test_read_error_wrapped(self) -> None:
        def handler(request):
            raise httpx.ReadError("connection reset", request=request)

        client = EmbeddingClient("http://embed.local", transport=httpx.MockTransport(handler))
        with pytest.raises(EmbeddingError, match="request failed"):
            await client.embed(["x"])
