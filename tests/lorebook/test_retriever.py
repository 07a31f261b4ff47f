"""Tests for hybrid lorebook retrieval."""

from world_engine.lorebook.embeddings import EmbeddingError, SemanticRanker
from world_engine.lorebook.retriever import rank_entries, retrieve_entries, retrieve_entries_async
from world_engine.models import Condition, LorebookEntry
from world_engine.prompts import PromptConfig


def _ids(entries) -> list[str]:
    return [e.id for e in entries]


# ── keyword + always-send ────────────────────────────────────


def test_triggered_and_always_send_entries(world, state):
    found = retrieve_entries(world.entries, ["A dragon circles the keep"], state)
    assert _ids(found)[:2] == ["laws", "dragon"]


def test_always_send_ranked_first_regardless_of_priority(world, state):
    found = retrieve_entries(world.entries, ["the tavern and the dragon"], state)
    # laws has the lowest priority of the three but is always sent
    assert _ids(found)[:3] == ["laws", "dragon", "tavern"]


def test_nothing_relevant_only_always_send(world, state):
    found = retrieve_entries(world.entries, ["hello"], state)
    assert _ids(found) == ["laws"]


# ── ranked-only entries ──────────────────────────────────────


def test_keywordless_entry_admitted_by_bm25(world, state):
    found = retrieve_entries(world.entries, ["who founded the keep, which knights?"], state)
    assert "history" in _ids(found)


def test_min_score_excludes_weak_matches(world, state):
    config = PromptConfig(min_score=1.01)
    found = retrieve_entries(world.entries, ["who founded the keep?"], state, config=config)
    assert "history" not in _ids(found)


def test_keyword_entries_not_admitted_by_score_alone(world, state):
    # "red" and "mountain" appear in the dragon entry but are not its keywords
    found = retrieve_entries(world.entries, ["the red mountain"], state)
    assert "dragon" not in _ids(found)


def test_ranked_entry_respects_conditions(state):
    entries = [
        LorebookEntry(
            id="secret", content="The founders hid a vault.",
            conditions=[Condition(variable_id="hasKey", operator="eq", value=True)],
        ),
    ]
    assert retrieve_entries(entries, ["tell me of the founders vault"], state) == []


def test_max_entries_caps_result(world, state):
    config = PromptConfig(max_entries=1)
    found = retrieve_entries(world.entries, ["the dragon in the tavern"], state, config=config)
    assert _ids(found) == ["laws"]


def test_rank_entries_reports_reason(world, state):
    ranked = rank_entries(world.entries, ["dragon"], state)
    reasons = {r.entry.id: r.reason for r in ranked}
    assert reasons["laws"] == "always"
    assert reasons["dragon"] == "keyword"


def test_semantic_scores_blend_in(state):
    entries = [
        LorebookEntry(id="a", content="alpha", use_semantic=True),
        LorebookEntry(id="b", content="beta", use_semantic=True),
    ]
    found = retrieve_entries(entries, ["gamma"], state, semantic_scores={"b": 0.9, "a": 0.1})
    # a: 0.5 * (0.1 / 0.9) is below min_score 0.2
    assert _ids(found) == ["b"]


# ── async variant ────────────────────────────────────────────


class _Embedder:
    def __init__(self, fail=False):
        self.fail = fail

    async def embed(self, texts):
        if self.fail:
            raise EmbeddingError("offline")
        return [[1.0, 0.0] if "wyrm" in t.lower() or "serpent" in t.lower() else [0.0, 1.0] for t in texts]


async def test_async_uses_semantic_ranker(state):
    entries = [
        LorebookEntry(id="serpent", content="The great serpent of the north", use_semantic=True),
        LorebookEntry(id="bread", content="Baking bread", use_semantic=True),
    ]
    found = await retrieve_entries_async(entries, ["a wyrm appears"], state, semantic=SemanticRanker(_Embedder()))
    assert _ids(found) == ["serpent"]


async def test_async_degrades_to_lexical_on_failure(world, state):
    lexical = retrieve_entries(world.entries, ["who founded the keep?"], state)
    degraded = await retrieve_entries_async(
        world.entries, ["who founded the keep?"], state,
        semantic=SemanticRanker(_Embedder(fail=True)),
    )
    assert _ids(degraded) == _ids(lexical)


def test_recursion_depth_reaches_chained_entries(state):
    entries = [
        LorebookEntry(id="dragon", keywords=["dragon"], content="Vharok guards a hoard."),
        LorebookEntry(id="hoard", keywords=["hoard"], content="Mostly gold."),
    ]
    assert _ids(retrieve_entries(entries, ["a dragon"], state)) == ["dragon"]
    assert _ids(retrieve_entries(entries, ["a dragon"], state, recursion_depth=1)) == ["dragon", "hoard"]
