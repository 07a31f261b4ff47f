"""Hybrid lorebook retrieval — keyword triggers plus BM25/semantic ranking.

Keyword-triggered and always-send entries are admitted unconditionally.
Entries without keywords, and entries opted into semantic retrieval, can
also be admitted by score:

    score = bm25_weight * norm(bm25) + semantic_weight * norm(cosine)

when the score reaches ``min_score`` and their conditions hold. The result
is ranked always-send first, then by priority, then by score, and is what
`PromptBuilder.build` expects as ``retrieved_entries``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Literal

from world_engine.lorebook.bm25 import bm25_score, normalize_scores
from world_engine.lorebook.embeddings import SemanticRanker, entry_text
from world_engine.lorebook.matcher import LorebookMatcher
from world_engine.models import GameState, LorebookEntry
from world_engine.prompts import PromptConfig
from world_engine.rules import check_conditions

logger = logging.getLogger(__name__)


@dataclass
class RankedEntry:
    entry: LorebookEntry
    score: float
    reason: Literal["always", "keyword", "ranked"]


def _rankable(entry: LorebookEntry) -> bool:
    return not entry.keywords or entry.use_semantic


def rank_entries(
    entries: Sequence[LorebookEntry],
    recent_messages: Sequence[str],
    state: GameState | None = None,
    *,
    config: PromptConfig | None = None,
    semantic_scores: Mapping[str, float] | None = None,
    scan_depth: int | None = None,
    recursion_depth: int = 0,
) -> list[RankedEntry]:
    config = config or PromptConfig()
    matcher = LorebookMatcher(scan_depth, recursion_depth)
    query = matcher.scan_text(recent_messages)
    variables = state.variables if state is not None else {}

    enabled = [e for e in entries if e.enabled]
    lexical = normalize_scores(bm25_score(query, ({"id": e.id, "text": entry_text(e)} for e in enabled)))
    semantic = normalize_scores(semantic_scores or {})
    triggered = {e.id for e in matcher.match(enabled, recent_messages, state)}

    ranked: list[RankedEntry] = []
    for entry in enabled:
        score = config.bm25_weight * lexical.get(entry.id, 0.0)
        score += config.semantic_weight * semantic.get(entry.id, 0.0)
        if entry.id in triggered:
            ranked.append(RankedEntry(entry, score, "always" if entry.always_send else "keyword"))
        elif (
            _rankable(entry)
            and score > 0
            and score >= config.min_score
            and check_conditions(variables, entry.conditions, entry.condition_logic)
        ):
            ranked.append(RankedEntry(entry, score, "ranked"))

    ranked.sort(key=lambda r: (not r.entry.always_send, -r.entry.priority, -r.score))
    if config.max_entries is not None:
        ranked = ranked[: config.max_entries]
    logger.debug(
        "retrieval: %d triggered, %d ranked-only, %d total",
        len(triggered), sum(r.reason == "ranked" for r in ranked), len(ranked),
    )
    return ranked


def retrieve_entries(
    entries: Sequence[LorebookEntry],
    recent_messages: Sequence[str],
    state: GameState | None = None,
    *,
    config: PromptConfig | None = None,
    semantic_scores: Mapping[str, float] | None = None,
    scan_depth: int | None = None,
    recursion_depth: int = 0,
) -> list[LorebookEntry]:
    """Lexical retrieval; pass precomputed `semantic_scores` to blend them in."""
    ranked = rank_entries(
        entries, recent_messages, state,
        config=config, semantic_scores=semantic_scores,
        scan_depth=scan_depth, recursion_depth=recursion_depth,
    )
    return [r.entry for r in ranked]


async def retrieve_entries_async(
    entries: Sequence[LorebookEntry],
    recent_messages: Sequence[str],
    state: GameState | None = None,
    *,
    config: PromptConfig | None = None,
    semantic: SemanticRanker | None = None,
    scan_depth: int | None = None,
    recursion_depth: int = 0,
) -> list[LorebookEntry]:
    """Retrieval with semantic scoring. Embedding failures leave lexical ranking only."""
    semantic_scores: dict[str, float] = {}
    if semantic is not None:
        query = LorebookMatcher(scan_depth).scan_text(recent_messages)
        semantic_scores = await semantic.score(query, entries)
    return retrieve_entries(
        entries, recent_messages, state,
        config=config, semantic_scores=semantic_scores,
        scan_depth=scan_depth, recursion_depth=recursion_depth,
    )
