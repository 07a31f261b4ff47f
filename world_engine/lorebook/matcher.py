"""Keyword matching for lorebook entries.

`keyword_matches` decides whether a single keyword appears in a block of
text. Strategies are tried in order and the first hit wins:

    1. /regex/flags literal   — compiled case-insensitively, searched raw
    2. whole word             — \\b-bounded escaped keyword
    3. substring              — lower-cased containment
    4. fuzzy                  — per-word Levenshtein, skipped for CJK keywords

`LorebookMatcher` applies that to whole entries: primary keywords,
secondary-keyword logic, and state conditions.
"""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Sequence

from world_engine.lorebook.levenshtein import fuzzy_match
from world_engine.models import GameState, LorebookEntry
from world_engine.rules import check_conditions

logger = logging.getLogger(__name__)

CJK_RE = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]")
REGEX_LITERAL_RE = re.compile(r"/(.+)/([gimsuy]*)", re.DOTALL)

# g/u/y have no Python equivalent and are ignored
_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


@functools.lru_cache(maxsize=512)
def compile_keyword_regex(keyword: str) -> re.Pattern[str] | None:
    """Compile a ``/pattern/flags`` keyword. Returns None for plain or invalid keywords."""
    m = REGEX_LITERAL_RE.fullmatch(keyword)
    if m is None:
        return None
    flags = re.IGNORECASE
    for flag in m.group(2):
        flags |= _FLAG_MAP.get(flag, 0)
    try:
        return re.compile(m.group(1), flags)
    except re.error as e:
        logger.debug("Invalid regex keyword %r: %s", keyword, e)
        return None


def has_cjk(text: str) -> bool:
    return CJK_RE.search(text) is not None


def keyword_matches(
    text: str,
    keyword: str,
    whole_word: bool = False,
    use_fuzzy: bool = False,
) -> bool:
    """Return True if `keyword` occurs in `text` under the configured strategy."""
    pattern = compile_keyword_regex(keyword)
    if pattern is not None and pattern.search(text):
        return True

    lower_text = text.lower()
    lower_kw = keyword.lower()

    if whole_word:
        if re.search(rf"\b{re.escape(lower_kw)}\b", lower_text):
            return True
    elif lower_kw in lower_text:
        return True

    if use_fuzzy and lower_kw and not has_cjk(keyword):
        return any(fuzzy_match(lower_kw, word) for word in lower_text.split())

    return False


class LorebookMatcher:
    """Selects lorebook entries triggered by recent conversation and state."""

    def __init__(self, scan_depth: int | None = None, recursion_depth: int = 0) -> None:
        # None or 0 scans every message handed in
        self.scan_depth = scan_depth
        self.recursion_depth = recursion_depth

    def scan_text(self, recent_messages: Sequence[str]) -> str:
        messages = list(recent_messages)
        if self.scan_depth:
            messages = messages[-self.scan_depth:]
        return "\n".join(messages)

    def _any(self, text: str, keywords: list[str], entry: LorebookEntry) -> bool:
        return any(keyword_matches(text, k, entry.whole_word, entry.use_fuzzy) for k in keywords)

    def _all(self, text: str, keywords: list[str], entry: LorebookEntry) -> bool:
        return all(keyword_matches(text, k, entry.whole_word, entry.use_fuzzy) for k in keywords)

    def secondary_passes(self, entry: LorebookEntry, text: str) -> bool:
        keywords = entry.secondary_keywords
        if not keywords:
            return True
        logic = entry.secondary_keyword_logic
        if logic == "AND_ANY":
            return self._any(text, keywords, entry)
        if logic == "AND_ALL":
            return self._all(text, keywords, entry)
        if logic == "NOT_ANY":
            return not self._any(text, keywords, entry)
        return not self._all(text, keywords, entry)  # NOT_ALL

    def keyword_triggered(self, entry: LorebookEntry, text: str) -> bool:
        """Primary plus secondary keyword test, ignoring always_send and conditions."""
        if not entry.keywords or not self._any(text, entry.keywords, entry):
            return False
        return self.secondary_passes(entry, text)

    def is_triggered(self, entry: LorebookEntry, text: str, state: GameState | None) -> bool:
        if not entry.enabled:
            return False
        if not entry.always_send and not self.keyword_triggered(entry, text):
            return False
        if entry.conditions:
            variables = state.variables if state is not None else {}
            return check_conditions(variables, entry.conditions, entry.condition_logic)
        return True

    def match(
        self,
        entries: Sequence[LorebookEntry],
        recent_messages: Sequence[str],
        state: GameState | None = None,
    ) -> list[LorebookEntry]:
        """Return triggered entries, highest priority first (stable for ties).

        With a `recursion_depth` of N, the content of entries triggered in
        one pass is scanned for keywords of the remaining entries, up to N
        extra passes.
        """
        text = self.scan_text(recent_messages)
        pending = list(entries)
        seen: set[int] = set()
        for depth in range(self.recursion_depth + 1):
            hits = [e for e in pending if self.is_triggered(e, text, state)]
            if not hits:
                break
            if depth:
                logger.debug("lorebook recursion pass %d: %d more entries", depth, len(hits))
            seen.update(id(e) for e in hits)
            pending = [e for e in pending if id(e) not in seen]
            text = "\n".join(e.content for e in hits)
        triggered = [e for e in entries if id(e) in seen]
        triggered.sort(key=lambda e: -e.priority)
        logger.debug("lorebook match: %d/%d entries triggered", len(triggered), len(entries))
        return triggered
