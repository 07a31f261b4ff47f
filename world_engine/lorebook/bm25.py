"""Okapi BM25 ranking over lorebook entry text."""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Iterable, Mapping

K1 = 1.2
B = 0.75

_NON_WORD_RE = re.compile(r"[^\w\s]")


def tokenize(text: str) -> list[str]:
    """Lower-case, strip punctuation, split on whitespace, drop 1-char tokens."""
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [t for t in cleaned.split() if len(t) > 1]


def bm25_score(query: str, documents: Iterable[Mapping[str, str]]) -> dict[str, float]:
    """Score each ``{"id", "text"}`` document against `query`.

    Documents with a zero score are omitted. Empty query or corpus gives {}.
    """
    docs = [(d["id"], tokenize(d["text"])) for d in documents]
    query_terms = tokenize(query)
    if not docs or not query_terms:
        return {}

    n = len(docs)
    avg_len = sum(len(tokens) for _, tokens in docs) / n
    if avg_len == 0:
        return {}

    df: Counter[str] = Counter()
    for _, tokens in docs:
        df.update(set(tokens))

    idf = {t: math.log((n - df[t] + 0.5) / (df[t] + 0.5) + 1) for t in set(query_terms)}

    scores: dict[str, float] = {}
    for doc_id, tokens in docs:
        tf = Counter(tokens)
        norm = K1 * (1 - B + B * len(tokens) / avg_len)
        score = 0.0
        for term in query_terms:
            freq = tf.get(term, 0)
            if freq:
                score += idf[term] * (freq * (K1 + 1)) / (freq + norm)
        if score > 0:
            scores[doc_id] = score
    return scores


def normalize_scores(scores: Mapping[str, float]) -> dict[str, float]:
    """Scale scores into [0, 1] by dividing by the maximum."""
    if not scores:
        return {}
    top = max(scores.values())
    if top <= 0:
        return dict(scores)
    return {k: v / top for k, v in scores.items()}
