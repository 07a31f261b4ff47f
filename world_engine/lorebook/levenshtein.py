"""Edit-distance scoring for fuzzy keyword matching."""

from __future__ import annotations


def levenshtein_distance(a: str, b: str) -> int:
    """Unit-cost insert/delete/substitute distance between two strings.

    Uses a single rolling row sized to the shorter string.
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    if len(a) > len(b):
        a, b = b, a

    row = list(range(len(a) + 1))
    for i, cb in enumerate(b, start=1):
        prev_diag = row[0]
        row[0] = i
        for j, ca in enumerate(a, start=1):
            above = row[j]
            cost = 0 if ca == cb else 1
            row[j] = min(above + 1, row[j - 1] + 1, prev_diag + cost)
            prev_diag = above
    return row[len(a)]


def fuzzy_threshold(needle: str) -> int:
    return 1 if len(needle) <= 5 else 2


def fuzzy_match(needle: str, target: str) -> bool:
    """True when `target` is within the length-scaled edit threshold of `needle`."""
    return levenshtein_distance(needle, target) <= fuzzy_threshold(needle)
