"""
Fuzzy string comparison shared by field validation confidence and duplicate
scoring.  Both callers rely on the same 0.8 threshold and containment rule.
"""
from typing import Optional

SIMILARITY_THRESHOLD = 0.8


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance (insert / delete / substitute, all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """Return a score in [0, 1]; comparison ignores case and outer whitespace."""
    s1 = (a or "").strip().lower()
    s2 = (b or "").strip().lower()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    longer = max(len(s1), len(s2))
    return 1.0 - levenshtein(s1, s2) / longer


def is_similar(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    s1 = a.strip().lower()
    s2 = b.strip().lower()
    if not s1 or not s2:
        return False
    if s1 == s2 or s1 in s2 or s2 in s1:
        return True
    return similarity(s1, s2) > SIMILARITY_THRESHOLD
