"""String similarity and hashing primitives for lineage and deduplication."""

import hashlib
import re
from typing import Any, Set

_PHONETIC_CLASSES = {
    **dict.fromkeys("BFPV", "1"),
    **dict.fromkeys("CGJKQSXZ", "2"),
    **dict.fromkeys("DT", "3"),
    "L": "4",
    **dict.fromkeys("MN", "5"),
    "R": "6",
}

PHONETIC_BONUS = 0.3
EDIT_WEIGHT = 0.35
TRIGRAM_WEIGHT = 0.35


def hash_value(value: Any) -> str:
    """SHA-256 hex digest of a value's string form. None hashes like ''."""
    text = "" if value is None else str(value)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance with unit insert/delete/substitute costs."""
    rows = len(a) + 1
    cols = len(b) + 1
    dp = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        dp[i][0] = i
    for j in range(cols):
        dp[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            dp[i][j] = min(
                dp[i - 1][j] + 1,
                dp[i][j - 1] + 1,
                dp[i - 1][j - 1] + cost,
            )
    return dp[-1][-1]


def phonetic_code(s: str) -> str:
    """
    Four-character Soundex-style code.

    The first letter is kept; following letters contribute their consonant
    class digit unless it repeats the previous coded letter. Vowels and
    H, W, Y carry no code and do not reset the previous one, so
    "Robert" and "Rupert" both give "R163".
    """
    letters = re.sub(r"[^A-Z]", "", (s or "").upper())
    if not letters:
        return ""

    code = letters[0]
    prev = _PHONETIC_CLASSES.get(letters[0], "")
    for ch in letters[1:]:
        digit = _PHONETIC_CLASSES.get(ch, "")
        if digit and digit != prev:
            code += digit
            if len(code) == 4:
                break
        prev = digit or prev

    return code.ljust(4, "0")


def trigrams(s: str) -> Set[str]:
    """Padded character 3-grams."""
    padded = f"  {s} "
    return {padded[i:i + 3] for i in range(len(padded) - 2)}


def trigram_overlap(a: str, b: str) -> float:
    """Jaccard overlap of the padded trigram sets."""
    ta = trigrams(a)
    tb = trigrams(b)
    union = ta | tb
    if not union:
        return 0.0
    return len(ta & tb) / len(union)


def name_similarity(name1: str, name2: str) -> float:
    """
    Composite name similarity in [0, 1].

    Args:
        name1: First name string (any case, surrounding whitespace ignored)
        name2: Second name string

    Returns:
        1.0 for identical names, 0.0 when either is empty, otherwise a blend
        of phonetic agreement, normalized edit distance and trigram overlap.
    """
    a = (name1 or "").lower().strip()
    b = (name2 or "").lower().strip()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    phonetic = PHONETIC_BONUS if phonetic_code(a) == phonetic_code(b) else 0.0
    max_len = max(len(a), len(b))
    edit_score = 1.0 - edit_distance(a, b) / max_len
    score = phonetic + EDIT_WEIGHT * edit_score + TRIGRAM_WEIGHT * trigram_overlap(a, b)
    return min(score, 1.0)


def normalize_phone(value: Any) -> str:
    """Digits only."""
    if value is None:
        return ""
    return re.sub(r"\D", "", str(value))
