"""Text normalisation helpers shared by the matchers."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable

ELLIPSIS = "..."

_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")
_SPACES_RE = re.compile(r"\s+")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def fold(text: str) -> str:
    """Lowercase and strip diacritics."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_for_match(text: str) -> str:
    """Fold, drop punctuation and collapse whitespace."""
    cleaned = _NON_WORD_RE.sub(" ", fold(text))
    return _SPACES_RE.sub(" ", cleaned).strip()


def split_identifier(name: str) -> str:
    """Turn ``validateEmail`` / ``validate_email`` into ``validate email``."""
    return _CAMEL_RE.sub(" ", name).replace("_", " ").replace("-", " ")


def significant_words(text: str) -> set[str]:
    return {w for w in text.split() if len(w) > 2}


def jaccard(first: str, second: str) -> float:
    """Jaccard similarity of the significant words of two normalised strings."""
    words_a = significant_words(first)
    words_b = significant_words(second)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def contains_keyword(text: str, keywords: Iterable[str]) -> bool:
    """Case- and accent-insensitive substring match against any keyword."""
    folded = fold(text)
    return any(fold(k) in folded for k in keywords if k)


def evidence_snippet(text: str, max_length: int = 100) -> str:
    """Extract at most ``max_length`` characters, preferring sentence breaks."""
    if len(text) <= max_length:
        return text

    head = text[:max_length]
    period = head.rfind(".")
    if period > max_length // 2:
        return head[: period + 1]

    head = text[: max_length - len(ELLIPSIS)]
    comma = head.rfind(",")
    if comma > max_length // 2:
        return head[:comma] + ELLIPSIS
    return head + ELLIPSIS


def preview(text: str, max_length: int = 200) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS
