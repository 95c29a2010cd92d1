"""
Text normalization and asymmetric containment metrics for quote dedup.

All functions are pure. "Asymmetric" means the denominator always comes from
the first (shorter) argument, so `word_containment(a, b)` and
`word_containment(b, a)` generally differ.
"""

from __future__ import annotations

import re

_CURLY_SINGLE_QUOTES = re.compile("[‘’]")
_CURLY_DOUBLE_QUOTES = re.compile("[“”]")
_ELLIPSIS = re.compile(r"\.{3}|…")
_PUNCTUATION = re.compile(r"[^\w\s'\-]")
_WHITESPACE = re.compile(r"\s+")


def normalize_for_comparison(text: str) -> str:
    text = text.lower()
    text = _CURLY_SINGLE_QUOTES.sub("'", text)
    text = _CURLY_DOUBLE_QUOTES.sub('"', text)
    # An ellipsis marks an omission boundary; keep it as a word break.
    text = _ELLIPSIS.sub(" ", text)
    text = _PUNCTUATION.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def has_ellipsis(text: str) -> bool:
    return _ELLIPSIS.search(text) is not None


def get_words(text: str) -> list[str]:
    return [w for w in normalize_for_comparison(text).split(" ") if w]


def word_containment(shorter: str, longer: str) -> float:
    """Fraction of `shorter`'s words found in order (not necessarily contiguous) in `longer`."""
    words_short = get_words(shorter)
    words_long = get_words(longer)
    if not words_short or len(words_short) > len(words_long):
        return 0.0

    i = 0
    for word in words_long:
        if i == len(words_short):
            break
        if word == words_short[i]:
            i += 1
    return i / len(words_short)


def ellipsis_fragment_match(fragment: str, candidate_full: str) -> float | None:
    """
    Match an excerpt like "...cut taxes ... this year" against a full quote.

    Returns None when `fragment` has no ellipsis; otherwise the fraction of
    anchor phrases found left to right, each after the previous one's end.
    """
    if not has_ellipsis(fragment):
        return None

    anchors = [normalize_for_comparison(part) for part in _ELLIPSIS.split(fragment)]
    anchors = [a for a in anchors if a]
    if not anchors:
        return 0.0

    normalized_full = normalize_for_comparison(candidate_full)
    matched = 0
    offset = 0
    for anchor in anchors:
        idx = normalized_full.find(anchor, offset)
        if idx >= 0:
            matched += 1
            offset = idx + len(anchor)
    return matched / len(anchors)


def _bigrams(text: str) -> set[tuple[str, str]]:
    words = get_words(text)
    return set(zip(words, words[1:]))


def bigram_containment(shorter: str, longer: str) -> float:
    grams_short = _bigrams(shorter)
    if not grams_short:
        return 0.0
    return len(grams_short & _bigrams(longer)) / len(grams_short)
