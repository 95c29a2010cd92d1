"""Normalize speaker names and split them into first/middle/last parts."""

from __future__ import annotations

import re
from dataclasses import dataclass

_HONORIFICS = (
    r"Mr|Mrs|Ms|Dr|Doctor|Prof|Professor|Sen|Senator|Rep|Representative|Gov|Governor|Pres|President|"
    r"Judge|Justice|Chief|Sir|Dame|Lord|Lady|Gen|General|Adm|Admiral|Col|Colonel|Maj|Major|"
    r"Capt|Captain|Rev|Reverend|Father|Brother|Sister|Rabbi|Imam|Sheikh"
)
_TITLE_PREFIX = re.compile(rf"^(?:{_HONORIFICS})\.?\s+", re.IGNORECASE)
_SUFFIX = re.compile(r",?\s+(?:Jr\.?|Sr\.?|II|III|IV|V|Esq\.?|Ph\.?D\.?|M\.?D\.?|DDS|RN|CPA)$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_TITLE_STOPWORDS = frozenset({"the", "and", "for", "former", "current", "acting", "deputy", "from"})


@dataclass(frozen=True)
class NameParts:
    first: str
    middle: str
    last: str


def normalize_name(name: str) -> str:
    """
    "Dr. Martin Luther King Jr." -> "martin luther king".

    Strips one leading honorific and one trailing generational/professional
    suffix, collapses whitespace, lowercases.
    """
    n = name.strip()
    n = _TITLE_PREFIX.sub("", n)
    n = _SUFFIX.sub("", n)
    return _WHITESPACE.sub(" ", n).strip().lower()


def split_name_parts(normalized: str) -> NameParts:
    tokens = [t for t in normalized.split(" ") if t]
    if not tokens:
        return NameParts(first="", middle="", last="")
    if len(tokens) == 1:
        return NameParts(first="", middle="", last=tokens[0])
    return NameParts(first=tokens[0], middle=" ".join(tokens[1:-1]), last=tokens[-1])


def title_words(text: str | None) -> set[str]:
    """Content words of a speaker title or disambiguation ("Texas senator" -> {"texas", "senator"})."""
    if not text:
        return set()
    words = re.findall(r"[a-z][a-z'\-]+", text.lower())
    return {w for w in words if w not in _TITLE_STOPWORDS and len(w) > 2}
