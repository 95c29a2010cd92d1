from __future__ import annotations

import jellyfish

from quotelog_core.db.enums import NamePartType
from resolution_service.person_resolution.names import NameParts


def phonetic_codes(part: str) -> list[str]:
    """Metaphone and NYSIIS codes for one name part, de-duplicated, order kept."""
    part = part.strip().lower()
    if not part:
        return []
    codes = [jellyfish.metaphone(part), jellyfish.nysiis(part)]
    return list(dict.fromkeys(c for c in codes if c))


def phonetic_rows(parts: NameParts) -> list[tuple[str, str, NamePartType]]:
    """(name_part, code, part_type) rows for the phonetic index."""
    rows: list[tuple[str, str, NamePartType]] = []
    for value, part_type in (
        (parts.last, NamePartType.last),
        (parts.first, NamePartType.first),
        (parts.middle, NamePartType.middle),
    ):
        for token in value.split():
            rows.extend((token, code, part_type) for code in phonetic_codes(token))
    return rows
