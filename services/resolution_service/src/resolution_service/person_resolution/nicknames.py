"""
First-name equivalence: identical, missing, initial or same nickname cluster.

Used to gate surname matches so that people who merely share a surname
("Jesse Jackson", "Jaren Jackson") are never treated as candidates.
"""

from __future__ import annotations

from typing import Literal

_CLUSTERS: dict[str, tuple[str, ...]] = {
    "william": ("will", "bill", "billy", "willy", "liam"),
    "robert": ("rob", "bob", "bobby", "robbie", "bert"),
    "james": ("jim", "jimmy", "jamie"),
    "john": ("johnny", "jon", "jack"),
    "elizabeth": ("liz", "lizzy", "beth", "betty", "eliza"),
    "margaret": ("maggie", "meg", "peggy", "marge"),
    "richard": ("rick", "rich", "dick", "ricky"),
    "michael": ("mike", "mikey", "mick"),
    "thomas": ("tom", "tommy"),
    "christopher": ("chris", "kit"),
    "jennifer": ("jen", "jenny"),
    "katherine": ("kate", "kathy", "kat", "katie", "catherine"),
    "joseph": ("joe", "joey"),
    "benjamin": ("ben", "benny"),
    "daniel": ("dan", "danny"),
    "matthew": ("matt", "matty"),
    "alexander": ("alex", "xander"),
    "nicholas": ("nick", "nicky"),
    "anthony": ("tony",),
    "donald": ("don", "donny"),
    "edward": ("ed", "eddie", "ted", "teddy"),
    "charles": ("charlie", "chuck"),
    "timothy": ("tim", "timmy"),
    "patrick": ("pat", "paddy"),
    "steven": ("steve",),
    "stephen": ("steve",),
    "andrew": ("andy", "drew"),
    "joshua": ("josh",),
    "david": ("dave", "davy"),
    "samuel": ("sam", "sammy"),
    "jonathan": ("jon", "jonny"),
    "peter": ("pete",),
    "gregory": ("greg",),
    "raymond": ("ray",),
    "lawrence": ("larry",),
    "gerald": ("jerry", "gerry"),
    "ronald": ("ron", "ronnie"),
    "kenneth": ("ken", "kenny"),
    "harold": ("harry", "hal"),
    "henry": ("hank", "harry"),
    "albert": ("al", "bert"),
    "walter": ("walt", "wally"),
    "arthur": ("art",),
    "frederick": ("fred", "freddy", "rick"),
}


def _intern(clusters: dict[str, tuple[str, ...]]) -> dict[str, frozenset[str]]:
    membership: dict[str, set[str]] = {}
    for canonical, variants in clusters.items():
        for name in (canonical, *variants):
            membership.setdefault(name, set()).add(canonical)
    return {name: frozenset(ids) for name, ids in membership.items()}


# name -> ids of every cluster it belongs to ("harry" sits in both harold and henry).
NICKNAME_CLUSTERS: dict[str, frozenset[str]] = _intern(_CLUSTERS)

FirstNameRelation = Literal["identical", "missing", "initial", "nickname"]


def _is_initial_of(short: str, full: str) -> bool:
    if len(short) == 1:
        return full.startswith(short)
    return len(short) == 2 and short.endswith(".") and full.startswith(short[0])


def first_name_relation(a: str, b: str) -> FirstNameRelation | None:
    """How two lowercased first names relate, or None when they are incompatible."""
    if a == b:
        return "identical"
    if not a or not b:
        return "missing"
    if _is_initial_of(a, b) or _is_initial_of(b, a):
        return "initial"
    clusters_a = NICKNAME_CLUSTERS.get(a)
    clusters_b = NICKNAME_CLUSTERS.get(b)
    if clusters_a and clusters_b and clusters_a & clusters_b:
        return "nickname"
    return None


def first_names_compatible(a: str, b: str) -> bool:
    return first_name_relation(a, b) is not None
