"""SKOS mapping relations and their strength lattice.

Relations are ordered by strength: exact > close > narrow/broad > related.
The generic ``skos:mappingRelation`` (also implied by a mapping without any
``type``) sits outside that order and is never weakened.

Examples
--------
>>> from jskos_api.relations import Relation, weaken
>>> weaken(Relation.CLOSE, hops=1)
<Relation.NARROW: 'http://www.w3.org/2004/02/skos/core#narrowMatch'>
"""

from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterable

    from jskos_common.types import JsonObject

__all__ = [
    "SKOS",
    "Relation",
    "Strength",
    "inference_sources",
    "relation_of",
    "weaken",
]

SKOS: Final[str] = "http://www.w3.org/2004/02/skos/core#"


class Strength(IntEnum):
    """Relation strength; larger is stronger."""

    RELATED = 0
    NARROW_OR_BROAD = 1
    CLOSE = 2
    EXACT = 3


class Relation(StrEnum):
    """SKOS mapping relation URIs."""

    EXACT = f"{SKOS}exactMatch"
    CLOSE = f"{SKOS}closeMatch"
    NARROW = f"{SKOS}narrowMatch"
    BROAD = f"{SKOS}broadMatch"
    RELATED = f"{SKOS}relatedMatch"
    GENERIC = f"{SKOS}mappingRelation"

    @property
    def strength(self) -> Strength | None:
        """Position in the lattice, or None for the generic relation."""
        return _STRENGTHS.get(self)

    @classmethod
    def parse(cls, value: str) -> Relation | None:
        """Return the relation for ``value`` or None when it is not a known relation."""
        try:
            return cls(value)
        except ValueError:
            return None


_STRENGTHS: Final[dict[Relation, Strength]] = {
    Relation.EXACT: Strength.EXACT,
    Relation.CLOSE: Strength.CLOSE,
    Relation.NARROW: Strength.NARROW_OR_BROAD,
    Relation.BROAD: Strength.NARROW_OR_BROAD,
    Relation.RELATED: Strength.RELATED,
}


def relation_of(mapping: JsonObject) -> Relation:
    """Return the primary relation of ``mapping``.

    The first entry of ``type`` decides; a missing, empty or unknown ``type``
    counts as the generic relation.
    """
    types = mapping.get("type")
    if isinstance(types, list) and types and isinstance(types[0], str):
        return Relation.parse(types[0]) or Relation.GENERIC
    return Relation.GENERIC


def weaken(relation: Relation, hops: int) -> Relation:
    """Return the relation reported for a source found ``hops`` ancestors up.

    A descendant of a concept that matches a target exactly or closely is
    narrower than that target, so from the first hop on exact and close
    sources are reported as ``narrowMatch``. Narrower-than is transitive, so
    further hops keep ``narrowMatch``. Narrow, related and generic relations
    are kept unchanged. The result is never stronger than ``relation`` and
    never stronger than the result for ``hops - 1``.

    Parameters
    ----------
    relation : Relation
        Relation of the source mapping.
    hops : int
        Number of broader steps between the requested concept and the source.

    Returns
    -------
    Relation
        Relation to report for the inferred mapping.

    Raises
    ------
    ValueError
        If ``relation`` is ``broadMatch`` (never an inference source) or
        ``hops`` is negative.
    """
    if hops < 0:
        msg = f"hops must be non-negative, got {hops}"
        raise ValueError(msg)
    if relation is Relation.BROAD:
        msg = "broadMatch cannot be propagated to narrower concepts"
        raise ValueError(msg)
    if hops == 0:
        return relation
    if relation in (Relation.EXACT, Relation.CLOSE):
        return Relation.NARROW
    return relation


def inference_sources(requested: Iterable[Relation | str], *, strict: bool) -> list[Relation]:
    """Return the source relations that can yield one of the ``requested`` relations.

    Parameters
    ----------
    requested : Iterable[Relation | str]
        Relations the caller asked for. Empty means any inferable relation.
    strict : bool
        When true, ``closeMatch`` sources are excluded.

    Returns
    -------
    list[Relation]
        Source relations to query, in a stable order. Empty when nothing the
        caller asked for can be inferred.

    Examples
    --------
    >>> [r.name for r in inference_sources([], strict=True)]
    ['GENERIC', 'EXACT', 'NARROW', 'RELATED']
    """
    wanted = {str(value) for value in requested}
    any_relation = not wanted
    sources: list[Relation] = []
    if any_relation or Relation.GENERIC in wanted:
        sources.append(Relation.GENERIC)
    if any_relation or Relation.NARROW in wanted:
        sources.extend((Relation.EXACT, Relation.NARROW))
        if not strict:
            sources.append(Relation.CLOSE)
    if any_relation or Relation.RELATED in wanted:
        sources.append(Relation.RELATED)
    return sources
