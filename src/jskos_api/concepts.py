"""Read access to the concept hierarchy."""

from __future__ import annotations

from typing import TYPE_CHECKING

from jskos_api.predicates import Equals, FieldMatch, all_of, field_in
from jskos_common.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from jskos_api.store import EntityStore
    from jskos_common.types import JsonObject

__all__ = ["ConceptGraphAccessor", "broader_uris"]

logger = get_logger(__name__)


def broader_uris(concept: JsonObject) -> list[str]:
    """Return the URIs listed in ``concept["broader"]``, in order."""
    broader = concept.get("broader")
    if not isinstance(broader, list):
        return []
    uris: list[str] = []
    for entry in broader:
        if isinstance(entry, dict):
            uri = entry.get("uri")
            if isinstance(uri, str) and uri:
                uris.append(uri)
    return uris


class ConceptGraphAccessor:
    """Thin read interface over the concept store.

    Broader links are weak references. A concept that lists itself as broader
    is a known data error: that entry is skipped and the next listed parent is
    tried. Parents already seen on the current walk are skipped as well, so
    cyclic hierarchies terminate.

    Parameters
    ----------
    concepts : EntityStore
        Store holding concept documents.
    """

    def __init__(self, concepts: EntityStore) -> None:
        self._concepts = concepts

    async def resolve_one(self, uri: str) -> JsonObject | None:
        """Return the concept with ``uri``, or None."""
        if not uri:
            return None
        return await self._concepts.find_one(FieldMatch("uri", Equals(uri)))

    async def resolve_notation(
        self, notation: str, scheme_uris: Sequence[str]
    ) -> JsonObject | None:
        """Return the concept with ``notation`` inside one of ``scheme_uris``, or None."""
        if not notation or not scheme_uris:
            return None
        return await self._concepts.find_one(
            all_of(
                [
                    FieldMatch("notation", Equals(notation)),
                    field_in(("inScheme.uri", "topConceptOf.uri"), scheme_uris),
                ]
            )
        )

    async def parent_of(
        self, concept: JsonObject, visited: set[str] | None = None
    ) -> JsonObject | None:
        """Return the first resolvable parent of ``concept``.

        Entries referencing ``concept`` itself, or a URI in ``visited``, are
        skipped. Returns None when no listed parent can be used.
        """
        own_uri = concept.get("uri")
        seen = visited or set()
        for uri in broader_uris(concept):
            if uri == own_uri or uri in seen:
                logger.debug(
                    "Skipping broader entry",
                    extra={"operation": "broader_chain", "concept": own_uri, "broader": uri},
                )
                continue
            parent = await self.resolve_one(uri)
            if parent is not None:
                return parent
        return None

    async def broader_chain(
        self, uri: str, *, depth: int | None = None
    ) -> AsyncIterator[JsonObject]:
        """Yield the ancestors of ``uri``, nearest first.

        Each call starts a fresh walk. The walk ends at a concept without a
        usable parent, after ``depth`` ancestors, or when it would revisit a
        concept.

        Parameters
        ----------
        uri : str
            URI of the starting concept (not yielded itself).
        depth : int | None, optional
            Maximum number of ancestors to yield. None means unbounded.

        Yields
        ------
        JsonObject
            Ancestor concept documents.
        """
        current = await self.resolve_one(uri)
        if current is None:
            return
        visited = {uri}
        hops = 0
        while depth is None or hops < depth:
            parent = await self.parent_of(current, visited)
            if parent is None:
                return
            parent_uri = parent.get("uri")
            if isinstance(parent_uri, str):
                visited.add(parent_uri)
            hops += 1
            yield parent
            current = parent

    async def ancestors(self, uri: str) -> list[JsonObject]:
        """Return the ancestors of ``uri``, root first and nearest parent last."""
        chain = [ancestor async for ancestor in self.broader_chain(uri)]
        chain.reverse()
        return chain

    async def narrower(self, uri: str) -> list[JsonObject]:
        """Return the concepts listing ``uri`` as broader."""
        if not uri:
            return []
        return await self._concepts.find(FieldMatch("broader.uri", Equals(uri)))
