"""Entity store interface and the in-process implementation.

Every component reads concepts, schemes, mappings, concordances and annotations through
:class:`EntityStore`. :class:`MemoryEntityStore` interprets predicates in
process over a list of documents; ``jskos_api.mongo_store`` provides the
document database adapter.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from jskos_api.predicates import evaluate, resolve_path
from jskos_common.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from jskos_api.predicates import Predicate
    from jskos_common.types import JsonObject, JsonValue

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "EntityStore",
    "JskosStores",
    "MemoryEntityStore",
    "SortSpec",
]

logger = get_logger(__name__)

ASCENDING = 1
DESCENDING = -1

type SortSpec = Sequence[tuple[str, int]]
"""Sort keys as ``(dotted path, ASCENDING | DESCENDING)`` pairs, most significant first."""


@runtime_checkable
class EntityStore(Protocol):
    """Access to one collection of JSKOS documents."""

    async def find(
        self,
        predicate: Predicate,
        *,
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec | None = None,
    ) -> list[JsonObject]:
        """Return matching documents, sorted, then windowed by ``skip``/``limit``."""
        ...

    async def count(self, predicate: Predicate) -> int:
        """Return the number of matching documents."""
        ...

    async def find_one(self, predicate: Predicate) -> JsonObject | None:
        """Return the first matching document, or None."""
        ...

    async def count_by(self, predicate: Predicate, path: str) -> list[tuple[JsonValue, int]]:
        """Group matching documents by the value at ``path`` and count each group.

        Documents without a value at ``path`` form a group keyed None.
        """
        ...

    async def insert_one(self, document: JsonObject) -> None:
        """Store ``document``."""
        ...


def _sort_key(value: JsonValue) -> tuple[int, float | str]:
    # Missing sorts first, then numbers, then strings.
    if value is None:
        return (0, 0.0)
    if isinstance(value, bool):
        return (1, float(value))
    if isinstance(value, int | float):
        return (1, float(value))
    if isinstance(value, str):
        return (2, value)
    return (3, str(value))


def _first_value(document: JsonObject, path: str) -> JsonValue:
    values = resolve_path(document, path)
    return values[0] if values else None


class MemoryEntityStore:
    """EntityStore over an in-memory list of documents.

    Documents are deep-copied on the way in and out, so callers cannot mutate
    stored state. ``calls`` counts store operations, which lets tests assert
    that a request performed no queries.

    Parameters
    ----------
    documents : Iterable[JsonObject], optional
        Initial documents. Defaults to an empty collection.
    name : str, optional
        Collection name used in log entries. Defaults to "memory".

    Examples
    --------
    >>> import asyncio
    >>> from jskos_api.predicates import Equals, FieldMatch
    >>> store = MemoryEntityStore([{"uri": "urn:a"}, {"uri": "urn:b"}])
    >>> asyncio.run(store.count(FieldMatch("uri", Equals("urn:b"))))
    1
    """

    def __init__(self, documents: Iterable[JsonObject] = (), *, name: str = "memory") -> None:
        self.name = name
        self.calls = 0
        self._documents: list[JsonObject] = [copy.deepcopy(doc) for doc in documents]

    def __len__(self) -> int:
        return len(self._documents)

    def add(self, *documents: JsonObject) -> None:
        """Append ``documents`` to the collection."""
        self._documents.extend(copy.deepcopy(doc) for doc in documents)

    def _matching(self, predicate: Predicate) -> list[JsonObject]:
        self.calls += 1
        return [doc for doc in self._documents if evaluate(predicate, doc)]

    async def find(
        self,
        predicate: Predicate,
        *,
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec | None = None,
    ) -> list[JsonObject]:
        results = self._matching(predicate)
        for path, direction in reversed(tuple(sort or ())):
            results.sort(
                key=lambda doc, p=path: _sort_key(_first_value(doc, p)),
                reverse=direction == DESCENDING,
            )
        end = None if limit is None else skip + limit
        window = results[skip:end]
        logger.debug(
            "Memory store find",
            extra={"operation": "store.find", "collection": self.name, "count": len(window)},
        )
        return [copy.deepcopy(doc) for doc in window]

    async def count(self, predicate: Predicate) -> int:
        return len(self._matching(predicate))

    async def find_one(self, predicate: Predicate) -> JsonObject | None:
        results = await self.find(predicate, limit=1)
        return results[0] if results else None

    async def count_by(self, predicate: Predicate, path: str) -> list[tuple[JsonValue, int]]:
        groups: dict[str, tuple[JsonValue, int]] = {}
        for document in self._matching(predicate):
            value = _first_value(document, path)
            key = json.dumps(value, sort_keys=True)
            first, count = groups.get(key, (value, 0))
            groups[key] = (first, count + 1)
        return [(copy.deepcopy(value), count) for value, count in groups.values()]

    async def insert_one(self, document: JsonObject) -> None:
        self.calls += 1
        self.add(document)


@dataclass(slots=True)
class JskosStores:
    """The collections the API works on."""

    concepts: EntityStore
    schemes: EntityStore
    mappings: EntityStore
    concordances: EntityStore
    annotations: EntityStore

    @classmethod
    def in_memory(
        cls,
        *,
        concepts: Iterable[JsonObject] = (),
        schemes: Iterable[JsonObject] = (),
        mappings: Iterable[JsonObject] = (),
        concordances: Iterable[JsonObject] = (),
        annotations: Iterable[JsonObject] = (),
    ) -> JskosStores:
        """Build stores backed by :class:`MemoryEntityStore`."""
        return cls(
            concepts=MemoryEntityStore(concepts, name="concepts"),
            schemes=MemoryEntityStore(schemes, name="schemes"),
            mappings=MemoryEntityStore(mappings, name="mappings"),
            concordances=MemoryEntityStore(concordances, name="concordances"),
            annotations=MemoryEntityStore(annotations, name="annotations"),
        )
