"""Tests for the concept graph accessor."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from jskos_api.concepts import ConceptGraphAccessor, broader_uris
from jskos_api.store import MemoryEntityStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from jskos_common.types import JsonObject


def _accessor(concepts: list[JsonObject]) -> ConceptGraphAccessor:
    return ConceptGraphAccessor(MemoryEntityStore(concepts))


async def _chain(accessor: ConceptGraphAccessor, uri: str, depth: int | None = None) -> list[str]:
    return [str(concept["uri"]) async for concept in accessor.broader_chain(uri, depth=depth)]


class TestBroaderChain:
    """Tests for ConceptGraphAccessor.broader_chain."""

    @pytest.mark.asyncio
    async def test_nearest_first(self, hierarchy: list[JsonObject]) -> None:
        """Ancestors are yielded nearest first."""
        accessor = _accessor(hierarchy)
        assert await _chain(accessor, "urn:s:1.1.1") == ["urn:s:1.1", "urn:s:1"]

    @pytest.mark.asyncio
    async def test_depth(self, hierarchy: list[JsonObject]) -> None:
        """depth bounds the number of ancestors."""
        accessor = _accessor(hierarchy)
        assert await _chain(accessor, "urn:s:1.1.1", depth=1) == ["urn:s:1.1"]
        assert await _chain(accessor, "urn:s:1.1.1", depth=0) == []

    @pytest.mark.asyncio
    async def test_restartable(self, hierarchy: list[JsonObject]) -> None:
        """Each call starts a fresh walk."""
        accessor = _accessor(hierarchy)
        first = await _chain(accessor, "urn:s:1.1.1")
        assert await _chain(accessor, "urn:s:1.1.1") == first

    @pytest.mark.asyncio
    async def test_unknown_concept(self, hierarchy: list[JsonObject]) -> None:
        """An unknown start concept yields nothing."""
        assert await _chain(_accessor(hierarchy), "urn:s:missing") == []

    @pytest.mark.asyncio
    async def test_self_reference_skipped(self, concept_factory: Callable[..., JsonObject]) -> None:
        """A self-referencing broader entry is skipped in favour of the next one."""
        concepts = [
            concept_factory("urn:x:a", broader=["urn:x:a", "urn:x:b"]),
            concept_factory("urn:x:b"),
        ]
        assert await _chain(_accessor(concepts), "urn:x:a") == ["urn:x:b"]

    @pytest.mark.asyncio
    async def test_only_self_reference(self, concept_factory: Callable[..., JsonObject]) -> None:
        """A concept whose only parent is itself has no ancestors."""
        concepts = [concept_factory("urn:x:a", broader=["urn:x:a"])]
        assert await _chain(_accessor(concepts), "urn:x:a") == []

    @pytest.mark.asyncio
    async def test_unresolvable_parent_skipped(
        self, concept_factory: Callable[..., JsonObject]
    ) -> None:
        """Parents missing from the store are skipped."""
        concepts = [
            concept_factory("urn:x:a", broader=["urn:x:missing", "urn:x:b"]),
            concept_factory("urn:x:b"),
        ]
        assert await _chain(_accessor(concepts), "urn:x:a") == ["urn:x:b"]

    @pytest.mark.asyncio
    async def test_cycle_terminates(self, concept_factory: Callable[..., JsonObject]) -> None:
        """Cycles without direct self-reference end the walk."""
        concepts = [
            concept_factory("urn:x:a", broader=["urn:x:b"]),
            concept_factory("urn:x:b", broader=["urn:x:c"]),
            concept_factory("urn:x:c", broader=["urn:x:a"]),
        ]
        assert await _chain(_accessor(concepts), "urn:x:a") == ["urn:x:b", "urn:x:c"]


class TestAccessor:
    """Tests for the remaining accessor operations."""

    @pytest.mark.asyncio
    async def test_ancestors_root_first(self, hierarchy: list[JsonObject]) -> None:
        """ancestors() lists the root first."""
        ancestors = await _accessor(hierarchy).ancestors("urn:s:1.1.1")
        assert [concept["uri"] for concept in ancestors] == ["urn:s:1", "urn:s:1.1"]

    @pytest.mark.asyncio
    async def test_narrower(self, hierarchy: list[JsonObject]) -> None:
        """narrower() returns direct children only."""
        children = await _accessor(hierarchy).narrower("urn:s:1")
        assert [concept["uri"] for concept in children] == ["urn:s:1.1"]

    @pytest.mark.asyncio
    async def test_resolve_notation(self, hierarchy: list[JsonObject]) -> None:
        """Notations resolve within the given schemes only."""
        accessor = _accessor(hierarchy)
        concept = await accessor.resolve_notation("1.1", ["urn:s"])
        assert concept is not None
        assert concept["uri"] == "urn:s:1.1"
        assert await accessor.resolve_notation("1.1", ["urn:other"]) is None

    def test_broader_uris(self) -> None:
        """broader_uris ignores entries without a URI."""
        concept = {"broader": [{"uri": "urn:a"}, {}, {"uri": ""}, "junk"]}
        assert broader_uris(concept) == ["urn:a"]  # type: ignore[arg-type]
