"""Tests for mapping inference through the broader hierarchy.

The fixture hierarchy is ``urn:s:1`` (root) > ``urn:s:1.1`` > ``urn:s:1.1.1``
in scheme ``urn:s``; mappings point into scheme ``urn:t``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from jskos_api.concepts import ConceptGraphAccessor
from jskos_api.inference import MappingInferenceEngine
from jskos_api.mappings import MappingQueryBuilder
from jskos_api.relations import Relation
from jskos_api.schemas import InferenceQuery
from jskos_api.schemes import SchemeResolver
from jskos_common.errors import MalformedRequestError

if TYPE_CHECKING:
    from collections.abc import Callable

    from jskos_api.store import JskosStores
    from jskos_common.types import JsonObject

LEAF = "urn:s:1.1.1"
PARENT = "urn:s:1.1"
ROOT = "urn:s:1"


def _engine(stores: JskosStores) -> MappingInferenceEngine:
    schemes = SchemeResolver(stores.schemes)
    return MappingInferenceEngine(
        MappingQueryBuilder(schemes, stores.concordances, stores.annotations),
        stores.mappings,
        ConceptGraphAccessor(stores.concepts),
        schemes,
    )


async def _infer(stores: JskosStores, **params: object) -> list[JsonObject]:
    query = {"from": LEAF, "fromScheme": "urn:s", "toScheme": "urn:t", **params}
    return await _engine(stores).infer(InferenceQuery.model_validate(query))


def _sources(results: list[JsonObject]) -> list[str]:
    return [result["source"][0]["uri"] for result in results]  # type: ignore[index]


class TestExampleScenario:
    """Inference from a leaf to a mapping on the root."""

    @pytest.mark.asyncio
    async def test_untyped_root_mapping(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """An untyped source stays the generic relation two hops down."""
        stores = make_stores(mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:5")])
        results = await _infer(stores)
        assert len(results) == 1
        inferred = results[0]
        assert inferred["source"] == [{"uri": "urn:m:root"}]
        assert inferred["type"] == [str(Relation.GENERIC)]
        assert inferred["from"] == {"memberSet": [{"uri": LEAF, "notation": ["1.1.1"]}]}
        assert inferred["to"] == {"memberSet": [{"uri": "urn:t:5"}]}
        assert inferred["fromScheme"] == {"uri": "urn:s"}
        assert inferred["toScheme"] == {"uri": "urn:t"}
        assert "uri" not in inferred
        identifiers = inferred["identifier"]
        assert isinstance(identifiers, list)
        assert len(identifiers) == 2


class TestNearestAncestor:
    """The walk stops at the nearest ancestor with mappings."""

    @pytest.mark.asyncio
    async def test_nearer_ancestor_wins(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """A mapping added on the parent replaces the root mapping as source."""
        stores = make_stores(
            mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:1", relation=Relation.EXACT)]
        )
        results = await _infer(stores)
        assert _sources(results) == ["urn:m:root"]
        assert results[0]["type"] == [str(Relation.NARROW)]

        stores.mappings.add(  # type: ignore[attr-defined]
            mapping_factory("urn:m:parent", PARENT, "urn:t:2", relation=Relation.NARROW)
        )
        results = await _infer(stores)
        assert _sources(results) == ["urn:m:parent"]
        assert results[0]["type"] == [str(Relation.NARROW)]

    @pytest.mark.asyncio
    async def test_all_mappings_of_the_hop(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """Every matching mapping of the winning hop is returned."""
        stores = make_stores(
            mappings=[
                mapping_factory("urn:m:a", PARENT, "urn:t:1", relation=Relation.EXACT),
                mapping_factory("urn:m:b", PARENT, "urn:t:2", relation=Relation.RELATED),
                mapping_factory("urn:m:root", ROOT, "urn:t:3"),
            ]
        )
        results = await _infer(stores)
        assert sorted(_sources(results)) == ["urn:m:a", "urn:m:b"]

    @pytest.mark.asyncio
    async def test_direct_mapping_returned_unchanged(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """A mapping stored for the concept itself is returned as stored."""
        direct = mapping_factory("urn:m:leaf", LEAF, "urn:t:9", relation=Relation.CLOSE)
        stores = make_stores(
            mappings=[direct, mapping_factory("urn:m:root", ROOT, "urn:t:1")]
        )
        assert await _infer(stores) == [direct]

    @pytest.mark.asyncio
    async def test_other_target_scheme_ignored(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """Only mappings into toScheme are sources."""
        stores = make_stores(
            mappings=[mapping_factory("urn:m:root", ROOT, "urn:o:1", to_scheme="urn:o")]
        )
        assert await _infer(stores) == []

    @pytest.mark.asyncio
    async def test_one_to_many_sources_ignored(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """Sources must map to a single target concept."""
        stores = make_stores(
            mappings=[
                mapping_factory("urn:m:parent", PARENT, ["urn:t:1", "urn:t:2"]),
                mapping_factory("urn:m:root", ROOT, "urn:t:3"),
            ]
        )
        assert _sources(await _infer(stores)) == ["urn:m:root"]


class TestDepth:
    """Tests for depth limiting."""

    @pytest.mark.parametrize(("depth", "expected"), [(0, 0), (1, 0), (2, 1), (None, 1)])
    @pytest.mark.asyncio
    async def test_depth(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
        depth: int | None,
        expected: int,
    ) -> None:
        """A source two hops up needs depth 2 or unlimited depth."""
        stores = make_stores(mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:1")])
        assert len(await _infer(stores, depth=depth)) == expected

    @pytest.mark.asyncio
    async def test_depth_zero_checks_concept_itself(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """depth=0 still returns the concept's own mappings."""
        stores = make_stores(mappings=[mapping_factory("urn:m:leaf", LEAF, "urn:t:1")])
        assert len(await _infer(stores, depth=0)) == 1

    @pytest.mark.asyncio
    async def test_unlimited_depth_reaches_distant_root(
        self,
        make_stores: Callable[..., JskosStores],
        concept_factory: Callable[..., JsonObject],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """Without depth the walk follows a 120-level chain to the root."""
        chain = [concept_factory("urn:s:c0", notation="c0")]
        chain.extend(
            concept_factory(
                f"urn:s:c{level}", notation=f"c{level}", broader=[f"urn:s:c{level - 1}"]
            )
            for level in range(1, 121)
        )
        stores = make_stores(
            concepts=chain, mappings=[mapping_factory("urn:m:0", "urn:s:c0", "urn:t:0")]
        )
        results = await _infer(stores, **{"from": "urn:s:c120"})
        assert _sources(results) == ["urn:m:0"]

    @pytest.mark.asyncio
    async def test_configured_default_depth(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """A configured default depth applies when the request gives none."""
        stores = make_stores(mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:1")])
        schemes = SchemeResolver(stores.schemes)
        engine = MappingInferenceEngine(
            MappingQueryBuilder(schemes, stores.concordances, stores.annotations),
            stores.mappings,
            ConceptGraphAccessor(stores.concepts),
            schemes,
            default_depth=1,
        )
        query = InferenceQuery.model_validate(
            {"from": LEAF, "fromScheme": "urn:s", "toScheme": "urn:t"}
        )
        assert await engine.infer(query) == []
        assert len(await engine.infer(query.model_copy(update={"depth": 2}))) == 1


class TestTypes:
    """Tests for relation handling."""

    @pytest.mark.asyncio
    async def test_close_weakens_monotonically(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """A closeMatch source is never reported stronger than narrowMatch."""
        stores = make_stores(
            mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:1", relation=Relation.CLOSE)]
        )
        one_hop = await _infer(stores, **{"from": PARENT})
        two_hops = await _infer(stores)
        assert one_hop[0]["type"] == [str(Relation.NARROW)]
        assert two_hops[0]["type"] == [str(Relation.NARROW)]

    @pytest.mark.asyncio
    async def test_strict_skips_close_match(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """strict=true falls back past a closeMatch to the next ancestor."""
        stores = make_stores(
            mappings=[
                mapping_factory("urn:m:parent", PARENT, "urn:t:1", relation=Relation.CLOSE),
                mapping_factory("urn:m:root", ROOT, "urn:t:2", relation=Relation.EXACT),
            ]
        )
        assert _sources(await _infer(stores)) == ["urn:m:parent"]
        assert _sources(await _infer(stores, strict=True)) == ["urn:m:root"]

    @pytest.mark.asyncio
    async def test_strict_without_fallback(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """strict=true with only closeMatch sources yields nothing."""
        stores = make_stores(
            mappings=[mapping_factory("urn:m:parent", PARENT, "urn:t:1", relation=Relation.CLOSE)]
        )
        assert await _infer(stores, strict=True) == []

    @pytest.mark.asyncio
    async def test_requested_related(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """type=relatedMatch only uses relatedMatch sources."""
        stores = make_stores(
            mappings=[
                mapping_factory("urn:m:parent", PARENT, "urn:t:1", relation=Relation.EXACT),
                mapping_factory("urn:m:root", ROOT, "urn:t:2", relation=Relation.RELATED),
            ]
        )
        results = await _infer(stores, type=str(Relation.RELATED))
        assert _sources(results) == ["urn:m:root"]
        assert results[0]["type"] == [str(Relation.RELATED)]

    @pytest.mark.asyncio
    async def test_broad_match_never_inferred(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """broadMatch is not an inferable relation."""
        stores = make_stores(
            mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:1", relation=Relation.BROAD)]
        )
        assert await _infer(stores) == []
        assert await _infer(stores, type=str(Relation.BROAD)) == []


class TestHierarchyDefects:
    """Tests for self-references and cycles."""

    @pytest.mark.asyncio
    async def test_self_reference_skipped(
        self,
        make_stores: Callable[..., JskosStores],
        concept_factory: Callable[..., JsonObject],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """A concept listing itself first as broader uses its second parent."""
        stores = make_stores(
            concepts=[concept_factory("urn:s:x", notation="x", broader=["urn:s:x", ROOT])],
            mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:1")],
        )
        results = await _infer(stores, **{"from": "urn:s:x"})
        assert _sources(results) == ["urn:m:root"]

    @pytest.mark.asyncio
    async def test_cycle_terminates(
        self,
        make_stores: Callable[..., JskosStores],
        concept_factory: Callable[..., JsonObject],
    ) -> None:
        """A broader cycle ends the walk with an empty result."""
        stores = make_stores(
            concepts=[
                concept_factory("urn:s:c1", broader=["urn:s:c2"]),
                concept_factory("urn:s:c2", broader=["urn:s:c1"]),
            ]
        )
        assert await _infer(stores, **{"from": "urn:s:c1"}) == []


class TestResolution:
    """Tests for resolving the starting concept."""

    @pytest.mark.asyncio
    async def test_notation_within_scheme(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
    ) -> None:
        """A notation resolves within fromScheme (here given by notation)."""
        stores = make_stores(mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:1")])
        results = await _infer(stores, **{"from": "1.1.1", "fromScheme": "S"})
        assert _sources(results) == ["urn:m:root"]
        assert results[0]["from"] == {"memberSet": [{"uri": LEAF, "notation": ["1.1.1"]}]}

    @pytest.mark.parametrize("reference", ["urn:s:missing", "9.9", ""])
    @pytest.mark.asyncio
    async def test_unresolvable_is_empty(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
        reference: str,
    ) -> None:
        """Unknown or empty concepts yield an empty result, not an error."""
        stores = make_stores(mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:1")])
        assert await _infer(stores, **{"from": reference}) == []


class TestIllegalParameters:
    """Rejected parameter combinations perform no store queries."""

    @pytest.mark.parametrize(
        "params",
        [
            {"to": "urn:t:1"},
            {"direction": "backward"},
            {"direction": "both"},
            {"toScheme": ""},
        ],
    )
    @pytest.mark.asyncio
    async def test_rejected_without_queries(
        self,
        make_stores: Callable[..., JskosStores],
        mapping_factory: Callable[..., JsonObject],
        params: dict[str, object],
    ) -> None:
        """The request fails with MalformedRequestError before any store access."""
        stores = make_stores(mappings=[mapping_factory("urn:m:root", ROOT, "urn:t:1")])
        with pytest.raises(MalformedRequestError):
            await _infer(stores, **params)
        for store in (stores.concepts, stores.schemes, stores.mappings, stores.concordances):
            assert store.calls == 0  # type: ignore[attr-defined]
