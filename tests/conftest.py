"""Shared pytest fixtures.

This module provides:
- Factories for concept, scheme and mapping documents
- In-memory stores seeded with a small three-level hierarchy
- An isolated Prometheus registry per test
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import pytest
from prometheus_client import CollectorRegistry

from jskos_api.relations import Relation
from jskos_api.store import JskosStores
from jskos_common.observability import MetricsProvider

if TYPE_CHECKING:
    from jskos_common.types import JsonObject

SOURCE_SCHEME = "urn:s"
TARGET_SCHEME = "urn:t"

type ConceptFactory = Callable[..., JsonObject]
type MappingFactory = Callable[..., JsonObject]


def _concept(
    uri: str,
    *,
    notation: str | None = None,
    broader: list[str] | None = None,
    scheme: str = SOURCE_SCHEME,
    top: bool = False,
    **fields: Any,
) -> JsonObject:
    concept: JsonObject = {"uri": uri, "inScheme": [{"uri": scheme}]}
    if notation is not None:
        concept["notation"] = [notation]
    if broader:
        concept["broader"] = [{"uri": parent} for parent in broader]
    if top:
        concept["topConceptOf"] = [{"uri": scheme}]
    concept.update(fields)
    return concept


def _mapping(
    uri: str | None,
    from_uri: str,
    to_uris: str | list[str],
    *,
    relation: Relation | None = None,
    from_scheme: str = SOURCE_SCHEME,
    to_scheme: str = TARGET_SCHEME,
    **fields: Any,
) -> JsonObject:
    targets = [to_uris] if isinstance(to_uris, str) else to_uris
    mapping: JsonObject = {
        "from": {"memberSet": [{"uri": from_uri}]},
        "fromScheme": {"uri": from_scheme},
        "to": {"memberSet": [{"uri": target} for target in targets]},
        "toScheme": {"uri": to_scheme},
    }
    if uri is not None:
        mapping["uri"] = uri
    if relation is not None:
        mapping["type"] = [str(relation)]
    mapping.update(fields)
    return mapping


@pytest.fixture
def concept_factory() -> ConceptFactory:
    """Return a factory for concept documents."""
    return _concept


@pytest.fixture
def mapping_factory() -> MappingFactory:
    """Return a factory for mapping documents."""
    return _mapping


@pytest.fixture
def schemes() -> list[JsonObject]:
    """Source scheme (with an alternate identifier) and target scheme."""
    return [
        {"uri": SOURCE_SCHEME, "notation": ["S"], "identifier": ["http://example.org/alt/s"]},
        {"uri": TARGET_SCHEME, "notation": ["T"]},
    ]


@pytest.fixture
def hierarchy() -> list[JsonObject]:
    """Concepts ``urn:s:1`` > ``urn:s:1.1`` > ``urn:s:1.1.1``."""
    return [
        _concept("urn:s:1", notation="1", top=True, prefLabel={"de": "Wurzel", "en": "Root"}),
        _concept("urn:s:1.1", notation="1.1", broader=["urn:s:1"], prefLabel={"en": "Branch"}),
        _concept(
            "urn:s:1.1.1", notation="1.1.1", broader=["urn:s:1.1"], prefLabel={"en": "Leaf"}
        ),
    ]


@pytest.fixture
def make_stores(
    schemes: list[JsonObject], hierarchy: list[JsonObject]
) -> Callable[..., JskosStores]:
    """Return a builder for in-memory stores seeded with schemes and the hierarchy."""

    def _build(
        *,
        mappings: list[JsonObject] | None = None,
        concepts: list[JsonObject] | None = None,
        concordances: list[JsonObject] | None = None,
        annotations: list[JsonObject] | None = None,
    ) -> JskosStores:
        return JskosStores.in_memory(
            concepts=hierarchy + (concepts or []),
            schemes=schemes,
            mappings=mappings or [],
            concordances=concordances or [],
            annotations=annotations or [],
        )

    return _build


@pytest.fixture
def metrics() -> MetricsProvider:
    """Metrics provider bound to a fresh registry."""
    return MetricsProvider(CollectorRegistry())
