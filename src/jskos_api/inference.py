"""Inference of mappings through the broader hierarchy of a concept.

The engine first looks for mappings stored for the requested concept itself.
Without a result it walks up the concept's broader chain, one ancestor at a
time, and stops at the first ancestor that has a mapping into the target
scheme. Mappings found on an ancestor are returned as synthetic mappings for
the requested concept, with the relation weakened according to
:func:`jskos_api.relations.weaken`.

Examples
--------
>>> from jskos_api.inference import MappingInferenceEngine
>>> MappingInferenceEngine.__name__
'MappingInferenceEngine'
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from jskos_api.mappings import mapping_identifiers
from jskos_api.ranking import first_notation
from jskos_api.relations import Relation, inference_sources, weaken
from jskos_api.schemes import is_uri, split_values
from jskos_common.errors import MalformedRequestError
from jskos_common.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from jskos_api.concepts import ConceptGraphAccessor
    from jskos_api.mappings import MappingFilters, MappingQueryBuilder
    from jskos_api.schemas import InferenceQuery
    from jskos_api.schemes import SchemeResolver
    from jskos_api.store import EntityStore, SortSpec
    from jskos_common.types import JsonObject

__all__ = ["MappingInferenceEngine"]

logger = get_logger(__name__)


class MappingInferenceEngine:
    """Derive mappings for a concept from mappings of its ancestors.

    Parameters
    ----------
    builder : MappingQueryBuilder
        Builds the filter groups shared by every hop.
    mappings : EntityStore
        Mapping store queried once per hop.
    concepts : ConceptGraphAccessor
        Resolves the starting concept and walks its broader chain.
    schemes : SchemeResolver
        Resolves ``fromScheme`` for notation lookups.
    default_depth : int | None, optional
        Number of ancestors walked when the request sets no ``depth``.
        Defaults to None, which walks every ancestor.
    """

    def __init__(
        self,
        builder: MappingQueryBuilder,
        mappings: EntityStore,
        concepts: ConceptGraphAccessor,
        schemes: SchemeResolver,
        *,
        default_depth: int | None = None,
    ) -> None:
        self._builder = builder
        self._mappings = mappings
        self._concepts = concepts
        self._schemes = schemes
        self.default_depth = default_depth

    @staticmethod
    def validate(query: InferenceQuery) -> None:
        """Reject parameter combinations inference is not defined for.

        Raises
        ------
        MalformedRequestError
            If ``to`` is given, ``direction`` is not ``forward`` or
            ``toScheme`` is missing.
        """
        if query.to:
            msg = 'Query parameter "to" is not supported in /mappings/infer.'
            raise MalformedRequestError(msg, context={"parameter": "to"})
        if query.direction != "forward":
            msg = 'Only direction "forward" is supported in /mappings/infer.'
            raise MalformedRequestError(msg, context={"parameter": "direction"})
        if not query.to_scheme:
            msg = 'Query parameter "toScheme" is required in /mappings/infer.'
            raise MalformedRequestError(msg, context={"parameter": "toScheme"})

    async def infer(self, query: InferenceQuery) -> list[JsonObject]:
        """Return stored or inferred mappings from ``query.from_`` into ``query.to_scheme``.

        Parameters
        ----------
        query : InferenceQuery
            Inference request. ``offset``/``limit`` are not applied here.

        Returns
        -------
        list[JsonObject]
            Directly stored mappings of the concept (unchanged), else the
            synthetic mappings derived from the nearest ancestor that has
            any, else an empty list.

        Raises
        ------
        MalformedRequestError
            See :meth:`validate`. Raised before any store access.
        """
        self.validate(query)
        if not query.from_ or not query.from_scheme:
            return []

        query = query.model_copy(update={"cardinality": "1-to-1"})
        filters = await self._builder.filters(query)
        sort = self._builder.sort_spec(query)
        direct = await self._mappings.find(filters.predicate(), sort=sort)
        if direct or query.depth == 0:
            return direct

        concept = await self._resolve_concept(query.from_, query.from_scheme)
        if concept is None:
            return []
        sources = inference_sources(split_values(query.type), strict=query.strict)
        if not sources:
            logger.debug(
                "No inferable relation requested",
                extra={"operation": "infer_mappings", "requested": query.type},
            )
            return []

        uri = str(concept["uri"])
        depth = query.depth if query.depth is not None else self.default_depth
        hops = 0
        async for ancestor in self._concepts.broader_chain(uri, depth=depth):
            hops += 1
            found = await self._mappings_from(ancestor, filters, sources, sort)
            logger.debug(
                "Checked ancestor",
                extra={
                    "operation": "infer_mappings",
                    "concept": uri,
                    "ancestor": ancestor.get("uri"),
                    "hop": hops,
                    "found": len(found),
                },
            )
            if found:
                return [
                    _synthesize(mapping, concept, hops=hops, sources=sources) for mapping in found
                ]
        return []

    async def _resolve_concept(self, reference: str, from_scheme: str) -> JsonObject | None:
        if is_uri(reference):
            return await self._concepts.resolve_one(reference)
        scheme_uris = await self._schemes.uris_for(split_values(from_scheme))
        return await self._concepts.resolve_notation(reference, scheme_uris)

    async def _mappings_from(
        self,
        ancestor: JsonObject,
        filters: MappingFilters,
        sources: Sequence[Relation],
        sort: SortSpec,
    ) -> list[JsonObject]:
        ancestor_uri = ancestor.get("uri")
        if not isinstance(ancestor_uri, str):
            return []
        predicate = filters.replace(
            concepts=self._builder.concept_filter([ancestor_uri], []),
            types=self._builder.type_filter(sources),
        ).predicate()
        return await self._mappings.find(predicate, sort=sort)


def _source_relation(mapping: JsonObject, sources: Sequence[Relation]) -> Relation:
    types = mapping.get("type")
    if not isinstance(types, list) or not types:
        return Relation.GENERIC
    for value in types:
        relation = Relation.parse(value) if isinstance(value, str) else None
        if relation is not None and relation in sources:
            return relation
    return Relation.GENERIC


def _synthesize(
    mapping: JsonObject, concept: JsonObject, *, hops: int, sources: Sequence[Relation]
) -> JsonObject:
    member: JsonObject = {"uri": concept["uri"]}
    notation = first_notation(concept)
    if notation is not None:
        member["notation"] = [notation]
    inferred: JsonObject = {
        "from": {"memberSet": [member]},
        "fromScheme": mapping.get("fromScheme"),
        "to": mapping.get("to"),
        "toScheme": mapping.get("toScheme"),
    }
    if isinstance(mapping.get("uri"), str):
        inferred["source"] = [{"uri": mapping["uri"]}]
    inferred["type"] = [str(weaken(_source_relation(mapping, sources), hops))]
    inferred["identifier"] = mapping_identifiers(inferred)
    return inferred
