"""Services behind the HTTP endpoints.

Each service reads through :class:`~jskos_api.store.JskosStores` and returns
plain JSON documents. Paginated listings are returned as :class:`Page`
objects carrying the total number of matches next to the current window.
"""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

from jskos_api.concepts import ConceptGraphAccessor
from jskos_api.inference import MappingInferenceEngine
from jskos_api.mappings import (
    MappingQueryBuilder,
    SchemeWhitelists,
    check_whitelists,
    mapping_identifiers,
    validate_mapping,
)
from jskos_api.predicates import (
    MATCH_ALL,
    ContainsText,
    Equals,
    Exists,
    FieldMatch,
    Prefix,
    all_of,
    any_of,
    field_in,
)
from jskos_api.ranking import SearchRanking, first_notation
from jskos_api.schemes import SchemeResolver, split_values
from jskos_common.errors import EntityNotFoundError, InvalidBodyError, MalformedRequestError
from jskos_common.logging import get_correlation_id, get_logger, with_fields
from jskos_common.observability import MetricsProvider, observe_duration

if TYPE_CHECKING:
    from collections.abc import Sequence

    from jskos_api.predicates import Predicate
    from jskos_api.schemas import InferenceQuery, MappingQuery, Mode
    from jskos_api.store import JskosStores
    from jskos_common.settings import MappingsConfig
    from jskos_common.types import JsonObject, JsonValue

__all__ = [
    "ConceptService",
    "ConcordanceService",
    "MappingService",
    "Page",
    "Pagination",
    "SchemeService",
]

logger = get_logger(__name__)

SEARCH_LANGUAGES: Final[tuple[str, ...]] = ("de", "en")
SUGGEST_NOTATION_PATHS: Final[tuple[str, ...]] = (
    "from.memberSet",
    "to.memberSet",
    "to.memberList",
    "to.memberChoice",
)

type Suggestions = list[JsonValue]
"""OpenSearch Suggest payload ``[search, completions, descriptions, uris]``."""


@dataclass(frozen=True, slots=True)
class Page:
    """One window of a listing plus the number of matches overall."""

    items: list[JsonObject] = field(default_factory=list)
    total_count: int = 0


@dataclass(frozen=True, slots=True)
class Pagination:
    """Default and maximum page sizes."""

    default_limit: int = 100
    max_limit: int = 10000

    def limit(self, requested: int | None) -> int:
        """Return the effective page size for ``requested``."""
        if requested is None:
            return self.default_limit
        return min(requested, self.max_limit)

    def window[T](self, items: Sequence[T], offset: int, limit: int | None) -> list[T]:
        """Slice ``items`` to the requested page."""
        return list(items[offset : offset + self.limit(limit)])


def _target_count(mapping: JsonObject) -> int:
    bundle = mapping.get("to")
    if not isinstance(bundle, dict):
        return 0
    return sum(
        len(members)
        for container in ("memberSet", "memberList", "memberChoice")
        if isinstance(members := bundle.get(container), list)
    )


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class MappingService:
    """Mapping listing, inference, creation and mapping statistics.

    Parameters
    ----------
    stores : JskosStores
        Backing stores.
    pagination : Pagination, optional
        Page size limits. Defaults to ``Pagination()``.
    cardinality : str, optional
        Cardinality applied when a request does not give one. Defaults to
        ``"1-to-n"``.
    default_depth : int | None, optional
        Inference depth used when a request gives none. None walks every
        ancestor.
    base_url : str, optional
        Public base URL; ``get_mapping`` also accepts ids relative to
        ``<base_url>mappings/`` and new mappings get URIs below it.
    whitelists : SchemeWhitelists | None, optional
        Schemes allowed in created mappings. Defaults to allowing every scheme.
    metrics : MetricsProvider | None, optional
        Metrics provider. Defaults to :meth:`MetricsProvider.default`.
    """

    def __init__(
        self,
        stores: JskosStores,
        *,
        pagination: Pagination | None = None,
        cardinality: str = "1-to-n",
        default_depth: int | None = None,
        base_url: str = "",
        whitelists: SchemeWhitelists | None = None,
        metrics: MetricsProvider | None = None,
    ) -> None:
        self._stores = stores
        self.pagination = pagination or Pagination()
        self.cardinality = cardinality
        self.base_url = base_url
        self.whitelists = whitelists or SchemeWhitelists()
        self.metrics = metrics or MetricsProvider.default()
        self.schemes = SchemeResolver(stores.schemes)
        self.concepts = ConceptGraphAccessor(stores.concepts)
        self.builder = MappingQueryBuilder(
            self.schemes, stores.concordances, stores.annotations
        )
        self.engine = MappingInferenceEngine(
            self.builder,
            stores.mappings,
            self.concepts,
            self.schemes,
            default_depth=default_depth,
        )

    @classmethod
    def from_config(
        cls,
        stores: JskosStores,
        config: MappingsConfig,
        *,
        default_depth: int | None = None,
        base_url: str = "",
        whitelists: SchemeWhitelists | None = None,
        metrics: MetricsProvider | None = None,
    ) -> MappingService:
        """Build a service from :class:`~jskos_common.settings.MappingsConfig`."""
        return cls(
            stores,
            pagination=Pagination(config.default_limit, config.max_limit),
            cardinality=config.cardinality,
            default_depth=default_depth,
            base_url=base_url,
            whitelists=whitelists,
            metrics=metrics,
        )

    async def query_mappings(self, query: MappingQuery) -> Page:
        """Return the requested window of mappings matching ``query``."""
        if query.cardinality is None:
            query = query.model_copy(update={"cardinality": self.cardinality})
        with (
            observe_duration(
                self.metrics,
                "query_mappings",
                component="mappings",
                correlation_id=get_correlation_id(),
            ) as observation,
            with_fields(logger, operation="query_mappings") as log,
        ):
            predicate = await self.builder.build(query)
            items = await self._stores.mappings.find(
                predicate,
                skip=query.offset,
                limit=self.pagination.limit(query.limit),
                sort=self.builder.sort_spec(query),
            )
            total = await self._stores.mappings.count(predicate)
            log.info("Mappings queried", extra={"result_count": len(items), "total_count": total})
            observation.mark_success()
        return Page(items, total)

    async def infer_mappings(self, query: InferenceQuery) -> Page:
        """Return the requested window of stored or inferred mappings.

        Raises
        ------
        MalformedRequestError
            If ``to`` is given, ``direction`` is not ``forward`` or
            ``toScheme`` is missing.
        """
        with (
            observe_duration(
                self.metrics,
                "infer_mappings",
                component="mappings",
                correlation_id=get_correlation_id(),
            ) as observation,
            with_fields(logger, operation="infer_mappings") as log,
        ):
            results = await self.engine.infer(query)
            items = self.pagination.window(results, query.offset, query.limit)
            log.info(
                "Mappings inferred",
                extra={"concept": query.from_, "result_count": len(results)},
            )
            observation.mark_success()
        return Page(items, len(results))

    async def get_mapping(self, mapping_id: str) -> JsonObject:
        """Return one mapping by URI, identifier or local id.

        Raises
        ------
        MalformedRequestError
            If ``mapping_id`` is empty.
        EntityNotFoundError
            If no mapping matches.
        """
        if not mapping_id:
            msg = "Please provide a non-empty mapping id."
            raise MalformedRequestError(msg)
        candidates = [mapping_id]
        if self.base_url:
            candidates.append(f"{self.base_url}mappings/{mapping_id}")
        mapping = await self._stores.mappings.find_one(
            any_of([field_in(("uri", "identifier"), candidates), field_in(("_id",), [mapping_id])])
        )
        if mapping is None:
            msg = f"Mapping with id {mapping_id} could not be found."
            raise EntityNotFoundError(msg, context={"id": mapping_id})
        return mapping

    async def create_mapping(self, body: object) -> JsonObject:
        """Validate and store a new mapping.

        The stored mapping gets fresh ``created``/``modified`` timestamps, a URI
        below ``<base_url>mappings/`` and content identifiers. A submitted URI
        outside that namespace is kept as an additional identifier.

        Parameters
        ----------
        body : object
            Decoded JSON request body.

        Returns
        -------
        JsonObject
            The mapping as stored.

        Raises
        ------
        MalformedBodyError
            If ``body`` is not a JSON object.
        InvalidBodyError
            If the mapping is invalid, has ``partOf``, has more than one target
            concept under a ``1-to-1`` configuration, or uses a scheme that is
            not whitelisted.
        """
        with (
            observe_duration(
                self.metrics,
                "create_mapping",
                component="mappings",
                correlation_id=get_correlation_id(),
            ) as observation,
            with_fields(logger, operation="create_mapping") as log,
        ):
            mapping = dict(validate_mapping(body))
            if "partOf" in mapping:
                msg = "Property `partOf` is currently not allowed."
                raise InvalidBodyError(msg)
            if self.cardinality == "1-to-1" and _target_count(mapping) > 1:
                msg = "Only 1-to-1 mappings are supported."
                raise InvalidBodyError(msg)
            check_whitelists(mapping, self.whitelists)

            now = datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
            mapping["created"] = now
            mapping["modified"] = now
            mapping.pop("_id", None)
            namespace = f"{self.base_url}mappings/"
            submitted = mapping.get("uri")
            local_id = str(uuid.uuid4())
            if isinstance(submitted, str) and submitted:
                candidate = submitted.removeprefix(namespace)
                if submitted.startswith(namespace) and _is_uuid(candidate):
                    local_id = candidate
                else:
                    identifiers = mapping.get("identifier")
                    mapping["identifier"] = [
                        *(identifiers if isinstance(identifiers, list) else []),
                        submitted,
                    ]
            mapping["_id"] = local_id
            mapping["uri"] = f"{namespace}{local_id}"
            mapping["identifier"] = mapping_identifiers(mapping)

            await self._stores.mappings.insert_one(mapping)
            log.info("Mapping created", extra={"uri": mapping["uri"]})
            observation.mark_success()
        return mapping

    async def get_mapping_schemes(
        self,
        from_: str | None = None,
        to: str | None = None,
        *,
        mode: Mode = "or",
        offset: int = 0,
        limit: int | None = None,
    ) -> Page:
        """Return the schemes used by matching mappings with usage counts.

        Each scheme carries ``fromCount`` and/or ``toCount``: the number of
        matching mappings using it as ``fromScheme`` and ``toScheme``.
        """
        parts: list[Predicate] = []
        if from_:
            parts.append(field_in(("from.memberSet.uri", "from.memberSet.notation"), [from_]))
        if to:
            parts.append(
                field_in(
                    (
                        "to.memberSet.uri",
                        "to.memberSet.notation",
                        "to.memberChoice.uri",
                        "to.memberChoice.notation",
                    ),
                    [to],
                )
            )
        predicate = any_of(parts) if mode == "or" and parts else all_of(parts)
        schemes: dict[str, JsonObject] = {}
        for side, key in (("fromScheme", "fromCount"), ("toScheme", "toCount")):
            for scheme, count in await self._stores.mappings.count_by(predicate, side):
                if not isinstance(scheme, dict) or not isinstance(scheme.get("uri"), str):
                    continue
                entry = schemes.setdefault(str(scheme["uri"]), dict(scheme))
                previous = entry.get(key)
                entry[key] = (previous if isinstance(previous, int) else 0) + count
        listed = list(schemes.values())
        return Page(self.pagination.window(listed, offset, limit), len(listed))

    async def get_notation_suggestions(
        self,
        search: str | None,
        *,
        voc: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[Suggestions, int]:
        """Suggest concept notations used in mappings, most frequent first.

        Returns
        -------
        tuple[Suggestions, int]
            ``[search, notations, counts, []]`` and the number of distinct
            notations found.
        """
        if not search:
            return ["", [], [], []], 0
        vocs = split_values(voc)
        scheme_filter: Predicate = MATCH_ALL
        if vocs:
            scheme_filter = field_in(
                (
                    "fromScheme.uri",
                    "fromScheme.notation",
                    "toScheme.uri",
                    "toScheme.notation",
                ),
                vocs,
            )
        notation_filter = any_of(
            FieldMatch(f"{path}.notation", Prefix(search)) for path in SUGGEST_NOTATION_PATHS
        )
        mappings = await self._stores.mappings.find(all_of([scheme_filter, notation_filter]))
        counts: Counter[str] = Counter()
        wanted = search.casefold()
        for mapping in mappings:
            for path in SUGGEST_NOTATION_PATHS:
                side, container = path.split(".")
                bundle = mapping.get(side)
                members = bundle.get(container) if isinstance(bundle, dict) else None
                if not isinstance(members, list):
                    continue
                for member in members:
                    notations = member.get("notation") if isinstance(member, dict) else None
                    for notation in notations if isinstance(notations, list) else ():
                        if isinstance(notation, str) and notation.casefold().startswith(wanted):
                            counts[notation] += 1
        ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        window = self.pagination.window(ordered, offset, limit)
        return [search, [n for n, _ in window], [c for _, c in window], []], len(ordered)


class ConceptService:
    """Concept lookups, hierarchy navigation and label search.

    Parameters
    ----------
    stores : JskosStores
        Backing stores.
    pagination : Pagination, optional
        Page size limits.
    ranking : SearchRanking, optional
        Scorer for search and suggest results.
    """

    def __init__(
        self,
        stores: JskosStores,
        *,
        pagination: Pagination | None = None,
        ranking: SearchRanking | None = None,
    ) -> None:
        self._stores = stores
        self.pagination = pagination or Pagination()
        self.ranking = ranking or SearchRanking()
        self.schemes = SchemeResolver(stores.schemes)
        self.graph = ConceptGraphAccessor(stores.concepts)

    async def _page(self, predicate: Predicate, offset: int, limit: int | None) -> Page:
        items = await self._stores.concepts.find(
            predicate, skip=offset, limit=self.pagination.limit(limit)
        )
        return Page(items, await self._stores.concepts.count(predicate))

    async def get_details(self, uri: str | None, *, offset: int = 0, limit: int | None = None) -> Page:
        """Return the concepts with the given pipe-delimited URIs."""
        uris = split_values(uri)
        if not uris:
            return Page()
        return await self._page(field_in(("uri",), uris), offset, limit)

    async def get_top(self, uri: str | None, *, offset: int = 0, limit: int | None = None) -> Page:
        """Return the top concepts of scheme ``uri``, or of every scheme."""
        if uri:
            scheme_uris = await self.schemes.uris_for([uri])
            predicate = field_in(("topConceptOf.uri",), scheme_uris)
        else:
            predicate = FieldMatch("topConceptOf", Exists())
        return await self._page(predicate, offset, limit)

    async def get_concepts(
        self, uri: str | None, *, offset: int = 0, limit: int | None = None
    ) -> Page:
        """Return the concepts of scheme ``uri``, or all concepts."""
        predicate: Predicate = MATCH_ALL
        if uri:
            scheme_uris = await self.schemes.uris_for([uri])
            predicate = field_in(("inScheme.uri",), scheme_uris)
        return await self._page(predicate, offset, limit)

    async def get_narrower(self, uri: str | None) -> list[JsonObject]:
        """Return the concepts directly below ``uri``."""
        return await self.graph.narrower(uri or "")

    async def get_ancestors(self, uri: str | None) -> list[JsonObject]:
        """Return the ancestors of ``uri``, root first."""
        if not uri:
            return []
        return await self.graph.ancestors(uri)

    async def _search(self, search: str, voc: str | None) -> list[JsonObject]:
        if not search:
            return []
        text = ContainsText(search)
        label_paths = [
            f"{label}.{language}"
            for label in ("prefLabel", "altLabel")
            for language in SEARCH_LANGUAGES
        ]
        predicate = any_of(
            [
                FieldMatch("uri", Equals(search)),
                FieldMatch("notation", text),
                *(FieldMatch(path, text) for path in label_paths),
            ]
        )
        if voc:
            scheme_uris = await self.schemes.uris_for(split_values(voc))
            predicate = all_of([predicate, field_in(("inScheme.uri",), scheme_uris)])
        return self.ranking.rank(await self._stores.concepts.find(predicate), search)

    async def search(
        self,
        search: str | None,
        *,
        voc: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page:
        """Return concepts matching ``search`` ordered by relevance."""
        results = await self._search(search or "", voc)
        return Page(self.pagination.window(results, offset, limit), len(results))

    async def suggest(
        self,
        search: str | None,
        *,
        voc: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[Suggestions, int]:
        """Return search results in OpenSearch Suggest format.

        Labels read ``"<notation> <prefLabel>"`` with the German label
        preferred over the English one; either part may be absent.
        """
        term = search or ""
        results = await self._search(term, voc)
        labels: list[JsonValue] = []
        descriptions: list[JsonValue] = []
        uris: list[JsonValue] = []
        for concept in self.pagination.window(results, offset, limit):
            pref_label = concept.get("prefLabel")
            label = ""
            if isinstance(pref_label, dict):
                label = str(pref_label.get("de") or pref_label.get("en") or "")
            labels.append(" ".join(part for part in (first_notation(concept), label) if part))
            descriptions.append("")
            uris.append(concept.get("uri"))
        return [term, labels, descriptions, uris], len(results)


class SchemeService:
    """Concept scheme listing."""

    def __init__(self, stores: JskosStores, *, pagination: Pagination | None = None) -> None:
        self._stores = stores
        self.pagination = pagination or Pagination()

    async def get_schemes(
        self, uri: str | None = None, *, offset: int = 0, limit: int | None = None
    ) -> Page:
        """Return every scheme, or those whose URI or identifier is in pipe-delimited ``uri``."""
        predicate: Predicate = MATCH_ALL
        if uris := split_values(uri):
            predicate = field_in(("uri", "identifier"), uris)
        store = self._stores.schemes
        items = await store.find(predicate, skip=offset, limit=self.pagination.limit(limit))
        return Page(items, await store.count(predicate))


class ConcordanceService:
    """Concordance listing."""

    def __init__(self, stores: JskosStores, *, pagination: Pagination | None = None) -> None:
        self._stores = stores
        self.pagination = pagination or Pagination()

    async def get_concordances(  # noqa: PLR0913
        self,
        *,
        uri: str | None = None,
        from_scheme: str | None = None,
        to_scheme: str | None = None,
        creator: str | None = None,
        mode: Mode = "and",
        offset: int = 0,
        limit: int | None = None,
    ) -> Page:
        """Return concordances matching the given conditions.

        ``mode`` combines the conditions (default ``and``). Schemes match by
        URI or notation; creators match the German or English name exactly.
        """
        conditions: list[Predicate] = []
        if uri:
            conditions.append(field_in(("uri",), split_values(uri)))
        for side, value in (("from", from_scheme), ("to", to_scheme)):
            if value:
                conditions.append(
                    field_in((f"{side}Scheme.uri", f"{side}Scheme.notation"), split_values(value))
                )
        if creator:
            conditions.append(
                field_in(
                    tuple(f"creator.prefLabel.{language}" for language in SEARCH_LANGUAGES),
                    split_values(creator),
                )
            )
        predicate = any_of(conditions) if mode == "or" and conditions else all_of(conditions)
        store = self._stores.concordances
        items = await store.find(predicate, skip=offset, limit=self.pagination.limit(limit))
        return Page(items, await store.count(predicate))
