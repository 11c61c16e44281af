"""Translation of mapping search requests into predicates.

:class:`MappingQueryBuilder` turns a :class:`~jskos_api.schemas.MappingQuery`
into composable filter groups (:class:`MappingFilters`). The groups are
combined with AND; the request's ``mode`` only decides how the ``from`` and
``to`` concept filters combine with each other.

Examples
--------
>>> from jskos_api.mappings import MappingQueryBuilder
>>> predicate = MappingQueryBuilder.concept_filter(["urn:a:1"], [], direction="forward")
>>> predicate.items[0].path
'from.memberSet.uri'
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import operator
import re
from dataclasses import dataclass
from functools import cache
from typing import TYPE_CHECKING, Final, Literal

from jsonschema import Draft202012Validator

from jskos_api.predicates import (
    MATCH_ALL,
    AnyOf,
    ContainsText,
    Equals,
    Exists,
    FieldMatch,
    Missing,
    Not,
    Prefix,
    all_of,
    any_of,
    field_in,
)
from jskos_api.relations import Relation
from jskos_api.schemes import Scheme, is_uri, split_values
from jskos_api.store import ASCENDING, DESCENDING
from jskos_common.errors import InvalidBodyError, MalformedBodyError
from jskos_common.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from jskos_api.predicates import Predicate
    from jskos_api.schemas import Direction, MappingQuery, Mode
    from jskos_api.schemes import SchemeResolver
    from jskos_api.store import EntityStore, SortSpec
    from jskos_common.types import JsonObject, JsonValue

__all__ = [
    "MAPPING_SCHEMA",
    "MappingFilters",
    "MappingQueryBuilder",
    "SchemeWhitelists",
    "check_whitelists",
    "load_whitelists",
    "mapping_identifiers",
    "validate_mapping",
]

logger = get_logger(__name__)

type Side = Literal["from", "to"]

_MATCHABLE_CONTAINERS: Final[tuple[str, ...]] = ("memberSet", "memberChoice")
_PREFIX_CONTAINERS: Final[tuple[str, ...]] = ("memberSet", "memberList", "memberChoice")
_CONCEPT_CONTAINERS: Final[tuple[str, ...]] = ("memberSet", "memberList", "memberChoice")

_ANNOTATION_TARGET: Final = "target.id"
_ASSESSING: Final = "assessing"
_ASSESSMENT_SUM: Final = re.compile(r"^([<>]?)(=?)(-?\d+)$")
_COMPARATORS: Final[dict[str, Callable[[int, int], bool]]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "=": operator.eq,
}


def _bound_sides(part: Side, direction: Direction) -> tuple[Side, ...]:
    """Return the stored side(s) a request's ``from`` or ``to`` part binds to."""
    if direction == "both":
        return ("from", "to")
    if direction == "backward":
        return ("to",) if part == "from" else ("from",)
    return (part,)


def _concept_reference(side: Side, reference: str) -> Predicate:
    if reference.endswith("*"):
        prefix = Prefix(reference[:-1])
        return any_of(
            FieldMatch(f"{side}.{container}.{key}", prefix)
            for container in _PREFIX_CONTAINERS
            for key in ("uri", "notation")
        )
    return any_of(
        FieldMatch(f"{side}.{container}.{key}", Equals(reference))
        for key in ("uri", "notation")
        for container in _MATCHABLE_CONTAINERS
    )


def _assessment_comparison(
    annotated_with: str | None, annotated_for: str | None
) -> tuple[str, int] | None:
    """Parse ``annotatedWith`` as ``(comparator, threshold)`` when it is a sum comparison."""
    if not annotated_with or annotated_for not in (None, "", _ASSESSING):
        return None
    match = _ASSESSMENT_SUM.match(annotated_with)
    if match is None or not (match[1] or match[2]):
        return None
    return match[1] + match[2], int(match[3])


@dataclass(frozen=True, slots=True)
class MappingFilters:
    """Filter groups of one mapping request; each is MATCH_ALL when unused."""

    concepts: Predicate = MATCH_ALL
    schemes: Predicate = MATCH_ALL
    types: Predicate = MATCH_ALL
    concordances: Predicate = MATCH_ALL
    creators: Predicate = MATCH_ALL
    cardinality: Predicate = MATCH_ALL
    identity: Predicate = MATCH_ALL
    annotations: Predicate = MATCH_ALL

    def predicate(self) -> Predicate:
        """Combine every group with AND."""
        return all_of(
            [
                self.concepts,
                self.schemes,
                self.types,
                self.concordances,
                self.creators,
                self.cardinality,
                self.identity,
                self.annotations,
            ]
        )

    def replace(self, **changes: Predicate) -> MappingFilters:
        """Return a copy with the given groups replaced."""
        return dataclasses.replace(self, **changes)


class MappingQueryBuilder:
    """Build mapping predicates from structured requests.

    Scheme references are resolved through :class:`SchemeResolver` (unknown
    references are used as literal URIs) and concordance URIs are expanded
    with the stored concordance's identifiers.

    Parameters
    ----------
    schemes : SchemeResolver
        Resolver for ``fromScheme`` / ``toScheme`` references.
    concordances : EntityStore
        Store used to expand ``partOf`` URIs.
    annotations : EntityStore
        Store queried for the annotation group.
    """

    def __init__(
        self,
        schemes: SchemeResolver,
        concordances: EntityStore,
        annotations: EntityStore,
    ) -> None:
        self._schemes = schemes
        self._concordances = concordances
        self._annotations = annotations

    @staticmethod
    def concept_filter(
        from_refs: Sequence[str],
        to_refs: Sequence[str],
        *,
        direction: Direction = "forward",
        mode: Mode = "and",
    ) -> Predicate:
        """Return the concept-reference group.

        Parameters
        ----------
        from_refs, to_refs : Sequence[str]
            Concept URIs or notations; a trailing ``*`` requests a prefix match.
        direction : Direction, optional
            ``forward`` binds ``from`` to the stored ``from`` side, ``backward``
            swaps the sides, ``both`` accepts either side. Defaults to forward.
        mode : Mode, optional
            Combination of the ``from`` and ``to`` parts. Defaults to ``and``.

        Returns
        -------
        Predicate
            MATCH_ALL when neither part is given.
        """
        parts: list[Predicate] = []
        for part, references in (("from", from_refs), ("to", to_refs)):
            if not references:
                continue
            parts.append(
                any_of(
                    _concept_reference(side, reference)
                    for side in _bound_sides(part, direction)  # type: ignore[arg-type]
                    for reference in references
                )
            )
        if not parts:
            return MATCH_ALL
        return any_of(parts) if mode == "or" else all_of(parts)

    async def scheme_filter(
        self,
        from_schemes: Sequence[str],
        to_schemes: Sequence[str],
        *,
        direction: Direction = "forward",
    ) -> Predicate:
        """Return the scheme group, matching ``<side>Scheme.uri`` or ``.notation``."""
        parts: list[Predicate] = []
        for part, references in (("from", from_schemes), ("to", to_schemes)):
            if not references:
                continue
            uris = await self._schemes.uris_for(references)
            parts.append(
                any_of(
                    field_in((f"{side}Scheme.uri", f"{side}Scheme.notation"), uris)
                    for side in _bound_sides(part, direction)  # type: ignore[arg-type]
                )
            )
        return all_of(parts)

    @staticmethod
    def type_filter(types: Iterable[str]) -> Predicate:
        """Return the relation group.

        The generic ``mappingRelation`` also matches mappings without ``type``.
        """
        options: list[Predicate] = []
        for relation in types:
            options.append(FieldMatch("type", Equals(relation)))
            if relation == Relation.GENERIC:
                options.append(FieldMatch("type", Missing()))
        if not options:
            return MATCH_ALL
        return any_of(options)

    async def concordance_filter(self, part_of: str | None) -> Predicate:
        """Return the concordance group for ``partOf``."""
        if not part_of:
            return MATCH_ALL
        if part_of == "any":
            return FieldMatch("partOf.0", Exists())
        if part_of == "none":
            return FieldMatch("partOf.0", Missing())
        uris: list[str] = []
        for uri in split_values(part_of):
            concordance = await self._concordances.find_one(
                field_in(("uri", "identifier"), (uri,))
            )
            uris.append(uri)
            if concordance is not None:
                own = concordance.get("uri")
                if isinstance(own, str):
                    uris.append(own)
                identifiers = concordance.get("identifier")
                if isinstance(identifiers, list):
                    uris.extend(item for item in identifiers if isinstance(item, str))
        return FieldMatch("partOf.uri", AnyOf(tuple(Equals(uri) for uri in dict.fromkeys(uris))))

    @staticmethod
    def creator_filter(creator: str | None) -> Predicate:
        """Return the creator group.

        A URI matches ``creator.uri``; any other value matches the German or
        English creator name as a case-insensitive substring.
        """
        options: list[Predicate] = []
        for value in split_values(creator):
            if is_uri(value):
                options.append(FieldMatch("creator.uri", Equals(value)))
            else:
                options.extend(
                    FieldMatch(f"creator.prefLabel.{language}", ContainsText(value))
                    for language in ("de", "en")
                )
        if not options:
            return MATCH_ALL
        return any_of(options)

    @staticmethod
    def cardinality_filter(cardinality: str | None) -> Predicate:
        """Return the cardinality group; ``1-to-1`` excludes a second target concept."""
        if cardinality == "1-to-1":
            return FieldMatch("to.memberSet.1", Missing())
        return MATCH_ALL

    @staticmethod
    def identity_filter(uri: str | None, identifier: str | None) -> Predicate:
        """Return the group for explicit mapping URIs and identifiers."""
        parts: list[Predicate] = []
        if identifier:
            parts.append(field_in(("identifier", "uri"), split_values(identifier)))
        if uri:
            parts.append(field_in(("uri",), split_values(uri)))
        return all_of(parts)

    async def annotation_filter(self, query: MappingQuery) -> Predicate:
        """Return the annotation group.

        Annotations point at mappings through ``target.id``. ``annotatedWith``
        matches ``bodyValue``, ``annotatedBy`` matches ``creator.id`` and
        ``annotatedFor`` matches ``motivation`` (``any`` requires one). An
        ``annotatedFor`` of ``none`` or ``!<motivation>`` keeps only mappings
        without such an annotation.

        An ``annotatedWith`` comparison such as ``>0``, ``<=-1`` or ``=2``
        selects on the sum of ``assessing`` annotations, counting ``+1`` and
        ``-1`` bodies. The comparison needs ``from`` or ``to`` and is ignored
        without them.

        Parameters
        ----------
        query : MappingQuery
            Request carrying the ``annotated*`` parameters.

        Returns
        -------
        Predicate
            Restriction on the mapping ``uri``; MATCH_ALL when unused.
        """
        annotated_with = query.annotated_with
        annotated_for = query.annotated_for
        parts: list[Predicate] = []

        comparison = _assessment_comparison(annotated_with, annotated_for)
        if comparison is not None:
            annotated_with = None
            if query.from_ or query.to:
                parts.append(await self._assessment_filter(*comparison))

        conditions: list[Predicate] = []
        if annotated_with:
            conditions.append(FieldMatch("bodyValue", Equals(annotated_with)))
        if annotated_by := split_values(query.annotated_by):
            conditions.append(field_in(("creator.id",), annotated_by))
        if annotated_for == "none":
            parts.append(Not(await self._annotated(FieldMatch("motivation", Exists()))))
        elif annotated_for and annotated_for.startswith("!"):
            excluded = FieldMatch("motivation", Equals(annotated_for[1:]))
            parts.append(Not(await self._annotated(excluded)))
        elif annotated_for == "any":
            conditions.append(FieldMatch("motivation", Exists()))
        elif annotated_for:
            conditions.append(FieldMatch("motivation", Equals(annotated_for)))
        if conditions:
            parts.append(await self._annotated(all_of(conditions)))
        return all_of(parts)

    async def _annotated(self, annotation: Predicate) -> Predicate:
        """Select mappings targeted by at least one annotation matching ``annotation``."""
        groups = await self._annotations.count_by(annotation, _ANNOTATION_TARGET)
        return field_in(("uri",), [target for target, _ in groups if isinstance(target, str)])

    async def _assessment_filter(self, comparator: str, threshold: int) -> Predicate:
        sums: dict[str, int] = {}
        for body, weight in (("+1", 1), ("-1", -1)):
            groups = await self._annotations.count_by(
                all_of(
                    [
                        FieldMatch("motivation", Equals(_ASSESSING)),
                        FieldMatch("bodyValue", Equals(body)),
                    ]
                ),
                _ANNOTATION_TARGET,
            )
            for target, count in groups:
                if isinstance(target, str):
                    sums[target] = sums.get(target, 0) + weight * count
        compare = _COMPARATORS[comparator]
        if compare(0, threshold):
            # Mappings without assessments have sum 0 and pass.
            failing = [target for target, total in sums.items() if not compare(total, threshold)]
            return Not(field_in(("uri",), failing))
        passing = [target for target, total in sums.items() if compare(total, threshold)]
        return field_in(("uri",), passing)

    async def filters(self, query: MappingQuery) -> MappingFilters:
        """Resolve every filter group of ``query``."""
        return MappingFilters(
            concepts=self.concept_filter(
                split_values(query.from_),
                split_values(query.to),
                direction=query.direction,
                mode=query.mode,
            ),
            schemes=await self.scheme_filter(
                split_values(query.from_scheme),
                split_values(query.to_scheme),
                direction=query.direction,
            ),
            types=self.type_filter(split_values(query.type)),
            concordances=await self.concordance_filter(query.part_of),
            creators=self.creator_filter(query.creator),
            cardinality=self.cardinality_filter(query.cardinality),
            identity=self.identity_filter(query.uri, query.identifier),
            annotations=await self.annotation_filter(query),
        )

    async def build(self, query: MappingQuery) -> Predicate:
        """Return the predicate selecting every mapping ``query`` asks for."""
        return (await self.filters(query)).predicate()

    @staticmethod
    def sort_spec(query: MappingQuery) -> SortSpec:
        """Return the sort keys for ``query`` (default ``modified`` descending)."""
        return [(query.sort, ASCENDING if query.order == "asc" else DESCENDING)]


@dataclass(frozen=True, slots=True)
class SchemeWhitelists:
    """Schemes allowed on either side of a mapping; None allows every scheme."""

    from_scheme: tuple[Scheme, ...] | None = None
    to_scheme: tuple[Scheme, ...] | None = None


async def load_whitelists(
    resolver: SchemeResolver,
    from_scheme: Sequence[str] | None,
    to_scheme: Sequence[str] | None,
) -> SchemeWhitelists:
    """Resolve configured whitelist URIs so that alternate identifiers are honoured."""

    async def _load(uris: Sequence[str] | None) -> tuple[Scheme, ...] | None:
        if not uris:
            return None
        return tuple(await resolver.resolve_all(uris))

    return SchemeWhitelists(from_scheme=await _load(from_scheme), to_scheme=await _load(to_scheme))


def check_whitelists(mapping: JsonObject, whitelists: SchemeWhitelists) -> None:
    """Reject ``mapping`` if one of its schemes is not whitelisted.

    Raises
    ------
    InvalidBodyError
        ``"Value in fromScheme is not allowed."`` (or ``toScheme``).
    """
    for field, allowed in (
        ("fromScheme", whitelists.from_scheme),
        ("toScheme", whitelists.to_scheme),
    ):
        scheme = mapping.get(field)
        if allowed is None or not isinstance(scheme, dict):
            continue
        if not any(candidate.matches(scheme) for candidate in allowed):
            raise InvalidBodyError(f"Value in {field} is not allowed.", context={"field": field})


_CONCEPT_BUNDLE: Final[dict[str, object]] = {
    "type": "object",
    "properties": {
        container: {
            "type": "array",
            "items": {
                "type": ["object", "null"],
                "properties": {"uri": {"type": "string"}, "notation": {"type": "array"}},
            },
        }
        for container in _CONCEPT_CONTAINERS
    },
}

_SCHEME_REFERENCE: Final[dict[str, object]] = {
    "type": "object",
    "properties": {
        "uri": {"type": "string", "minLength": 1},
        "identifier": {"type": "array", "items": {"type": "string"}},
        "notation": {"type": "array", "items": {"type": "string"}},
    },
}

MAPPING_SCHEMA: Final[dict[str, object]] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["from", "to"],
    "properties": {
        "uri": {"type": "string"},
        "identifier": {"type": "array", "items": {"type": "string"}},
        "from": _CONCEPT_BUNDLE,
        "to": _CONCEPT_BUNDLE,
        "fromScheme": _SCHEME_REFERENCE,
        "toScheme": _SCHEME_REFERENCE,
        "type": {"type": "array", "items": {"type": "string"}, "minItems": 1},
        "creator": {"type": "array", "items": {"type": "object"}},
        "partOf": {"type": "array", "items": {"type": "object"}},
        "created": {"type": "string"},
        "modified": {"type": "string"},
        "mappingRelevance": {"type": "number"},
    },
}
"""JSON Schema (2020-12) for mapping documents accepted on write."""


@cache
def _mapping_validator() -> Draft202012Validator:
    Draft202012Validator.check_schema(MAPPING_SCHEMA)
    return Draft202012Validator(MAPPING_SCHEMA)


def validate_mapping(body: object) -> JsonObject:
    """Check that ``body`` is a well-formed mapping document.

    Parameters
    ----------
    body : object
        Decoded request body.

    Returns
    -------
    JsonObject
        ``body`` itself.

    Raises
    ------
    MalformedBodyError
        If ``body`` is not a JSON object.
    InvalidBodyError
        If ``body`` does not conform to :data:`MAPPING_SCHEMA`. The messages
        are listed in the error context under ``errors``.
    """
    if not isinstance(body, dict):
        raise MalformedBodyError("Mapping must be a JSON object.")
    errors = sorted(_mapping_validator().iter_errors(body), key=lambda error: error.json_path)
    if errors:
        messages = [error.message for error in errors]
        raise InvalidBodyError("Invalid mapping.", context={"errors": messages})
    return body


def _member_uris(mapping: JsonObject, side: Side) -> list[str]:
    bundle = mapping.get(side)
    uris: list[str] = []
    if not isinstance(bundle, dict):
        return uris
    for container in _CONCEPT_CONTAINERS:
        members = bundle.get(container)
        if not isinstance(members, list):
            continue
        for member in members:
            if isinstance(member, dict) and isinstance(member.get("uri"), str):
                uris.append(member["uri"])  # type: ignore[arg-type]
    return uris


def _sha1(payload: JsonValue) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha1(encoded, usedforsecurity=False).hexdigest()


def mapping_identifiers(mapping: JsonObject) -> list[str]:
    """Return content-derived identifiers for ``mapping``.

    ``urn:jskos:mapping:content:<sha1>`` covers the concept sets and the
    relation; ``urn:jskos:mapping:members:<sha1>`` covers only the concept
    sets. Other identifiers already present are kept first.
    """
    from_uris = sorted(_member_uris(mapping, "from"))
    to_uris = sorted(_member_uris(mapping, "to"))
    types = mapping.get("type")
    relation = types[0] if isinstance(types, list) and types else str(Relation.GENERIC)
    content = _sha1({"from": from_uris, "to": to_uris, "type": relation})
    members = _sha1({"from": from_uris, "to": to_uris})
    existing = mapping.get("identifier")
    kept = [
        value
        for value in (existing if isinstance(existing, list) else [])
        if isinstance(value, str) and not value.startswith("urn:jskos:mapping:")
    ]
    return [*kept, f"urn:jskos:mapping:content:{content}", f"urn:jskos:mapping:members:{members}"]
