"""Store-independent query predicates over JSON documents.

A predicate is a small tagged tree. Document-level nodes are
:class:`FieldMatch`, :class:`AnyOf`, :class:`AllOf` and :data:`MATCH_ALL`;
the predicate inside a :class:`FieldMatch` tests the value(s) found at a
dotted path. Stores interpret the tree: :func:`evaluate` does so in process,
``jskos_api.mongo_store.compile_predicate`` translates it to a native filter.

Path semantics follow document-store conventions. A list met on the way is
searched element-wise (a path matches if any element matches), and a numeric
segment indexes into a list, so ``partOf.0`` tests the first concordance.

Examples
--------
>>> from jskos_api.predicates import AnyOf, Equals, FieldMatch, Prefix, evaluate
>>> doc = {"from": {"memberSet": [{"uri": "urn:a:1", "notation": ["1"]}]}}
>>> evaluate(FieldMatch("from.memberSet.uri", Equals("urn:a:1")), doc)
True
>>> evaluate(FieldMatch("from.memberSet.notation", Prefix("2")), doc)
False
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from jskos_common.types import JsonObject, JsonPrimitive, JsonValue

__all__ = [
    "MATCH_ALL",
    "AllOf",
    "AnyOf",
    "ContainsText",
    "Equals",
    "EqualsIgnoreCase",
    "Exists",
    "FieldMatch",
    "MatchAll",
    "Missing",
    "Not",
    "Predicate",
    "Prefix",
    "all_of",
    "any_of",
    "evaluate",
    "field_in",
    "resolve_path",
]


@dataclass(frozen=True, slots=True)
class Equals:
    """Value equals ``value`` (or a list value contains it)."""

    value: JsonPrimitive


@dataclass(frozen=True, slots=True)
class EqualsIgnoreCase:
    """String value equals ``value``, ignoring case."""

    value: str


@dataclass(frozen=True, slots=True)
class Prefix:
    """String value starts with ``prefix`` (case-sensitive)."""

    prefix: str


@dataclass(frozen=True, slots=True)
class ContainsText:
    """String value contains ``text``, ignoring case."""

    text: str


@dataclass(frozen=True, slots=True)
class Exists:
    """The path resolves to at least one value."""


@dataclass(frozen=True, slots=True)
class Missing:
    """The path resolves to no value."""


@dataclass(frozen=True, slots=True)
class AnyOf:
    """At least one of ``items`` matches. An empty AnyOf matches nothing."""

    items: tuple[Predicate, ...]


@dataclass(frozen=True, slots=True)
class AllOf:
    """Every one of ``items`` matches. An empty AllOf matches everything."""

    items: tuple[Predicate, ...]


@dataclass(frozen=True, slots=True)
class FieldMatch:
    """The value(s) at dotted ``path`` satisfy ``predicate``."""

    path: str
    predicate: Predicate


@dataclass(frozen=True, slots=True)
class Not:
    """The document does not satisfy ``predicate`` (document level only)."""

    predicate: Predicate


@dataclass(frozen=True, slots=True)
class MatchAll:
    """Matches every document."""


MATCH_ALL: Final[MatchAll] = MatchAll()

type Predicate = (
    Equals
    | EqualsIgnoreCase
    | Prefix
    | ContainsText
    | Exists
    | Missing
    | AnyOf
    | AllOf
    | FieldMatch
    | Not
    | MatchAll
)


def any_of(items: Iterable[Predicate]) -> Predicate:
    """Combine ``items`` with OR, flattening nested AnyOf nodes.

    A single item is returned unchanged; MATCH_ALL absorbs the disjunction.
    """
    flat: list[Predicate] = []
    for item in items:
        if isinstance(item, MatchAll):
            return MATCH_ALL
        if isinstance(item, AnyOf):
            flat.extend(item.items)
        else:
            flat.append(item)
    if len(flat) == 1:
        return flat[0]
    return AnyOf(tuple(flat))


def all_of(items: Iterable[Predicate]) -> Predicate:
    """Combine ``items`` with AND, dropping MATCH_ALL and flattening nested AllOf nodes."""
    flat: list[Predicate] = []
    for item in items:
        if isinstance(item, MatchAll):
            continue
        if isinstance(item, AllOf):
            flat.extend(item.items)
        else:
            flat.append(item)
    if not flat:
        return MATCH_ALL
    if len(flat) == 1:
        return flat[0]
    return AllOf(tuple(flat))


def field_in(paths: Sequence[str], values: Iterable[JsonPrimitive]) -> Predicate:
    """Any of ``paths`` equals any of ``values``."""
    options = tuple(Equals(value) for value in values)
    return any_of(FieldMatch(path, AnyOf(options)) for path in paths)


def resolve_path(document: JsonValue, path: str) -> list[JsonValue]:
    """Return every value reachable from ``document`` along dotted ``path``.

    Parameters
    ----------
    document : JsonValue
        Document (or sub-document) to traverse.
    path : str
        Dotted path. Numeric segments index lists.

    Returns
    -------
    list[JsonValue]
        Values found, in document order. Empty when the path is missing.

    Examples
    --------
    >>> resolve_path({"a": [{"b": 1}, {"b": 2}, {"c": 3}]}, "a.b")
    [1, 2]
    >>> resolve_path({"partOf": [{"uri": "urn:c"}]}, "partOf.0.uri")
    ['urn:c']
    """
    current: list[JsonValue] = [document]
    for segment in path.split("."):
        found: list[JsonValue] = []
        for value in current:
            if isinstance(value, dict):
                if segment in value:
                    found.append(value[segment])
            elif isinstance(value, list):
                if segment.isdigit():
                    index = int(segment)
                    if index < len(value):
                        found.append(value[index])
                else:
                    found.extend(
                        item[segment]
                        for item in value
                        if isinstance(item, dict) and segment in item
                    )
        current = found
    return current


def _leaves(values: list[JsonValue]) -> list[JsonValue]:
    leaves: list[JsonValue] = []
    for value in values:
        if isinstance(value, list):
            leaves.extend(value)
        else:
            leaves.append(value)
    return leaves


def _match_values(predicate: Predicate, values: list[JsonValue]) -> bool:  # noqa: PLR0911
    match predicate:
        case Exists():
            return bool(values)
        case Missing():
            return not values
        case Equals(value=expected):
            return any(
                leaf == expected and type(leaf) is type(expected) for leaf in _leaves(values)
            )
        case EqualsIgnoreCase(value=expected):
            wanted = expected.casefold()
            return any(
                isinstance(leaf, str) and leaf.casefold() == wanted for leaf in _leaves(values)
            )
        case Prefix(prefix=prefix):
            return any(isinstance(leaf, str) and leaf.startswith(prefix) for leaf in _leaves(values))
        case ContainsText(text=text):
            needle = text.casefold()
            return any(isinstance(leaf, str) and needle in leaf.casefold() for leaf in _leaves(values))
        case AnyOf(items=items):
            return any(_match_values(item, values) for item in items)
        case AllOf(items=items):
            return all(_match_values(item, values) for item in items)
        case MatchAll():
            return True
        case FieldMatch() | Not():
            msg = f"Nested document predicates are not supported: {predicate!r}"
            raise TypeError(msg)
    msg = f"Unknown predicate: {predicate!r}"
    raise TypeError(msg)


def evaluate(predicate: Predicate, document: JsonObject) -> bool:
    """Return whether ``document`` satisfies ``predicate``.

    Raises
    ------
    TypeError
        If a value-level predicate (Equals, Prefix, ...) is used outside a
        :class:`FieldMatch`.
    """
    match predicate:
        case MatchAll():
            return True
        case FieldMatch(path=path, predicate=inner):
            return _match_values(inner, resolve_path(document, path))
        case AnyOf(items=items):
            return any(evaluate(item, document) for item in items)
        case AllOf(items=items):
            return all(evaluate(item, document) for item in items)
        case Not(predicate=inner):
            return not evaluate(inner, document)
    msg = f"Predicate {predicate!r} must be wrapped in FieldMatch"
    raise TypeError(msg)
