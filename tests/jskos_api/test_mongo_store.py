"""Tests for the MongoDB filter compiler and store error handling."""

from __future__ import annotations

from typing import Any

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from jskos_api.mongo_store import MAPPING_INDEXES, MongoEntityStore, compile_predicate
from jskos_api.predicates import (
    MATCH_ALL,
    AnyOf,
    ContainsText,
    Equals,
    EqualsIgnoreCase,
    Exists,
    FieldMatch,
    Missing,
    Not,
    Prefix,
    all_of,
    field_in,
)
from jskos_common.errors import DatabaseAccessError


class _UnavailableCollection:
    name = "mappings"

    async def find_one(self, query: dict[str, Any]) -> dict[str, Any] | None:
        raise ServerSelectionTimeoutError("no servers")

    async def count_documents(self, query: dict[str, Any]) -> int:
        raise ServerSelectionTimeoutError("no servers")

    async def insert_one(self, document: dict[str, Any]) -> None:
        raise ServerSelectionTimeoutError("no servers")


class _Cursor:
    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents

    async def to_list(self) -> list[dict[str, Any]]:
        return self._documents


class _GroupingCollection:
    name = "mappings"

    def __init__(self, groups: list[dict[str, Any]]) -> None:
        self.groups = groups
        self.pipelines: list[list[dict[str, Any]]] = []

    async def aggregate(self, pipeline: list[dict[str, Any]]) -> _Cursor:
        self.pipelines.append(pipeline)
        return _Cursor(self.groups)


class TestCompilePredicate:
    """Tests for compile_predicate."""

    def test_match_all(self) -> None:
        """MATCH_ALL is the empty filter."""
        assert compile_predicate(MATCH_ALL) == {}

    def test_leaves(self) -> None:
        """Leaf predicates compile to equality, regex and existence checks."""
        assert compile_predicate(FieldMatch("uri", Equals("urn:a"))) == {"uri": "urn:a"}
        assert compile_predicate(FieldMatch("to.memberSet.1", Missing())) == {
            "to.memberSet.1": {"$exists": False}
        }
        assert compile_predicate(FieldMatch("partOf.0", Exists())) == {
            "partOf.0": {"$exists": True}
        }

    def test_regex_input_is_escaped(self) -> None:
        """Prefix and text searches never interpret user input as a pattern."""
        assert compile_predicate(FieldMatch("notation", Prefix("612.*"))) == {
            "notation": {"$regex": r"^612\.\*"}
        }
        assert compile_predicate(FieldMatch("creator.prefLabel.de", ContainsText("a+b"))) == {
            "creator.prefLabel.de": {"$regex": r"a\+b", "$options": "i"}
        }

    def test_combinations(self) -> None:
        """Boolean combinations become $or / $and."""
        predicate = all_of(
            [
                field_in(("fromScheme.uri", "fromScheme.notation"), ["urn:s"]),
                FieldMatch("type", Equals("urn:r")),
            ]
        )

        assert compile_predicate(predicate) == {
            "$and": [
                {
                    "$or": [
                        {"$or": [{"fromScheme.uri": "urn:s"}]},
                        {"$or": [{"fromScheme.notation": "urn:s"}]},
                    ]
                },
                {"type": "urn:r"},
            ]
        }

    def test_case_insensitive_equality_is_anchored(self) -> None:
        """Case-insensitive equality is an escaped, anchored regex."""
        assert compile_predicate(FieldMatch("notation", EqualsIgnoreCase("d.c"))) == {
            "notation": {"$regex": r"^d\.c$", "$options": "i"}
        }

    def test_negation(self) -> None:
        """Not becomes $nor over the compiled operand."""
        assert compile_predicate(Not(field_in(("uri",), ["urn:m:1"]))) == {
            "$nor": [{"$or": [{"uri": "urn:m:1"}]}]
        }

    def test_empty_disjunction_matches_nothing(self) -> None:
        """An empty value list matches no document."""
        assert compile_predicate(FieldMatch("uri", AnyOf(()))) == {"_id": {"$exists": False}}

    def test_unwrapped_leaf_rejected(self) -> None:
        """Leaf predicates must be bound to a field."""
        with pytest.raises(TypeError):
            compile_predicate(Equals("x"))  # type: ignore[arg-type]


class TestMongoEntityStore:
    """Tests for driver error handling."""

    @pytest.mark.asyncio
    async def test_zero_limit_skips_query(self) -> None:
        """A zero page size returns nothing without a round trip."""
        store = MongoEntityStore(_UnavailableCollection())  # type: ignore[arg-type]

        assert await store.find(MATCH_ALL, limit=0) == []

    @pytest.mark.asyncio
    async def test_driver_errors_wrapped(self) -> None:
        """Driver failures surface as DatabaseAccessError."""
        store = MongoEntityStore(_UnavailableCollection())  # type: ignore[arg-type]

        with pytest.raises(DatabaseAccessError) as excinfo:
            await store.find_one(MATCH_ALL)
        assert isinstance(excinfo.value.__cause__, ServerSelectionTimeoutError)

        with pytest.raises(DatabaseAccessError):
            await store.count(MATCH_ALL)

        with pytest.raises(DatabaseAccessError):
            await store.insert_one({"uri": "urn:m:1"})

    @pytest.mark.asyncio
    async def test_count_by_groups_in_database(self) -> None:
        """Grouped counts run as a $match/$group aggregation."""
        collection = _GroupingCollection(
            [{"_id": {"uri": "urn:s"}, "count": 3}, {"_id": None, "count": 1}]
        )
        store = MongoEntityStore(collection)  # type: ignore[arg-type]

        groups = await store.count_by(FieldMatch("type", Exists()), "fromScheme")

        assert groups == [({"uri": "urn:s"}, 3), (None, 1)]
        assert collection.pipelines == [
            [
                {"$match": {"type": {"$exists": True}}},
                {"$group": {"_id": "$fromScheme", "count": {"$sum": 1}}},
            ]
        ]


def test_mapping_indexes_cover_member_lookups() -> None:
    """Every member container and scheme side is indexed by URI and notation."""
    single = {keys[0][0] for keys in MAPPING_INDEXES if len(keys) == 1}

    for side in ("from", "to"):
        for container in ("memberSet", "memberList", "memberChoice"):
            assert f"{side}.{container}.uri" in single
            assert f"{side}.{container}.notation" in single
