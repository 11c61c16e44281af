"""Tests for the predicate DSL and its in-process interpreter."""

from __future__ import annotations

import pytest

from jskos_api.predicates import (
    MATCH_ALL,
    AllOf,
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
    any_of,
    evaluate,
    field_in,
    resolve_path,
)

MAPPING = {
    "uri": "urn:m:1",
    "from": {"memberSet": [{"uri": "urn:a", "notation": ["A1"]}]},
    "to": {"memberSet": [{"uri": "urn:b"}, {"uri": "urn:c"}]},
    "type": ["http://www.w3.org/2004/02/skos/core#exactMatch"],
    "partOf": [],
    "creator": [{"prefLabel": {"de": "Erika Mustermann"}}],
}


class TestResolvePath:
    """Tests for dotted path resolution."""

    def test_traverses_lists_element_wise(self) -> None:
        """Lists met on the way are searched element-wise."""
        assert resolve_path(MAPPING, "to.memberSet.uri") == ["urn:b", "urn:c"]

    def test_numeric_segment_indexes_list(self) -> None:
        """Numeric segments index into lists."""
        assert resolve_path(MAPPING, "to.memberSet.1.uri") == ["urn:c"]
        assert resolve_path(MAPPING, "to.memberSet.2") == []

    def test_missing_path(self) -> None:
        """A missing key yields no values."""
        assert resolve_path(MAPPING, "toScheme.uri") == []


class TestEvaluate:
    """Tests for predicate evaluation."""

    @pytest.mark.parametrize(
        ("predicate", "expected"),
        [
            (FieldMatch("uri", Equals("urn:m:1")), True),
            (FieldMatch("from.memberSet.notation", Equals("A1")), True),
            (FieldMatch("from.memberSet.notation", Prefix("A")), True),
            (FieldMatch("from.memberSet.notation", Prefix("a")), False),
            (FieldMatch("creator.prefLabel.de", ContainsText("MUSTER")), True),
            (FieldMatch("partOf.0", Missing()), True),
            (FieldMatch("partOf.0", Exists()), False),
            (FieldMatch("to.memberSet.1", Exists()), True),
            (FieldMatch("uri", AnyOf((Equals("urn:x"), Equals("urn:m:1")))), True),
            (FieldMatch("from.memberSet.notation", EqualsIgnoreCase("a1")), True),
            (FieldMatch("from.memberSet.notation", EqualsIgnoreCase("A")), False),
        ],
    )
    def test_field_predicates(self, predicate: FieldMatch, expected: bool) -> None:
        """Field predicates follow document-store semantics."""
        assert evaluate(predicate, MAPPING) is expected

    def test_prefix_is_literal(self) -> None:
        """Pattern metacharacters in a prefix have no special meaning."""
        document = {"notation": ["abc"]}
        assert not evaluate(FieldMatch("notation", Prefix("a.c")), document)
        assert evaluate(FieldMatch("notation", Prefix("ab")), document)

    def test_equals_is_type_strict(self) -> None:
        """Booleans never equal integers."""
        assert not evaluate(FieldMatch("flag", Equals(1)), {"flag": True})

    def test_empty_any_of_matches_nothing(self) -> None:
        """An empty disjunction matches no document."""
        assert not evaluate(AnyOf(()), MAPPING)

    def test_empty_all_of_matches_everything(self) -> None:
        """An empty conjunction matches every document."""
        assert evaluate(AllOf(()), MAPPING)
        assert evaluate(MATCH_ALL, MAPPING)

    def test_value_predicate_requires_field(self) -> None:
        """Value predicates must be wrapped in FieldMatch."""
        with pytest.raises(TypeError, match="FieldMatch"):
            evaluate(Equals("urn:m:1"), MAPPING)

    def test_not_negates_document_predicate(self) -> None:
        """Not matches exactly the documents its operand rejects."""
        assert not evaluate(Not(FieldMatch("uri", Equals("urn:m:1"))), MAPPING)
        assert evaluate(Not(FieldMatch("uri", AnyOf(()))), MAPPING)

    def test_not_inside_field_rejected(self) -> None:
        """Not applies to documents, never to field values."""
        with pytest.raises(TypeError, match="Nested document predicates"):
            evaluate(FieldMatch("uri", Not(MATCH_ALL)), MAPPING)  # type: ignore[arg-type]


class TestCombinators:
    """Tests for any_of, all_of and field_in."""

    def test_any_of_flattens(self) -> None:
        """Nested disjunctions are flattened."""
        a = FieldMatch("a", Exists())
        b = FieldMatch("b", Exists())
        c = FieldMatch("c", Exists())
        assert any_of([AnyOf((a, b)), c]) == AnyOf((a, b, c))

    def test_any_of_single_item(self) -> None:
        """A single item is returned unchanged."""
        a = FieldMatch("a", Exists())
        assert any_of([a]) is a

    def test_match_all_absorbs_disjunction(self) -> None:
        """MATCH_ALL makes the whole disjunction match everything."""
        assert any_of([FieldMatch("a", Exists()), MATCH_ALL]) is MATCH_ALL

    def test_all_of_drops_match_all(self) -> None:
        """MATCH_ALL items are dropped from conjunctions."""
        a = FieldMatch("a", Exists())
        assert all_of([MATCH_ALL, a]) is a
        assert all_of([MATCH_ALL]) is MATCH_ALL

    def test_field_in(self) -> None:
        """field_in matches any path against any value."""
        predicate = field_in(("uri", "identifier"), ["urn:x", "urn:m:1"])
        assert evaluate(predicate, MAPPING)
        assert not evaluate(field_in(("identifier",), ["urn:m:1"]), MAPPING)
