"""Deterministic relevance ranking for search and suggest results.

Scoring starts at 100 per item. The first notation subtracts its length and
adds 1000 for an exact (case-insensitive) match and 150 for a prefix match.
Each weighted label field adds ``sum * weight / max(count ** 2, 1)`` where
every exact label match contributes 100, every prefix match 50 and every
match further inside the label 15. Results are ordered by descending score,
ties by ascending notation.

Examples
--------
>>> from jskos_api.ranking import SearchRanking
>>> ranking = SearchRanking()
>>> items = [{"notation": ["AB"]}, {"notation": ["A"]}]
>>> [item["notation"][0] for item in ranking.rank(items, "a")]
['A', 'AB']
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from jskos_api.predicates import resolve_path

if TYPE_CHECKING:
    from collections.abc import Iterable

    from jskos_common.types import JsonObject

__all__ = ["LABEL_WEIGHTS", "ScoredItem", "SearchRanking", "first_notation"]

BASE_SCORE: Final[float] = 100.0
EXACT_NOTATION_BONUS: Final[float] = 1000.0
PREFIX_NOTATION_BONUS: Final[float] = 150.0
EXACT_LABEL_BONUS: Final[float] = 100.0
PREFIX_LABEL_BONUS: Final[float] = 50.0
INFIX_LABEL_BONUS: Final[float] = 15.0

LABEL_WEIGHTS: Final[tuple[tuple[str, float], ...]] = (
    ("prefLabel", 2.0),
    ("altLabel", 1.0),
    ("creator.prefLabel", 0.8),
    ("definition", 0.7),
)


def first_notation(item: JsonObject) -> str | None:
    """Return the first notation of ``item``, or None."""
    notation = item.get("notation")
    if isinstance(notation, list) and notation and isinstance(notation[0], str):
        return notation[0]
    return None


def _labels(item: JsonObject, path: str) -> list[str]:
    labels: list[str] = []
    for language_map in resolve_path(item, path):
        if not isinstance(language_map, dict):
            continue
        for value in language_map.values():
            if isinstance(value, list):
                labels.extend(label for label in value if isinstance(label, str))
            elif isinstance(value, str):
                labels.append(value)
    return labels


@dataclass(frozen=True, slots=True)
class ScoredItem:
    """An item with its computed score."""

    score: float
    item: JsonObject


class SearchRanking:
    """Pure, side-effect-free scorer shared by the search endpoints.

    Parameters
    ----------
    label_weights : tuple[tuple[str, float], ...], optional
        ``(dotted path, weight)`` pairs for label fields. Defaults to
        :data:`LABEL_WEIGHTS`.
    """

    def __init__(self, label_weights: tuple[tuple[str, float], ...] = LABEL_WEIGHTS) -> None:
        self.label_weights = label_weights

    def score(self, item: JsonObject, search: str) -> float:
        """Return the relevance score of ``item`` for ``search``."""
        term = search.casefold()
        score = BASE_SCORE
        notation = first_notation(item)
        if notation is not None:
            folded = notation.casefold()
            score -= len(folded)
            if folded == term:
                score += EXACT_NOTATION_BONUS
            if folded.startswith(term):
                score += PREFIX_NOTATION_BONUS
        for path, weight in self.label_weights:
            total = 0.0
            matches = 0
            for label in _labels(item, path):
                folded = label.casefold()
                if folded == term:
                    total += EXACT_LABEL_BONUS
                elif folded.startswith(term):
                    total += PREFIX_LABEL_BONUS
                elif folded.find(term) > 0:
                    total += INFIX_LABEL_BONUS
                else:
                    continue
                matches += 1
            score += total * weight / max(matches**2, 1)
        return score

    def scored(self, items: Iterable[JsonObject], search: str) -> list[ScoredItem]:
        """Return ``items`` with scores, ordered best first."""
        scored = [ScoredItem(self.score(item, search), item) for item in items]
        scored.sort(key=_order_key)
        return scored

    def rank(self, items: Iterable[JsonObject], search: str) -> list[JsonObject]:
        """Return ``items`` ordered by descending score, ties by ascending notation.

        Items without a notation come after tied items that have one.
        """
        return [entry.item for entry in self.scored(items, search)]


def _order_key(entry: ScoredItem) -> tuple[float, int, str]:
    notation = first_notation(entry.item)
    return (-entry.score, notation is None, notation or "")
