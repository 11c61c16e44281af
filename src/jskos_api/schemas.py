"""Request models for mapping listing and inference.

Field aliases carry the public query parameter names (``from``,
``fromScheme``, ``partOf``, ...); Python code may use either form.
"""

from __future__ import annotations

from typing import ClassVar, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "Direction",
    "InferenceQuery",
    "MappingQuery",
    "Mode",
    "SortField",
    "SortOrder",
]

type Direction = Literal["forward", "backward", "both"]
type Mode = Literal["and", "or"]
type SortField = Literal["created", "modified", "mappingRelevance"]
type SortOrder = Literal["asc", "desc"]


class MappingQuery(BaseModel):
    """Structured mapping search request.

    Multi-valued parameters are pipe-delimited strings. A concept reference
    ending in ``*`` is matched as a prefix.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", populate_by_name=True)

    uri: str | None = None
    """Mapping URIs (exact)."""
    identifier: str | None = None
    """Mapping identifiers; each matches ``identifier`` or ``uri``."""
    from_: str | None = Field(default=None, alias="from")
    """Concept URIs or notations on the source side."""
    to: str | None = None
    """Concept URIs or notations on the target side."""
    from_scheme: str | None = Field(default=None, alias="fromScheme")
    """Source scheme references (URI, identifier or notation)."""
    to_scheme: str | None = Field(default=None, alias="toScheme")
    """Target scheme references (URI, identifier or notation)."""
    direction: Direction = "forward"
    """Which stored side ``from``/``to`` bind to."""
    mode: Mode = "and"
    """How the ``from`` and ``to`` concept filters combine."""
    type: str | None = None
    """Relation URIs."""
    part_of: str | None = Field(default=None, alias="partOf")
    """Concordance URIs, or ``any`` / ``none``."""
    creator: str | None = None
    """Creator URIs or names."""
    annotated_with: str | None = Field(default=None, alias="annotatedWith")
    """Annotation body value, or an assessment sum comparison such as ``>0`` or ``=-1``."""
    annotated_for: str | None = Field(default=None, alias="annotatedFor")
    """Annotation motivation; ``any``, ``none`` or ``!<motivation>`` negate or widen it."""
    annotated_by: str | None = Field(default=None, alias="annotatedBy")
    """Annotation creator URIs."""
    cardinality: Literal["1-to-n", "1-to-1"] | None = None
    """``1-to-1`` restricts to mappings with at most one target concept."""
    sort: SortField = "modified"
    """Sort field."""
    order: SortOrder = "desc"
    """Sort order."""
    limit: int | None = Field(default=None, ge=0)
    """Page size; None uses the configured default."""
    offset: int = Field(default=0, ge=0)
    """Number of results to skip."""

    @field_validator("mode", mode="before")
    @classmethod
    def _default_mode(cls, value: object) -> object:
        return value if value in get_args(Mode.__value__) else "and"

    @field_validator("sort", mode="before")
    @classmethod
    def _default_sort(cls, value: object) -> object:
        return value if value in get_args(SortField.__value__) else "modified"

    @field_validator("order", mode="before")
    @classmethod
    def _default_order(cls, value: object) -> object:
        return value if value in get_args(SortOrder.__value__) else "desc"


class InferenceQuery(MappingQuery):
    """Mapping inference request.

    ``to`` is accepted by the model so that the engine can reject it
    explicitly, and ``direction`` is restricted by the engine to ``forward``.
    """

    depth: int | None = Field(default=None, ge=0)
    """Maximum number of ancestors to walk; None is unlimited."""
    strict: bool = False
    """Exclude ``closeMatch`` sources."""
