"""RFC 9457 Problem Details helpers with schema validation.

Every error payload the API returns is built here and validated against a
JSON Schema 2020-12 document describing the Problem Details shape.

Examples
--------
>>> from jskos_common.problem_details import build_problem_details, render_problem
>>> problem = build_problem_details(
...     problem_type="https://jskos.dev/problems/entity-not-found",
...     title="EntityNotFoundError",
...     status=404,
...     detail="Mapping not found.",
...     instance="/mappings/abc",
... )
>>> assert "entity-not-found" in render_problem(problem)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import cache
from typing import TYPE_CHECKING, Final, TypedDict, cast

from jsonschema import Draft202012Validator

from jskos_common.types import JsonObject, JsonPrimitive, JsonValue

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "JsonObject",
    "JsonPrimitive",
    "JsonValue",
    "ProblemDetails",
    "ProblemDetailsParams",
    "ProblemDetailsValidationError",
    "build_problem_details",
    "render_problem",
    "validate_problem_details",
]

PROBLEM_DETAILS_SCHEMA: Final[dict[str, object]] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["type", "title", "status", "detail", "instance"],
    "properties": {
        "type": {"type": "string", "minLength": 1},
        "title": {"type": "string", "minLength": 1},
        "status": {"type": "integer", "minimum": 100, "maximum": 599},
        "detail": {"type": "string"},
        "instance": {"type": "string"},
        "code": {"type": "string", "pattern": "^[a-z0-9]+(-[a-z0-9]+)*$"},
        "extensions": {"type": "object"},
    },
    "additionalProperties": False,
}


class ProblemDetails(TypedDict, total=False):
    """TypedDict for RFC 9457 Problem Details responses."""

    type: str
    title: str
    status: int
    detail: str
    instance: str
    code: str
    extensions: dict[str, JsonValue]


@dataclass(slots=True)
class ProblemDetailsParams:
    """Parameters used to construct a Problem Details payload."""

    problem_type: str
    title: str
    status: int
    detail: str
    instance: str
    code: str | None = None
    extensions: Mapping[str, JsonValue] | None = None


class ProblemDetailsValidationError(Exception):
    """Raised when a Problem Details payload fails schema validation.

    Parameters
    ----------
    message : str
        Human-readable error message describing the validation failure.
    validation_errors : list[str] | None, optional
        Individual validator messages. Defaults to None.
    """

    def __init__(self, message: str, validation_errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.validation_errors = validation_errors or []


@cache
def _validator() -> Draft202012Validator:
    Draft202012Validator.check_schema(PROBLEM_DETAILS_SCHEMA)
    return Draft202012Validator(PROBLEM_DETAILS_SCHEMA)


def validate_problem_details(payload: Mapping[str, JsonValue]) -> None:
    """Validate ``payload`` against the Problem Details schema.

    Parameters
    ----------
    payload : Mapping[str, JsonValue]
        Candidate Problem Details payload.

    Raises
    ------
    ProblemDetailsValidationError
        If the payload does not conform to the schema.
    """
    errors = sorted(_validator().iter_errors(dict(payload)), key=lambda err: list(err.path))
    if errors:
        messages = [
            f"{'/'.join(str(part) for part in error.path) or '<root>'}: {error.message}"
            for error in errors
        ]
        message = f"Problem Details validation failed: {messages[0]}"
        raise ProblemDetailsValidationError(message, validation_errors=messages)


def build_problem_details(  # noqa: PLR0913
    problem_type: str,
    title: str,
    status: int,
    detail: str,
    instance: str,
    *,
    code: str | None = None,
    extensions: Mapping[str, JsonValue] | None = None,
) -> ProblemDetails:
    """Build an RFC 9457 Problem Details payload.

    Parameters
    ----------
    problem_type : str
        Type URI identifying the problem class.
    title : str
        Short human-readable summary.
    status : int
        HTTP status code.
    detail : str
        Human-readable explanation of this occurrence.
    instance : str
        URI reference identifying this occurrence.
    code : str | None, optional
        Stable kebab-case error code. Defaults to None.
    extensions : Mapping[str, JsonValue] | None, optional
        Additional context fields. Defaults to None.

    Returns
    -------
    ProblemDetails
        Validated Problem Details payload.

    Examples
    --------
    >>> problem = build_problem_details(
    ...     problem_type="https://jskos.dev/problems/malformed-request",
    ...     title="MalformedRequestError",
    ...     status=400,
    ...     detail="Malformed request.",
    ...     instance="/mappings/infer",
    ...     code="malformed-request",
    ... )
    >>> assert problem["status"] == 400
    """
    params = ProblemDetailsParams(
        problem_type=problem_type,
        title=title,
        status=status,
        detail=detail,
        instance=instance,
        code=code,
        extensions=extensions,
    )
    payload: dict[str, object] = {
        "type": params.problem_type,
        "title": params.title,
        "status": params.status,
        "detail": params.detail,
        "instance": params.instance,
    }
    if params.code is not None:
        payload["code"] = params.code
    if params.extensions:
        payload["extensions"] = dict(params.extensions)

    validate_problem_details(cast("Mapping[str, JsonValue]", payload))
    return cast("ProblemDetails", payload)


def render_problem(problem: ProblemDetails | dict[str, object]) -> str:
    """Render Problem Details as a minified JSON string.

    Parameters
    ----------
    problem : ProblemDetails | dict[str, object]
        Problem Details payload to serialize.

    Returns
    -------
    str
        JSON-encoded payload with non-ASCII characters preserved.
    """
    return json.dumps(problem, default=str, ensure_ascii=False)
