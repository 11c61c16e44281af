"""Typed exception hierarchy with Problem Details support.

All JSKOS API exceptions inherit from :class:`JskosError`, which provides
structured fields and RFC 9457 Problem Details mapping.

Examples
--------
>>> from jskos_common.errors import EntityNotFoundError, ErrorCode
>>> try:
...     raise EntityNotFoundError("Mapping not found.")
... except EntityNotFoundError as e:
...     assert e.code == ErrorCode.ENTITY_NOT_FOUND
...     assert e.http_status == 404
...     details = e.to_problem_details(instance="/mappings/123")
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, cast

from jskos_common.errors.codes import ErrorCode, get_type_uri
from jskos_common.problem_details import build_problem_details

if TYPE_CHECKING:
    from jskos_common.problem_details import ProblemDetails
    from jskos_common.types import JsonValue

__all__ = [
    "DatabaseAccessError",
    "EntityNotFoundError",
    "InvalidBodyError",
    "JskosError",
    "JskosErrorConfig",
    "MalformedBodyError",
    "MalformedRequestError",
    "SettingsError",
]


@dataclass(slots=True)
class JskosErrorConfig:
    """Configuration options used when instantiating :class:`JskosError`."""

    code: ErrorCode = ErrorCode.RUNTIME_ERROR
    http_status: int = 500
    log_level: int = logging.ERROR
    cause: Exception | None = None
    context: Mapping[str, object] | None = None


class JskosError(Exception):
    """Base exception for all JSKOS API errors.

    Provides structured fields (code, http_status, log_level) and RFC 9457
    Problem Details mapping. Subclasses declare a ``default_message`` used
    when the caller supplies none.

    Parameters
    ----------
    message : str | None, optional
        Human-readable error message. Defaults to ``default_message``.
    config : JskosErrorConfig | None, optional
        Structured configuration (code, http_status, log_level, cause,
        context). Defaults to a generic runtime error.

    Attributes
    ----------
    message : str
        Human-readable error message.
    code : ErrorCode
        Error code enum value.
    http_status : int
        HTTP status code for Problem Details responses.
    log_level : int
        Logging level used when the error is rendered.
    context : dict[str, object]
        Additional context included as Problem Details extensions.

    Examples
    --------
    >>> error = JskosError("Operation failed")
    >>> assert error.code == ErrorCode.RUNTIME_ERROR
    >>> assert error.to_problem_details()["status"] == 500
    """

    default_message: ClassVar[str] = "There was an error processing the request."

    def __init__(
        self,
        message: str | None = None,
        *,
        config: JskosErrorConfig | None = None,
    ) -> None:
        resolved = config or JskosErrorConfig()
        self.message = message or self.default_message
        self.code = resolved.code
        self.http_status = resolved.http_status
        self.log_level = resolved.log_level
        self.context = dict(resolved.context) if resolved.context else {}
        super().__init__(self.message)
        if resolved.cause is not None:
            self.__cause__ = resolved.cause

    def to_problem_details(
        self,
        instance: str | None = None,
        title: str | None = None,
    ) -> ProblemDetails:
        """Convert to RFC 9457 Problem Details JSON.

        Parameters
        ----------
        instance : str | None, optional
            URI identifying the specific occurrence. Defaults to None.
        title : str | None, optional
            Short summary. Defaults to the exception class name.

        Returns
        -------
        ProblemDetails
            Problem Details object with type, title, status, detail, code,
            instance, and optional extensions.

        Examples
        --------
        >>> details = MalformedRequestError().to_problem_details(instance="/mappings/infer")
        >>> assert details["type"] == "https://jskos.dev/problems/malformed-request"
        >>> assert details["status"] == 400
        """
        return build_problem_details(
            problem_type=get_type_uri(self.code),
            title=title or self.__class__.__name__,
            status=self.http_status,
            detail=self.message,
            instance=instance or "urn:jskos:error",
            code=self.code.value,
            extensions=cast("Mapping[str, JsonValue] | None", self.context or None),
        )

    def __str__(self) -> str:
        """Return "ClassName[code]: message", noting the cause type when set."""
        base = f"{self.__class__.__name__}[{self.code.value}]: {self.message}"
        if self.__cause__:
            base += f" (caused by: {type(self.__cause__).__name__})"
        return base


class MalformedRequestError(JskosError):
    """Query parameters are missing, malformed or mutually exclusive.

    Uses error code MALFORMED_REQUEST and HTTP status 400. Logged at WARNING
    since the caller is at fault.

    Parameters
    ----------
    message : str | None, optional
        Human-readable error message. Defaults to None.
    cause : Exception | None, optional
        Underlying exception. Defaults to None.
    context : Mapping[str, object] | None, optional
        Additional context dictionary. Defaults to None.

    Examples
    --------
    >>> raise MalformedRequestError("Parameter `to` is not allowed for inference.")
    """

    default_message = "Malformed request."

    def __init__(
        self,
        message: str | None = None,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            config=JskosErrorConfig(
                code=ErrorCode.MALFORMED_REQUEST,
                http_status=400,
                log_level=logging.WARNING,
                cause=cause,
                context=context,
            ),
        )


class MalformedBodyError(JskosError):
    """The request body could not be parsed (HTTP 400)."""

    default_message = "Malformed body."

    def __init__(
        self,
        message: str | None = None,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            config=JskosErrorConfig(
                code=ErrorCode.MALFORMED_BODY,
                http_status=400,
                log_level=logging.WARNING,
                cause=cause,
                context=context,
            ),
        )


class InvalidBodyError(JskosError):
    """The request body parsed but violates a constraint.

    Raised for example when a mapping references a scheme that is not on the
    configured whitelist. Uses error code INVALID_BODY and HTTP status 422.

    Examples
    --------
    >>> raise InvalidBodyError("Value in fromScheme is not allowed.")
    """

    default_message = "Invalid body."

    def __init__(
        self,
        message: str | None = None,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            config=JskosErrorConfig(
                code=ErrorCode.INVALID_BODY,
                http_status=422,
                log_level=logging.WARNING,
                cause=cause,
                context=context,
            ),
        )


class EntityNotFoundError(JskosError):
    """A referenced entity does not exist where existence is required.

    Uses error code ENTITY_NOT_FOUND and HTTP status 404.

    Parameters
    ----------
    message : str | None, optional
        Human-readable error message. Defaults to None.
    cause : Exception | None, optional
        Underlying exception. Defaults to None.
    context : Mapping[str, object] | None, optional
        Additional context dictionary, e.g. ``{"id": ...}``. Defaults to None.
    """

    default_message = "The requested entity could not be found."

    def __init__(
        self,
        message: str | None = None,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            config=JskosErrorConfig(
                code=ErrorCode.ENTITY_NOT_FOUND,
                http_status=404,
                log_level=logging.INFO,
                cause=cause,
                context=context,
            ),
        )


class DatabaseAccessError(JskosError):
    """The entity store failed.

    Uses error code DATABASE_ACCESS and HTTP status 500. Never retried by the
    core; retry policy belongs to the store client.

    Examples
    --------
    >>> raise DatabaseAccessError(cause=ConnectionError("server selection timeout"))
    """

    default_message = "There was an error accessing the database. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            config=JskosErrorConfig(
                code=ErrorCode.DATABASE_ACCESS,
                http_status=500,
                cause=cause,
                context=context,
            ),
        )


class SettingsError(JskosError):
    """Runtime settings failed validation.

    Uses error code CONFIGURATION_ERROR and HTTP status 500.

    Parameters
    ----------
    message : str | None, optional
        Human-readable error message. Defaults to None.
    cause : Exception | None, optional
        Underlying validation error. Defaults to None.
    context : Mapping[str, object] | None, optional
        Additional context, typically ``{"errors": [...]}``. Defaults to None.
    """

    default_message = "Invalid configuration."

    def __init__(
        self,
        message: str | None = None,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            config=JskosErrorConfig(
                code=ErrorCode.CONFIGURATION_ERROR,
                http_status=500,
                cause=cause,
                context=context,
            ),
        )
