"""HTTP adapters for Problem Details exception handling.

Examples
--------
>>> from fastapi import FastAPI
>>> from jskos_common.errors.http import register_problem_details_handler
>>> app = FastAPI()
>>> register_problem_details_handler(app)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse

from jskos_common.errors.exceptions import JskosError
from jskos_common.fastapi_helpers import typed_exception_handler
from jskos_common.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

    from jskos_common.problem_details import ProblemDetails


__all__ = [
    "problem_details_response",
    "register_problem_details_handler",
]


logger = get_logger(__name__)


def problem_details_response(
    error: JskosError,
    request: Request | None = None,
) -> JSONResponse:
    """Convert a JskosError to an RFC 9457 Problem Details JSONResponse.

    Parameters
    ----------
    error : JskosError
        Exception to convert.
    request : Request | None, optional
        Request used to derive the ``instance`` URI (path plus query).
        Defaults to None.

    Returns
    -------
    JSONResponse
        Response with the error's status code and
        ``application/problem+json`` content type.

    Examples
    --------
    >>> from jskos_common.errors import EntityNotFoundError
    >>> response = problem_details_response(EntityNotFoundError())
    >>> assert response.status_code == 404
    """
    instance = None
    if request:
        instance = str(request.url.path)
        if request.url.query:
            instance += f"?{request.url.query}"

    details: ProblemDetails = error.to_problem_details(instance=instance)

    logger.log(
        error.log_level,
        "Error: %s",
        error.message,
        exc_info=error.__cause__,
        extra={"operation": "problem_details", "code": error.code.value},
    )

    return JSONResponse(
        status_code=error.http_status,
        content=details,
        media_type="application/problem+json",
    )


def register_problem_details_handler(app: FastAPI) -> None:
    """Register a FastAPI exception handler rendering every JskosError."""

    async def _handler(request: Request, exc: JskosError) -> JSONResponse:
        return problem_details_response(exc, request)

    typed_exception_handler(
        app,
        JskosError,
        _handler,
        name="jskos_error_handler",
    )
