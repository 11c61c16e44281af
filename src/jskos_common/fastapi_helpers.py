"""Typed FastAPI helper utilities with structured logging and timeouts.

The helpers wrap FastAPI middleware and exception handlers so that each
invocation is logged with the active correlation ID, timed and bounded by a
timeout.
"""

from __future__ import annotations

import asyncio
import time
import typing as t
from collections.abc import Callable
from contextlib import contextmanager
from typing import TYPE_CHECKING, cast

from starlette.middleware.base import BaseHTTPMiddleware

from jskos_common.logging import LoggerAdapter, get_correlation_id, get_logger, with_fields

if TYPE_CHECKING:
    from collections.abc import Iterator

    from fastapi import FastAPI, Request
    from starlette.requests import Request as StarletteRequest
    from starlette.responses import Response
    from starlette.types import ASGIApp

__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "typed_exception_handler",
    "typed_middleware",
]

DEFAULT_TIMEOUT_SECONDS = 10.0
"""Default timeout applied to FastAPI helpers (in seconds)."""

logger = get_logger(__name__)

MiddlewareFactory = Callable[..., BaseHTTPMiddleware]


async def _await_with_timeout[T](coro: t.Awaitable[T], timeout_seconds: float | None) -> T:
    if timeout_seconds is None:
        return await coro
    return await asyncio.wait_for(coro, timeout_seconds)


@contextmanager
def _instrumented(kind: str, name: str, **fields: object) -> Iterator[LoggerAdapter]:
    """Log ``<kind>.start`` / ``.success`` / ``.timeout`` / ``.error`` around a block.

    Exceptions are logged and re-raised unchanged.
    """
    with with_fields(logger, operation=name, correlation_id=get_correlation_id()) as log:
        start = time.perf_counter()
        log.debug(f"{kind}.start", extra={"status": "started", **fields})
        try:
            yield log
        except TimeoutError:
            duration_ms = (time.perf_counter() - start) * 1000.0
            log.exception(f"{kind}.timeout", extra={"status": "timeout", "duration_ms": duration_ms})
            raise
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000.0
            log.exception(f"{kind}.error", extra={"status": "error", "duration_ms": duration_ms})
            raise
        duration_ms = (time.perf_counter() - start) * 1000.0
        log.debug(f"{kind}.success", extra={"status": "success", "duration_ms": duration_ms})


def typed_exception_handler[E: Exception](
    app: FastAPI,
    exception_type: type[E],
    handler: Callable[[Request, E], t.Awaitable[Response]],
    *,
    name: str,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
) -> None:
    """Register ``handler`` for ``exception_type`` with logging and timeouts."""

    async def _wrapped(request: Request, exc: E) -> Response:
        with _instrumented("exception_handler", name, exception_type=exception_type.__name__):
            return await _await_with_timeout(handler(request, exc), timeout)

    handler_callable = cast("Callable[[Request, Exception], t.Awaitable[Response]]", _wrapped)
    app.add_exception_handler(exception_type, handler_callable)


def typed_middleware(
    app: FastAPI,
    middleware_class: MiddlewareFactory,
    *factory_args: object,
    name: str,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    **options: object,
) -> None:
    """Register ``middleware_class`` with instrumentation and timeouts.

    Parameters
    ----------
    app : FastAPI
        Application receiving the middleware.
    middleware_class : MiddlewareFactory
        ``BaseHTTPMiddleware`` subclass (or factory) to delegate to.
    *factory_args : object
        Positional arguments forwarded to ``middleware_class``.
    name : str
        Operation name for logging.
    timeout : float | None, optional
        Timeout in seconds. Defaults to DEFAULT_TIMEOUT_SECONDS.
    **options : object
        Keyword arguments forwarded to ``middleware_class``.
    """

    class _InstrumentedMiddleware(BaseHTTPMiddleware):
        def __init__(self, app: ASGIApp) -> None:
            self._delegate = middleware_class(app, *factory_args, **options)
            super().__init__(app)

        async def dispatch(
            self,
            request: StarletteRequest,
            call_next: Callable[[StarletteRequest], t.Awaitable[Response]],
        ) -> Response:
            with _instrumented("middleware", name):
                return await _await_with_timeout(
                    self._delegate.dispatch(request, call_next), timeout
                )

    name_attr: object = getattr(middleware_class, "__name__", None)
    _InstrumentedMiddleware.__name__ = (
        name_attr if isinstance(name_attr, str) else middleware_class.__class__.__name__
    )
    app.add_middleware(_InstrumentedMiddleware)
