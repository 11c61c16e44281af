"""FastAPI application exposing the JSKOS endpoints.

Stores are injected through :func:`create_app`; without explicit stores the
application connects to the configured MongoDB database. Every
:class:`~jskos_common.errors.JskosError` is rendered as RFC 9457 Problem
Details and list endpoints report the number of matches in ``X-Total-Count``.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Final

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from jskos_api.mappings import load_whitelists
from jskos_api.mongo_store import MAPPING_INDEXES, MongoEntityStore, connect_stores
from jskos_api.schemas import InferenceQuery, MappingQuery
from jskos_api.service import (
    ConceptService,
    ConcordanceService,
    MappingService,
    Page,
    Pagination,
    SchemeService,
)
from jskos_api.schemes import SchemeResolver
from jskos_api.store import JskosStores
from jskos_common.errors import MalformedBodyError, MalformedRequestError
from jskos_common.errors.http import problem_details_response, register_problem_details_handler
from jskos_common.fastapi_helpers import (
    DEFAULT_TIMEOUT_SECONDS,
    typed_exception_handler,
    typed_middleware,
)
from jskos_common.logging import get_logger, set_correlation_id, setup_logging
from jskos_common.observability import MetricsProvider
from jskos_common.settings import RuntimeSettings, load_settings

__all__ = ["CorrelationIDMiddleware", "create_app", "router"]

logger = get_logger(__name__)

TOTAL_COUNT_HEADER: Final[str] = "X-Total-Count"
MIDDLEWARE_TIMEOUT_SECONDS = DEFAULT_TIMEOUT_SECONDS

router = APIRouter()


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Read ``X-Correlation-ID`` (or generate one) and echo it on the response."""

    HEADER_NAME: Final[str] = "X-Correlation-ID"

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers[self.HEADER_NAME] = correlation_id
        return response


def _parse[M: BaseModel](model: type[M], request: Request) -> M:
    """Validate the known query parameters of ``request`` into ``model``."""
    known = {info.alias or name for name, info in model.model_fields.items()}
    params = {key: value for key, value in request.query_params.items() if key in known}
    try:
        return model.model_validate(params)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise MalformedRequestError(f"Invalid query parameters: {errors}", cause=exc) from exc


def _list_response(items: list[Any], total_count: int) -> JSONResponse:
    return JSONResponse(content=items, headers={TOTAL_COUNT_HEADER: str(total_count)})


def _page_response(page: Page) -> JSONResponse:
    return _list_response(page.items, page.total_count)


def _offset(request: Request) -> tuple[int, int | None]:
    """Return ``(offset, limit)`` from the query string."""
    raw_offset = request.query_params.get("offset") or "0"
    raw_limit = request.query_params.get("limit")
    try:
        offset = int(raw_offset)
        limit = int(raw_limit) if raw_limit else None
    except ValueError as exc:
        msg = "Parameters offset and limit must be integers."
        raise MalformedRequestError(msg, cause=exc) from exc
    if offset < 0 or (limit is not None and limit < 0):
        msg = "Parameters offset and limit must not be negative."
        raise MalformedRequestError(msg)
    return offset, limit


def _mappings(request: Request) -> MappingService:
    return request.app.state.mapping_service


def _concepts(request: Request) -> ConceptService:
    return request.app.state.concept_service


def _concordances(request: Request) -> ConcordanceService:
    return request.app.state.concordance_service


def _schemes(request: Request) -> SchemeService:
    return request.app.state.scheme_service


@router.get("/healthz")
async def healthz(request: Request) -> dict[str, str]:
    """Report liveness and the configured environment."""
    settings: RuntimeSettings = request.app.state.settings
    return {"status": "ok", "env": settings.server.env, "baseUrl": settings.server.base_url}


@router.get("/mappings")
async def get_mappings(request: Request) -> JSONResponse:
    """List mappings matching the query parameters."""
    page = await _mappings(request).query_mappings(_parse(MappingQuery, request))
    return _page_response(page)


@router.get("/mappings/infer")
async def infer_mappings(request: Request) -> JSONResponse:
    """List stored or inferred mappings for ``from`` into ``toScheme``."""
    page = await _mappings(request).infer_mappings(_parse(InferenceQuery, request))
    return _page_response(page)


@router.get("/mappings/voc")
async def get_mapping_schemes(request: Request) -> JSONResponse:
    """List schemes used by mappings with their usage counts."""
    offset, limit = _offset(request)
    params = request.query_params
    mode = params.get("mode") or "or"
    if mode not in ("and", "or"):
        mode = "or"
    page = await _mappings(request).get_mapping_schemes(
        params.get("from"),
        params.get("to"),
        mode=mode,  # type: ignore[arg-type]
        offset=offset,
        limit=limit,
    )
    return _page_response(page)


@router.get("/mappings/suggest")
async def suggest_notations(request: Request) -> JSONResponse:
    """Suggest notations used in mappings (OpenSearch Suggest format)."""
    offset, limit = _offset(request)
    params = request.query_params
    suggestions, total = await _mappings(request).get_notation_suggestions(
        params.get("search"), voc=params.get("voc"), offset=offset, limit=limit
    )
    return _list_response(suggestions, total)


@router.get("/mappings/{mapping_id}")
async def get_mapping(request: Request, mapping_id: str) -> dict[str, Any]:
    """Return a single mapping."""
    return await _mappings(request).get_mapping(mapping_id)


@router.get("/concepts")
async def get_concepts(request: Request) -> JSONResponse:
    """Return concepts by URI (``uri``) or by scheme (``voc``)."""
    offset, limit = _offset(request)
    params = request.query_params
    service = _concepts(request)
    if params.get("uri"):
        page = await service.get_details(params.get("uri"), offset=offset, limit=limit)
    elif params.get("top") in ("true", "1"):
        page = await service.get_top(params.get("voc"), offset=offset, limit=limit)
    else:
        page = await service.get_concepts(params.get("voc"), offset=offset, limit=limit)
    return _page_response(page)


@router.get("/narrower")
async def get_narrower(request: Request) -> JSONResponse:
    """Return the direct children of ``uri``."""
    items = await _concepts(request).get_narrower(request.query_params.get("uri"))
    return _list_response(items, len(items))


@router.get("/ancestors")
async def get_ancestors(request: Request) -> JSONResponse:
    """Return the ancestors of ``uri``, root first."""
    items = await _concepts(request).get_ancestors(request.query_params.get("uri"))
    return _list_response(items, len(items))


@router.get("/suggest")
async def suggest_concepts(request: Request) -> JSONResponse:
    """Suggest concepts for ``search`` (OpenSearch Suggest format)."""
    offset, limit = _offset(request)
    params = request.query_params
    suggestions, total = await _concepts(request).suggest(
        params.get("search"), voc=params.get("voc"), offset=offset, limit=limit
    )
    return _list_response(suggestions, total)


@router.get("/search")
async def search_concepts(request: Request) -> JSONResponse:
    """Search concepts for ``search`` (or ``query``), best match first."""
    offset, limit = _offset(request)
    params = request.query_params
    page = await _concepts(request).search(
        params.get("search") or params.get("query"),
        voc=params.get("voc"),
        offset=offset,
        limit=limit,
    )
    return _page_response(page)


@router.get("/voc")
async def get_schemes(request: Request) -> JSONResponse:
    """List concept schemes, optionally restricted to ``uri``."""
    offset, limit = _offset(request)
    page = await _schemes(request).get_schemes(
        request.query_params.get("uri"), offset=offset, limit=limit
    )
    return _page_response(page)


@router.get("/concordances")
async def get_concordances(request: Request) -> JSONResponse:
    """List concordances."""
    offset, limit = _offset(request)
    params = request.query_params
    mode = params.get("mode") or "and"
    if mode not in ("and", "or"):
        mode = "and"
    page = await _concordances(request).get_concordances(
        uri=params.get("uri"),
        from_scheme=params.get("fromScheme"),
        to_scheme=params.get("toScheme"),
        creator=params.get("creator"),
        mode=mode,  # type: ignore[arg-type]
        offset=offset,
        limit=limit,
    )
    return _page_response(page)


async def post_mapping(request: Request) -> JSONResponse:
    """Store a new mapping and return it with status 201."""
    try:
        body = await request.json()
    except ValueError as exc:
        msg = "Request body is not valid JSON."
        raise MalformedBodyError(msg, cause=exc) from exc
    mapping = await _mappings(request).create_mapping(body)
    return JSONResponse(content=mapping, status_code=201)


async def metrics(request: Request) -> Response:
    """Expose Prometheus metrics."""
    provider: MetricsProvider = request.app.state.metrics
    return Response(generate_latest(provider.registry), media_type=CONTENT_TYPE_LATEST)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = MalformedRequestError(f"Invalid request: {exc.errors()}", cause=exc)
    return problem_details_response(error, request)


def create_app(
    stores: JskosStores | None = None,
    settings: RuntimeSettings | None = None,
    *,
    metrics_provider: MetricsProvider | None = None,
    configure_logging: bool = True,
) -> FastAPI:
    """Build the application.

    Parameters
    ----------
    stores : JskosStores | None, optional
        Stores to serve from. When None, MongoDB stores are created from
        ``settings`` and the client is closed on shutdown.
    settings : RuntimeSettings | None, optional
        Settings. Defaults to :func:`load_settings`.
    metrics_provider : MetricsProvider | None, optional
        Metrics provider. Defaults to :meth:`MetricsProvider.default`.
    configure_logging : bool, optional
        Install the JSON log handler on the root logger. Defaults to True.

    Returns
    -------
    FastAPI
        Configured application.

    Raises
    ------
    SettingsError
        If ``settings`` is None and the environment holds invalid settings.
    """
    resolved = settings or load_settings()
    if configure_logging:
        setup_logging(resolved.observability.log_level)
    provider = metrics_provider or MetricsProvider.default()
    client = None
    if stores is None:
        stores, client = connect_stores(resolved)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if isinstance(stores.mappings, MongoEntityStore):
            await stores.mappings.create_indexes(MAPPING_INDEXES)
        app.state.mapping_service.whitelists = await load_whitelists(
            SchemeResolver(stores.schemes),
            resolved.mappings.from_scheme_whitelist,
            resolved.mappings.to_scheme_whitelist,
        )
        yield
        if client is not None:
            await client.close()
            logger.info("Document store client closed", extra={"operation": "shutdown"})

    app = FastAPI(title="JSKOS API", version="0.1.0", lifespan=lifespan)
    pagination = Pagination(resolved.mappings.default_limit, resolved.mappings.max_limit)
    app.state.settings = resolved
    app.state.stores = stores
    app.state.metrics = provider
    app.state.mapping_service = MappingService.from_config(
        stores,
        resolved.mappings,
        default_depth=resolved.inference.default_depth,
        base_url=resolved.server.base_url,
        metrics=provider,
    )
    app.state.concept_service = ConceptService(stores, pagination=pagination)
    app.state.concordance_service = ConcordanceService(stores, pagination=pagination)
    app.state.scheme_service = SchemeService(stores, pagination=pagination)

    register_problem_details_handler(app)
    typed_exception_handler(
        app,
        RequestValidationError,
        _request_validation_handler,
        name="request_validation_handler",
    )
    typed_middleware(
        app,
        CorrelationIDMiddleware,
        name="correlation_id_middleware",
        timeout=MIDDLEWARE_TIMEOUT_SECONDS,
    )
    app.include_router(router)
    if resolved.mappings.create_enabled:
        app.add_api_route("/mappings", post_mapping, methods=["POST"], status_code=201)
    if resolved.observability.metrics_enabled:
        app.add_api_route("/metrics", metrics, methods=["GET"], include_in_schema=False)
    logger.info(
        "Application created",
        extra={"operation": "create_app", "env": resolved.server.env},
    )
    return app
