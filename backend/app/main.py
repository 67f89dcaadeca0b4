from contextlib import asynccontextmanager
import logging

from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.metrics import router as metrics_router
from app.api.v1.routes import router as api_router
from app.api.v1.shared.cache_manager import CatalogProxy
from app.api.v1.shared.errors import error_response, invalid_request_response
from app.api.v1.shared.rate_limit import limiter
from app.core.config import get_settings
from app.core.database import dispose_engine
from app.core.telemetry import (
    configure_opentelemetry,
    instrument_fastapi,
    instrument_httpx,
)
from app.services.cache import CacheService, build_valkey_client
from app.services.cache_ttl_config import TTLConfig
from app.services.mangadex_auth import MangaDexAuth
from app.services.mangadex_client import MangaDexClient, build_http_client
from app.services.mangadex_errors import InvalidRequestError
from app.services.mangadex_retry import RetryPolicy

logger = logging.getLogger(__name__)
REQUEST_ID_HEADER = "X-Request-Id"


def _configure_sqlalchemy_logging(database_echo: bool) -> None:
    """
    Silence verbose SQLAlchemy logs unless echo is explicitly enabled.

    The tag mirror is the only database traffic, but its bulk upsert dumps
    every parameter at INFO, so the engine and pool stay at WARNING unless
    DATABASE_ECHO=true.
    """
    level = logging.INFO if database_echo else logging.WARNING
    for name in (
        "sqlalchemy",
        "sqlalchemy.engine",
        "sqlalchemy.engine.Engine",
        "sqlalchemy.pool",
    ):
        sa_logger = logging.getLogger(name)
        sa_logger.setLevel(level)
        sa_logger.propagate = database_echo


def _install_request_id_middleware(app: FastAPI) -> None:
    """Ensure each response includes a stable X-Request-Id header."""

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER, str(uuid4()))
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _install_exception_handlers(app: FastAPI) -> None:
    """Answer every failure with the catalog envelope."""
    settings = get_settings()

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        debug = None
        if not settings.is_production:
            debug = {
                "error": "RequestValidationError",
                "field_errors": [
                    {
                        "location": ".".join(str(part) for part in error["loc"]),
                        "message": error["msg"],
                        "kind": error["type"],
                    }
                    for error in exc.errors()
                ],
            }
        return invalid_request_response("invalid request", debug=debug)

    @app.exception_handler(InvalidRequestError)
    async def handle_invalid_request(
        request: Request, exc: InvalidRequestError
    ) -> JSONResponse:
        return invalid_request_response(str(exc))

    @app.exception_handler(RateLimitExceeded)
    async def handle_rate_limit(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        logger.info("Rate limit exceeded for %s: %s", request.url.path, exc.detail)
        return error_response(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "too many requests",
            headers={"Retry-After": str(exc.limit.limit.get_expiry())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "request failed"
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            message = "not found"
        return error_response(exc.status_code, message, headers=exc.headers)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        debug = None
        if not settings.is_production:
            debug = {"error": type(exc).__name__, "detail": str(exc)}
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal server error",
            debug=debug,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    settings = get_settings()

    # Configure OpenTelemetry at startup
    configure_opentelemetry(
        service_name=settings.otel_service_name,
        service_version=settings.otel_service_version,
        otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        otlp_headers=settings.otel_exporter_otlp_headers,
        enabled=settings.otel_enabled,
    )

    # Instrument httpx for outbound request tracing
    instrument_httpx(enabled=settings.otel_enabled)

    valkey_client = build_valkey_client(settings)
    cache = CacheService(valkey_client, config=TTLConfig(settings))
    http = build_http_client(settings)
    auth = MangaDexAuth(http, settings)
    client = MangaDexClient(
        http,
        retry_policy=RetryPolicy.from_settings(settings),
        auth=auth if auth.enabled else None,
    )

    app.state.cache_service = cache
    app.state.mangadex_client = client
    app.state.catalog_proxy = CatalogProxy(cache, client, settings)
    logger.info(
        "Catalog proxy ready (upstream=%s, authenticated=%s)",
        settings.mangadex_api_base_url,
        auth.enabled,
    )

    try:
        yield
    finally:
        await http.aclose()
        await cache.close()
        await dispose_engine()


def create_app() -> FastAPI:
    """Application factory for FastAPI."""
    settings = get_settings()
    app = FastAPI(
        title="MangaVerse Catalog API",
        description="Caching proxy that re-exposes the MangaDex catalog.",
        version="0.1.0",
        lifespan=lifespan,
    )

    _configure_sqlalchemy_logging(settings.database_echo)

    # Instrument FastAPI for tracing if enabled
    instrument_fastapi(app, enabled=settings.otel_enabled)
    _install_request_id_middleware(app)
    _install_exception_handlers(app)

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    allow_origins = settings.cors_allow_origins
    allow_origin_regex = settings.cors_allow_origin_regex
    if allow_origins or allow_origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_origin_regex=allow_origin_regex,
            allow_credentials=bool(allow_origins),
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Cache-Status", REQUEST_ID_HEADER],
        )

    app.include_router(metrics_router)
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()
