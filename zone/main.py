"""
Zone API application.

Wires the ledger routes, the ``{success: false, error}`` envelope for every
failure, request logging and the observability endpoints.
"""

import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from zone.api.routes import health_router, router
from zone.config import settings
from zone.db.migration_runner import run_migrations
from zone.db.session import dispose_engine
from zone.models.api import ErrorResponse
from zone.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from zone.services.code_delivery import close_code_sender

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "application_starting",
        version=settings.api_version,
        environment=settings.environment,
        timezone=settings.timezone,
        tracing_enabled=settings.tracing_enabled,
    )
    if settings.run_migrations_on_startup:
        run_migrations()
    yield
    await close_code_sender()
    await dispose_engine()
    logger.info("application_stopped")


def envelope(
    status_code: int,
    error: str,
    details: list[Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=error, details=details).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _describe(error: dict[str, Any]) -> dict[str, Any]:
    # Pydantic error ctx can hold exception objects that are not JSON-safe.
    item = {"type": error.get("type"), "loc": list(error.get("loc", ())), "msg": error.get("msg")}
    if "ctx" in error:
        item["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
    return item


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [_describe(e) for e in exc.errors()]
        logger.warning("validation_error", path=request.url.path, errors=details)
        return envelope(400, "Validation failed", details=details)

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404 and exc.detail == "Not Found":
            return envelope(404, "Route not found", details=[request.url.path])
        return envelope(exc.status_code, str(exc.detail), headers=exc.headers)

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception) -> JSONResponse:
        metrics.record_error(type(exc).__name__, "http_request")
        logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=True)
        return envelope(500, "Internal server error" if settings.is_production else str(exc))


async def request_logging(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Time each request and bind its id for every log line it emits."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    path, method = request.url.path, request.method
    in_progress = metrics.http_requests_in_progress.labels(endpoint=path, method=method)
    in_progress.inc()
    started = time.perf_counter()
    status_code = 500
    try:
        with log_context(request_id=request_id):
            response = await call_next(request)
            status_code = response.status_code
            logger.info(
                "request_completed",
                method=method,
                path=path,
                status_code=status_code,
                duration_seconds=round(time.perf_counter() - started, 4),
            )
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        metrics.record_http_request(path, method, status_code, time.perf_counter() - started)
        in_progress.dec()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description=settings.api_description,
        lifespan=lifespan,
    )
    register_error_handlers(app)
    setup_tracing(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.middleware("http")(request_logging)
    app.include_router(router)
    app.include_router(health_router)

    if settings.metrics_enabled:

        @app.get("/metrics", include_in_schema=False)
        async def metrics_endpoint() -> Response:
            return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "zone.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
