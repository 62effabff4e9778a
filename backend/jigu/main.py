"""
Jigu Server: FastAPI Application Factory
========================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() builds an AppContext, registers
       middleware, exception handlers and routers, and returns the app.
Who:   Called by uvicorn (`uvicorn jigu.main:app`), by the runner
       (`python -m jigu`) and by the tests (with a mocked context).

Application Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                      FastAPI App                        │
    │                                                         │
    │  Middleware Chain:                                      │
    │  ┌────────────┐ ┌──────────────┐ ┌──────┐ ┌──────┐     │
    │  │ Request ID │→│ HTTP Logging │→│ GZip │→│ CORS │     │
    │  └────────────┘ └──────────────┘ └──────┘ └──────┘     │
    │                                                         │
    │  Routes:                                                │
    │  /api/v1/scripts   /api/v1/completions                  │
    │  /api/logs         /health                              │
    │                                                         │
    │  app.state.context → AppContext (services, Mongo,       │
    │                      shutdown coordinator)              │
    └─────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging → validate config → connect MongoDB
              → start log timer → register cleanups
    Shutdown: GracefulShutdown.run_cleanup() (a no-op when the runner has
              already started the shutdown sequence)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from jigu import __version__
from jigu.config import Settings, settings as default_settings
from jigu.context import AppContext
from jigu.exceptions import (
    CircuitBreakerOpenError,
    DatabaseError,
    JiguError,
    UpstreamServiceError,
)
from jigu.middleware.logging import RequestLoggingMiddleware
from jigu.middleware.request_id import RequestIDMiddleware, request_id_var
from jigu.routes import completions, health, logs, scripts
from jigu.schemas.common import ErrorResponse, ServiceCode

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Diagnostics Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(config: Settings = default_settings) -> None:
    """
    Configure stdlib logging for the whole process.

    The log subsystem's console sink writes through the `jigu.console`
    logger, so it shares this handler and format.
    """
    logging.basicConfig(
        level=config.log_level_number,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Chatty at DEBUG/INFO for every operation
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    ctx: AppContext = app.state.context

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(ctx.settings)
    logger.info("=" * 60)
    logger.info("Jigu server %s starting (%s)", __version__, ctx.settings.environment)

    # Fails fast: a server without its database cannot serve anything
    await ctx.start()

    logger.info("Server ready at http://%s:%d", ctx.settings.server_host, ctx.settings.server_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Jigu server shutting down...")
    await ctx.shutdown.run_cleanup("lifespan shutdown")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    code: int,
    message: str,
    details=None,
    headers=None,
) -> JSONResponse:
    body = ErrorResponse(
        code=code,
        message=message,
        details=details,
        request_id=request_id_var.get("") or None,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True) | {"data": None},
        headers=headers,
    )


_HTTP_STATUS_CODES = {
    401: ServiceCode.UNAUTHORIZED,
    403: ServiceCode.FORBIDDEN,
    404: ServiceCode.NOT_FOUND,
}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions onto the `{code, data: null, message, request_id}` envelope.

    Handler hierarchy:
        RequestValidationError   → 400 / 4000 (field errors in `details`)
        JiguError subclasses     → their own status / service code
        DatabaseError            → 500 / 5000 with a generic message
        HTTPException            → its status, 4004/4001/4003/4000/5000
        Exception (fallback)     → 500 / 5000

    Stack traces and driver errors are logged, never returned.
    """

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        logger.warning("[%s] Request validation failed: %s", request_id_var.get(""), details)
        return _error_response(400, ServiceCode.BAD_REQUEST, "Validation error", details=details)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(
            500,
            ServiceCode.INTERNAL_SERVER_ERROR,
            "An internal error occurred. Please try again later.",
        )

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            exc.status_code,
            exc.service_code,
            exc.message,
            details={"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(UpstreamServiceError)
    async def handle_upstream_error(request: Request, exc: UpstreamServiceError):
        logger.error("[%s] Upstream error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return _error_response(exc.status_code, exc.service_code, exc.message, headers=headers)

    @app.exception_handler(JiguError)
    async def handle_jigu_error(request: Request, exc: JiguError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        else:
            logger.warning("[%s] %s: %s", rid, type(exc).__name__, exc.message)
        details = exc.context or None if exc.status_code < 500 else None
        return _error_response(exc.status_code, exc.service_code, exc.message, details=details)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code in _HTTP_STATUS_CODES:
            code = _HTTP_STATUS_CODES[exc.status_code]
        elif exc.status_code < 500:
            code = ServiceCode.BAD_REQUEST
        else:
            code = ServiceCode.INTERNAL_SERVER_ERROR
        return _error_response(exc.status_code, code, str(exc.detail), headers=exc.headers)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), exc, exc_info=True)
        return _error_response(
            500,
            ServiceCode.INTERNAL_SERVER_ERROR,
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    config: Optional[Settings] = None,
    context: Optional[AppContext] = None,
    exit_func: Optional[Callable[[int], object]] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: settings to use (the module-level `settings` by default).
        context: a prebuilt AppContext; tests pass one with mocked services.
        exit_func: forwarded to the shutdown coordinator when `context`
            is built here.
    """
    ctx = context or AppContext(config or default_settings, exit_func=exit_func)
    cfg = ctx.settings

    app = FastAPI(
        title="Jigu API",
        description="Script workbench backend with structured, multi-sink request logging.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.context = ctx

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → GZip → CORS → route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        RequestLoggingMiddleware,
        enabled=cfg.http_log_enabled,
        log_headers=cfg.http_log_headers,
        slow_request_ms=cfg.http_slow_request_ms,
        exclude_paths=cfg.http_log_exclude_list,
    )
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(scripts.router)
    app.include_router(completions.router)
    app.include_router(logs.router)
    app.include_router(health.router)

    return app


# uvicorn expects `jigu.main:app` to be importable
app = create_app()
