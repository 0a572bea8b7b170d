"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Everything a request needs (settings, engine, session factory,
token issuer) hangs off app.state; nothing is a module-level global, so
tests can build as many independent apps as they like.

Run with:  uvicorn sessionguard.main:create_app --factory

Error envelope: every failure the client sees is {"code", "message"}.
AuthFailureError carries its own code and status; store timeouts become
503 so a stalled database fails closed instead of hanging the request.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sessionguard import __version__
from sessionguard.api import api_router
from sessionguard.auth.jwt import AccessTokenIssuer
from sessionguard.config import Settings
from sessionguard.db.engine import build_engine, build_session_factory
from sessionguard.errors import AuthFailureError, StoreTimeoutError
from sessionguard.logging import configure_logging
from sessionguard.middleware.request_id import RequestIdMiddleware
from sessionguard.middleware.security import SecurityHeadersMiddleware

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown.
    """
    settings: Settings = app.state.settings
    logger.info(
        "sessionguard.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        max_sessions_per_user=settings.max_sessions_per_user,
    )

    yield

    logger.info("sessionguard.shutdown")
    await app.state.engine.dispose()


# ─── Exception handlers ──────────────────────────────────


def _error(status_code: int, code: str, message: str, headers: Optional[dict] = None):
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": message},
        headers=headers,
    )


async def _auth_failure_handler(request: Request, exc: AuthFailureError):
    failure = exc.failure
    headers = {"WWW-Authenticate": "Bearer"} if failure.status_code == 401 else None
    logger.info(
        "auth.rejected",
        code=failure.code,
        status=failure.status_code,
    )
    return _error(failure.status_code, failure.code, failure.message, headers)


async def _store_timeout_handler(request: Request, exc: StoreTimeoutError):
    logger.error("store.timeout", error=str(exc))
    return _error(503, "INTERNAL_ERROR", "Internal server error")


async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(
        exc.status_code,
        f"HTTP_{exc.status_code}",
        str(exc.detail),
        getattr(exc, "headers", None),
    )


async def _validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    if field:
        message = f"{field}: {message}"
    return _error(400, "VALIDATION_ERROR", message)


async def _unhandled_handler(request: Request, exc: Exception):
    logger.exception("request.unhandled_error", error_type=type(exc).__name__)
    return _error(500, "INTERNAL_ERROR", "Internal server error")


# ─── Factory ─────────────────────────────────────────────


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or Settings()
    configure_logging(settings)

    app = FastAPI(
        title="SessionGuard",
        description="Session-based authentication with rotating refresh tokens",
        version=__version__,
        lifespan=lifespan,
    )

    engine = build_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.token_issuer = AccessTokenIssuer(settings.jwt_config())

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → CORS → handler
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AuthFailureError, _auth_failure_handler)
    app.add_exception_handler(StoreTimeoutError, _store_timeout_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_handler)
    app.add_exception_handler(Exception, _unhandled_handler)

    app.include_router(api_router)

    return app
