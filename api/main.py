"""
api/main.py -- FastAPI application entry point for TaskFlow Auth.

Exposes the credential lifecycle (registration, email verification, login,
password reset, session refresh) over HTTP for the TaskFlow web client.

Run with:  python main.py serve
           uvicorn asgi:app --reload

Middleware stack (outermost to innermost; Starlette wraps the last one
registered around the rest):
  1. log_requests    -- method, path, status, latency, client address
  2. CORSMiddleware  -- the frontend origin only, with credentials (refresh cookie)
  3. GZipMiddleware  -- compresses larger JSON bodies (user listings)

Lifespan handles startup (identity store, token manager, notifier, rate
limiters) and shutdown (close DB) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import RateLimiter
from api.models import envelope
from api.routes.v1.auth import router as auth_router
from auth.single_use import SingleUseTokenManager
from auth.store import UserStore
from core.config import get_settings
from core.errors import DependencyError, RateLimitError, ServiceError, new_error_id
from mailer.notifier import build_notifier

API_VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("taskflow.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the request-independent collaborators and tear them down on exit.

    Everything hangs off app.state so tests can swap the lifespan and hand
    the routes isolated stores, a recording notifier and looser limiters.
    """
    logger.info("TaskFlow Auth API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.token_manager = SingleUseTokenManager(app.state.user_store)
    app.state.notifier = build_notifier(_settings)
    app.state.auth_limiter = RateLimiter.from_uri(_settings.auth_rate_limit, _settings.rate_limit_storage_uri)
    app.state.general_limiter = RateLimiter.from_uri(_settings.general_rate_limit, _settings.rate_limit_storage_uri)
    logger.info("Identity store ready (%d users)", app.state.user_store.count_users())

    yield

    app.state.user_store.close()
    logger.info("TaskFlow Auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TaskFlow Auth API",
    description="Registration, email verification, login and password reset for TaskFlow.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {success, message, data?, errorId?}
# envelope so clients parse failures without branching on status codes.
# ---------------------------------------------------------------------------


def _validation_message(exc: RequestValidationError) -> str:
    """Flatten pydantic errors into one client-facing sentence list."""
    messages: list[str] = []
    for error in exc.errors():
        loc = [part for part in error.get("loc", ()) if part != "body"]
        if error.get("type") == "missing":
            text = f"{loc[-1]} is required" if loc else "Request body is required"
        else:
            text = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
        text = text.rstrip(".")
        if text not in messages:
            messages.append(text)
    return ". ".join(messages) + "." if messages else "Invalid request."


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Map the core error taxonomy onto the response envelope.

    429 carries Retry-After and data.retryAfter. 500 (DependencyError) carries
    the errorId that is also written to the log next to the cause.
    """
    if isinstance(exc, RateLimitError):
        logger.warning("Rate limit exceeded on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(exc.message, success=False, data={"retryAfter": exc.retry_after}),
            headers={"Retry-After": str(exc.retry_after)},
        )
    if isinstance(exc, DependencyError):
        logger.error(
            "Dependency failure on %s %s [errorId=%s]: %s",
            request.method,
            request.url.path,
            exc.error_id,
            exc.__cause__ or exc,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(exc.message, success=False, error_id=exc.error_id),
        )
    return JSONResponse(status_code=exc.status_code, content=envelope(exc.message, success=False))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the validation messages when body or query params fail."""
    return JSONResponse(status_code=400, content=envelope(_validation_message(exc), success=False))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework-raised HTTP errors (unknown route, wrong method) in the envelope."""
    message = "Route not found." if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(message, success=False),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log under the errorId; the client only sees
    the id and a generic message.
    """
    error_id = new_error_id()
    logger.exception("Unhandled exception on %s %s [errorId=%s]", request.method, request.url.path, error_id)
    return JSONResponse(
        status_code=500,
        content=envelope("Internal server error.", success=False, error_id=error_id),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> dict:
    """Return API liveness and current version."""
    return envelope("TaskFlow Auth API is running.", data={"status": "healthy", "version": API_VERSION})
