"""
api/main.py -- FastAPI application entry point for the auth service.

Run with:      uvicorn asgi:app
Before first start:
               python main.py keys generate [--encrypted]

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- lets the configured origins send the jwt cookie
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the database and refuses to start without usable signing keys:
a KeyMaterialError raised there aborts startup, so the service never answers
a request it cannot sign or verify.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse, TokenErrorResponse
from api.routes.auth import router as auth_router
from auth.errors import AuthServiceError, KeyMaterialError, TokenError, ValidationError
from auth.keys import ensure_key_material
from auth.store import KeyStore, UserStore, create_db_engine
from core.config import get_settings

APP_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_settings = get_settings()

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authservice.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores, validate key material, and dispose of the engine on shutdown.

    Both stores share one engine (one connection pool). Key material is
    checked here and then read again on every request; nothing loaded here
    is kept except the stores themselves.
    """
    settings = get_settings()
    logger.info("Auth service starting up")
    engine = create_db_engine(settings.database_url)
    app.state.key_store = KeyStore(engine=engine)
    app.state.user_store = UserStore(engine=engine)
    try:
        ensure_key_material(app.state.key_store)
    except KeyMaterialError as exc:
        logger.critical("Refusing to start: %s. Run `python main.py keys generate` first.", exc.detail)
        engine.dispose()
        raise
    logger.info("Auth service ready (JWT signing: RS256)")

    yield

    engine.dispose()
    logger.info("Auth service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Auth Service",
    description="Password login issuing RS256-signed JWT cookies, and token verification.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the app, so the last one added is the outermost.
# Registered innermost-first here: SlowAPI, CORS, TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body has the {success: false, message} shape; token errors add
# authenticated: false. Detail strings from auth/errors.py are logged, never
# returned.
# ---------------------------------------------------------------------------


def _no_store(response: JSONResponse) -> JSONResponse:
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(TokenError)
async def token_error_handler(request: Request, exc: TokenError) -> JSONResponse:
    return _no_store(
        JSONResponse(
            status_code=exc.status_code,
            content=TokenErrorResponse(message=exc.message).model_dump(),
        )
    )


@app.exception_handler(AuthServiceError)
async def auth_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    """Render credential, validation, and key errors with their fixed message.

    Server-side failures (SigningError, KeyMaterialError) are logged with the
    real reason; the client only sees "Server error".
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail)
    return _no_store(
        JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(message=exc.message).model_dump(),
        )
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies get the same 400 as missing fields."""
    logger.info("Rejected malformed request on %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=ErrorResponse(message=ValidationError.message).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(message="Too many requests").model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: the traceback goes to the log, the client gets "Server error"."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(message="Server error").model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return liveness and current version."""
    return HealthResponse(version=APP_VERSION)
