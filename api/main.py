"""
api/main.py -- FastAPI application entry point for ShareNote.

Run with:  uvicorn api.main:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the key-value store and wires the services onto app.state on
startup, and cancels the purge task and closes the store on shutdown.
"""

from __future__ import annotations

import asyncio
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
from api.models import ErrorDetail, HealthResponse, failure
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.misc import router as misc_router
from api.routes.v1.notes import router as notes_router
from auth.service import AccountService
from auth.store import CredentialStore
from auth.verification import EphemeralCodeIssuer
from core.config import Settings, get_settings
from core.errors import RateLimited, ServiceError, TransientError
from core.mailer import Mailer, build_mailer
from kv.store import KeyValueStore, SQLKeyValueStore, open_store
from notes.moderation import ContentModerator
from notes.service import NoteService

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sharenote.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    kv: KeyValueStore,
    mailer: Mailer,
    moderator: ContentModerator,
    settings: Settings,
) -> None:
    """Build the service graph over one store and attach it to app.state.

    Shared by the real lifespan and the test lifespan so both run the same
    wiring.
    """
    store = CredentialStore(kv)
    codes = EphemeralCodeIssuer(kv, mailer, send_timeout=settings.collaborator_timeout_seconds)
    app.state.settings = settings
    app.state.kv = kv
    app.state.store = store
    app.state.code_issuer = codes
    app.state.moderator = moderator
    app.state.account_service = AccountService(store, codes, admin_ids=settings.admin_ids)
    app.state.note_service = NoteService(store, moderator)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(kv: SQLKeyValueStore) -> None:
    """Delete expired TTL entries from the SQL store every hour.

    Redis expires keys itself; this loop only runs for the SQL backend.
    Expired rows are already invisible to reads, so this only reclaims space.
    """
    while True:
        await asyncio.sleep(60 * 60)
        try:
            removed = await asyncio.to_thread(kv.purge_expired)
        except Exception:
            logger.exception("Purge of expired entries failed")
            continue
        if removed:
            logger.info("Purged %d expired entries", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store, wire services, start the purge task; undo on shutdown."""
    logger.info("ShareNote API starting up")
    kv = open_store(settings.store_url, settings.store_timeout_seconds)
    wire_services(app, kv, build_mailer(settings), ContentModerator.from_settings(settings), settings)
    logger.info("Store opened (%s)", type(kv).__name__)
    if not settings.admin_ids:
        logger.info("ADMIN_USER_IDS is empty -- admin endpoints will refuse everyone")

    app.state.purge_task = None
    if isinstance(kv, SQLKeyValueStore):
        app.state.purge_task = asyncio.create_task(_purge_loop(kv))

    yield

    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
    await kv.close()
    logger.info("ShareNote API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ShareNote API",
    description="Note sharing with accounts, email verification and password-protected notes.",
    version=VERSION,
    lifespan=lifespan,
    # Interactive docs only in debug; production exposes no schema browser.
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_host_list,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Note-Access"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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
app.include_router(notes_router, prefix="/api/v1", tags=["Notes"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
app.include_router(misc_router, prefix="/api/v1", tags=["Misc"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same envelope so API clients can parse errors
# uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Map a domain error to its declared status and code."""
    if isinstance(exc, TransientError):
        logger.warning("Transient failure on %s %s: %s", request.method, request.url.path, exc.message)
    response = JSONResponse(
        status_code=exc.status_code,
        content=failure(ErrorDetail(**exc.to_detail())),
    )
    if isinstance(exc, RateLimited):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a slowapi limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=failure(
            ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Submitted values (pydantic's "input") are dropped: on auth routes they are passwords.
    """
    errors = [{key: value for key, value in err.items() if key != "input"} for err in exc.errors()]
    field = None
    if errors and errors[0].get("loc"):
        field = str(errors[0]["loc"][-1])
    return JSONResponse(
        status_code=422,
        content=failure(
            ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                field=field,
                detail=str(errors),
            )
        ),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured error for framework-raised HTTP errors (unknown route, bad method)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=failure(
            ErrorDetail(
                code="not_found" if exc.status_code == 404 else f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=failure(
            ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and store reachability."""
    components = {"app": "ok"}
    try:
        components["store"] = "ok" if await request.app.state.kv.ping() else "error"
    except ServiceError:
        components["store"] = "error"
    status = "healthy" if components["store"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
