"""
api/main.py -- FastAPI application entry point for TaskBoard.

Exposes the session and access-control core over HTTP. Route handlers stay
thin: they parse the request, call one service on app.state, and map the
result onto a response model. Every business rule lives in auth/ and
projects/.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every store and service once from get_settings(), publishes
them on app.state, and tears them down symmetrically on shutdown.
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
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.projects import router as projects_router
from api.routes.v1.tasks import router as tasks_router
from api.routes.v1.users import router as users_router
from auth.accounts import AccountService
from auth.flows import CredentialFlows
from auth.passwords import PasswordHasher
from auth.policy import AccessPolicy
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec
from cache.store import ResourceCache
from core.config import Settings, get_settings
from core.errors import DomainError, InfrastructureFailure
from projects.service import ProjectService, TaskService
from projects.store import ProjectStore

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("taskboard.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

_PURGE_INTERVAL_SECONDS = 60 * 60


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired cache entries and refresh records every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        purged = app.state.cache.purge_expired()
        try:
            deleted = app.state.refresh_tokens.delete_expired()
        except SQLAlchemyError:
            logger.exception("Refresh token sweep failed")
            continue
        logger.info("Purge complete cache_entries=%d refresh_tokens=%d", purged, deleted)


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def build_state(app: FastAPI, settings: Settings) -> None:
    """Construct every store and service and publish them on app.state.

    Stores are the only objects that open connections. Services receive
    their collaborators explicitly so tests can wire the same graph against
    in-memory databases.
    """
    users = UserStore(settings.database_url, settings.store_timeout_seconds)
    refresh_tokens = RefreshTokenStore(settings.database_url, settings.store_timeout_seconds)
    project_store = ProjectStore(settings.database_url, settings.store_timeout_seconds)
    cache = ResourceCache(
        settings.cache_path,
        enabled=settings.cache_enabled,
        timeout=settings.cache_timeout_seconds,
        default_ttl=settings.cache_ttl_listing,
    )
    policy = AccessPolicy()

    app.state.settings = settings
    app.state.users = users
    app.state.refresh_tokens = refresh_tokens
    app.state.project_store = project_store
    app.state.cache = cache
    app.state.flows = CredentialFlows(
        users,
        refresh_tokens,
        PasswordHasher(settings.bcrypt_rounds),
        TokenCodec(settings),
        cache,
        settings,
    )
    app.state.accounts = AccountService(users, refresh_tokens, cache, settings)
    app.state.projects = ProjectService(project_store, users, policy, cache, settings)
    app.state.tasks = TaskService(project_store, app.state.projects, policy, cache, settings)


def close_state(app: FastAPI) -> None:
    app.state.cache.close()
    app.state.project_store.close()
    app.state.refresh_tokens.close()
    app.state.users.close()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The purge task starts last because it reads app.state.cache and
    app.state.refresh_tokens.
    """
    logger.info("TaskBoard API starting up")
    settings = get_settings()
    build_state(app, settings)
    logger.info(
        "Services initialized (cache_enabled=%s, access_ttl=%s, refresh_ttl=%s)",
        settings.cache_enabled,
        settings.access_token_expiration,
        settings.refresh_token_expiration,
    )
    if not app.state.users.has_users():
        logger.warning("No users exist yet -- create an admin with: python main.py create-admin")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    close_state(app)
    logger.info("TaskBoard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="TaskBoard API",
    description="Projects, tasks and team membership with token-based sessions.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url="/redoc" if _settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(projects_router, prefix="/api/v1", tags=["Projects"])
app.include_router(tasks_router, prefix="/api/v1", tags=["Tasks"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Map a use-case failure onto its status code and the error envelope.

    InfrastructureFailure messages can carry driver details, so they are
    logged and replaced with a generic message.
    """
    if isinstance(exc, InfrastructureFailure):
        logger.error("Infrastructure failure on %s %s: %s", request.method, request.url.path, exc.message)
        message = "An unexpected error occurred."
        reasons: list[str] = []
    else:
        message = exc.message
        reasons = exc.reasons
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=message, reasons=reasons)).model_dump(),
    )
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """A store call failed or timed out (SQLite busy timeout). Same envelope as InfrastructureFailure."""
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=InfrastructureFailure.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=InfrastructureFailure.code, message="An unexpected error occurred.")
        ).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    reasons = [
        f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body')}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                reasons=reasons,
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and per-component status."""
    components = {"app": "ok"}
    try:
        request.app.state.users.has_users()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    components["cache"] = "ok" if request.app.state.cache.enabled else "disabled"
    return HealthResponse(version=API_VERSION, components=components)
