"""
api/main.py -- FastAPI application factory for the Recipe Shelf API.

create_app(settings) builds a fully wired app from an explicit Settings
object. Nothing in the request path reads configuration on its own: the
lifespan constructs the engine, stores, password hasher, token codec and
session resolver from settings and parks them on app.state, where the route
modules and auth.dependencies pick them up.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins;
                              credentials allowed so the session cookie flows
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- one log line per request with latency

Lifespan handles startup (engine, schema, stores, auth components) and
shutdown (engine.dispose()) symmetrically.
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
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, FieldError, HealthResponse, field_errors_from
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.books import router as books_router
from api.routes.v1.library import router as library_router
from api.routes.v1.users import router as users_router
from auth.session import SessionResolver
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenCodec, clear_session_cookie
from catalog.store import CatalogStore
from core.config import Settings
from core.db import create_db_engine
from core.errors import AppError

API_VERSION = "1.0.0"
API_PREFIX = "/api/v1"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("recipeshelf.api")


def create_app(settings: Settings) -> FastAPI:
    """Build the ASGI app for settings. Every call returns an independent app."""

    # -----------------------------------------------------------------------
    # Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
    # -----------------------------------------------------------------------

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Construct every shared component from settings, tear down on exit.

        Order matters: the stores need the engine, the resolver needs the
        user store and the codec.
        """
        logger.info("Recipe Shelf API starting up (environment=%s)", settings.environment)
        engine = create_db_engine(settings.database_url)
        app.state.engine = engine
        app.state.user_store = UserStore(engine)
        app.state.catalog = CatalogStore(engine)
        app.state.password_hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        app.state.token_codec = TokenCodec(settings.secret_key, settings.token_ttl_seconds)
        app.state.session_resolver = SessionResolver(app.state.user_store, app.state.token_codec)
        logger.info(
            "Database ready (%d users); token TTL %ds",
            app.state.user_store.count_users(),
            settings.token_ttl_seconds,
        )

        yield

        engine.dispose()
        logger.info("Recipe Shelf API shutdown complete")

    # -----------------------------------------------------------------------
    # App instantiation
    # -----------------------------------------------------------------------

    app = FastAPI(
        title="Recipe Shelf API",
        description="Recipe and cook-book catalog with personal libraries.",
        version=API_VERSION,
        lifespan=lifespan,
        # Interactive docs are a development aid; production serves none.
        docs_url=None if settings.environment == "production" else f"{API_PREFIX}/docs",
        redoc_url=None,
        openapi_url=None if settings.environment == "production" else f"{API_PREFIX}/openapi.json",
    )
    app.state.settings = settings

    # -----------------------------------------------------------------------
    # Middleware stack
    #
    # add_middleware() wraps the current stack, so the LAST one added is the
    # outermost. Register innermost first: SlowAPI -> CORS -> TrustedHost.
    # -----------------------------------------------------------------------

    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type"],
        max_age=3600,
    )

    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # SlowAPI looks for app.state.limiter by convention. The limiter is shared
    # across apps; the most recently built app decides whether it is enabled.
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter

    # -----------------------------------------------------------------------
    # Request logging middleware
    #
    # Pattern: Interceptor / Chain of Responsibility. Every request passes
    # through this coroutine before reaching any route handler.
    # -----------------------------------------------------------------------

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

    # -----------------------------------------------------------------------
    # Router registration
    # -----------------------------------------------------------------------

    app.include_router(auth_router, prefix=API_PREFIX, tags=["Auth"])
    app.include_router(books_router, prefix=API_PREFIX, tags=["Books"])
    app.include_router(library_router, prefix=API_PREFIX, tags=["Library"])
    app.include_router(users_router, prefix=API_PREFIX, tags=["Users"])
    app.include_router(admin_router, prefix=API_PREFIX, tags=["Admin"])

    # -----------------------------------------------------------------------
    # Exception handlers
    #
    # All handlers return the same ErrorResponse envelope so API clients can
    # parse errors uniformly without inspecting status codes to choose a schema.
    # -----------------------------------------------------------------------

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        """Render an expected failure raised by a route, dependency or store."""
        errors = [FieldError(**e) for e in exc.errors] if exc.errors else None
        response = _error_response(exc.status_code, ErrorResponse(message=exc.message, errors=errors))
        if exc.clear_session:
            logger.warning(
                "Clearing session cookie on %s %s: %s",
                request.method,
                request.url.path,
                exc.message,
            )
            clear_session_cookie(response, settings)
        return response

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """Return 429 with a structured error when a rate limit is exceeded.

        Retry-After tells clients how many seconds to wait before retrying.
        slowapi stores this on the exception as exc.retry_after when known.
        Sync on purpose: SlowAPIMiddleware calls this handler directly and
        uses the return value as the response.
        """
        retry_after = int(getattr(exc, "retry_after", 60))
        response = _error_response(429, ErrorResponse(message="Too many requests, please try again later."))
        response.headers["Retry-After"] = str(retry_after)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 400 with one {field, message} row per problem."""
        return _error_response(
            400,
            ErrorResponse(message="Validation failed", errors=field_errors_from(exc.errors())),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Unknown routes, wrong methods and any HTTPException raised by the framework."""
        response = _error_response(exc.status_code, ErrorResponse(message=str(exc.detail)))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all handler for unexpected server errors.

        The traceback always goes to the log. The response carries the
        exception text only outside production.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        detail = f"{type(exc).__name__}: {exc}" if settings.expose_error_detail else None
        return _error_response(500, ErrorResponse(message="An unexpected error occurred.", detail=detail))

    # -----------------------------------------------------------------------
    # Health endpoint
    #
    # Defined here (not in a router) so it is always reachable regardless of
    # router registration state. No rate limit applied -- health checks from
    # load balancers and monitoring systems must not be throttled.
    # -----------------------------------------------------------------------

    @app.get(f"{API_PREFIX}/health", response_model=HealthResponse, tags=["Health"])
    def health(request: Request) -> HealthResponse:
        """Return API liveness, version and database reachability."""
        components = {"app": "ok", "database": "ok"}
        try:
            with request.app.state.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Health check: database unreachable")
            components["database"] = "error"
        status = "healthy" if components["database"] == "ok" else "degraded"
        return HealthResponse(status=status, version=API_VERSION, components=components)

    return app


def _error_response(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))
