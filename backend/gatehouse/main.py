"""
Gatehouse Backend: FastAPI Application Factory
==============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() builds the per-app services (credentials, CSRF store,
       rate limiters, user store), assembles the security pipeline, mounts
       middleware, exception handlers and routes.
Who:   uvicorn (`gatehouse.main:app`, or the `gatehouse` console script)
       and the test suite (fresh app per test).

Application Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                        FastAPI App                           │
    │                                                              │
    │  Middleware Chain:                                           │
    │  ┌────────────┐ ┌──────────┐ ┌─────────────────────────────┐ │
    │  │ Request ID │→│ Logging  │→│ Security Pipeline           │ │
    │  └────────────┘ └──────────┘ │ CORS→Rate→CSRF→Identity     │ │
    │                              └─────────────────────────────┘ │
    │  Routes:                                                     │
    │  /api/auth/{register,login,logout}  /api/users  /api/health  │
    │                                                              │
    │  Exception Handlers:                                         │
    │  Validation→400 │ Auth→401 │ NotFound→404 │ Other→500        │
    └──────────────────────────────────────────────────────────────┘

Lifecycle:
    create_app(): validate configuration, abort on ConfigurationError
    Startup:      configure logging, start the store janitor
    Shutdown:     stop the janitor
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatehouse import __version__
from gatehouse.config import Settings, settings as default_settings
from gatehouse.exceptions import GatehouseError, RateLimitExceededError
from gatehouse.middleware.cors import CorsPolicy
from gatehouse.middleware.logging import RequestLoggingMiddleware
from gatehouse.middleware.pipeline import error_response, exception_response
from gatehouse.middleware.rate_limit import client_ip_and_path_key, client_ip_key, create_limiter
from gatehouse.middleware.request_id import RequestIDMiddleware, request_id_var
from gatehouse.middleware.security import SecurityPipelineMiddleware, build_security_pipeline
from gatehouse.middleware.security_headers import SecurityHeaderPolicy
from gatehouse.routes import auth, health, users
from gatehouse.services.credentials import CredentialService
from gatehouse.services.csrf_store import CsrfTokenStore
from gatehouse.services.janitor import StoreJanitor
from gatehouse.services.user_store import UserStore

logger = logging.getLogger(__name__)

AUTH_RATE_LIMITED_PATHS = frozenset({"/api/auth/login", "/api/auth/register"})
RATE_LIMIT_EXEMPT_PATHS = frozenset({"/api/health"})
HTTP_ERROR_CODES = {404: "not_found", 405: "method_not_allowed"}


# ══════════════════════════════════════════════════════════════════════════
# Structured Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Security events (rate limit, CSRF, token rejections) are WARNING; they
    never include passwords, tokens or cookie values.
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Rate limit scopes
# ══════════════════════════════════════════════════════════════════════════

def skip_api_rate_limit(request: Request) -> bool:
    path = request.url.path
    return not path.startswith("/api") or path in RATE_LIMIT_EXEMPT_PATHS


def skip_auth_rate_limit(request: Request) -> bool:
    return request.method != "POST" or request.url.path not in AUTH_RATE_LIMITED_PATHS


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    app_settings: Settings = app.state.settings
    setup_logging(app_settings.log_level)
    logger.info("Gatehouse %s starting (environment=%s)", __version__, app_settings.environment)

    janitor: StoreJanitor = app.state.janitor
    janitor.start()

    yield

    logger.info("Gatehouse shutting down...")
    await janitor.stop()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions raised by routes to JSON error responses.

    Handler hierarchy:
        RequestValidationError  → 400 validation_error (body/query/path schema)
        HTTPException           → its status (unknown route, wrong method)
        RateLimitExceededError  → 429 with Retry-After
        GatehouseError          → exc.status_code / exc.error_code
        Exception (fallback)    → 500, details logged server-side only
    """

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        logger.warning("[%s] Request validation failed: %d error(s)", request_id_var.get(""), len(errors))
        return error_response(400, "validation_error", "Request validation failed", details={"errors": errors})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        error = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        return error_response(exc.status_code, error, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return exception_response(exc, headers={"Retry-After": str(exc.retry_after)})

    @app.exception_handler(GatehouseError)
    async def handle_gatehouse_error(request: Request, exc: GatehouseError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
            return error_response(500, "server_error", "An internal error occurred. Please try again later.")
        logger.info("[%s] %s: %s", rid, type(exc).__name__, exc.message)
        return exception_response(exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    app_settings: Optional[Settings] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Overrides the module-level settings (tests).
        clock:        Time source shared by tokens, CSRF pairs and rate limits.

    Raises:
        ConfigurationError: missing/weak signing secret or unsafe production
                            config. Propagates so the process never starts.
    """
    app_settings = app_settings or default_settings
    app_settings.validate_required_for_production()

    credentials = CredentialService(
        app_settings.jwt_secret,
        default_ttl=app_settings.token_ttl_seconds,
        iterations=app_settings.password_hash_iterations,
        clock=clock,
    )
    csrf_store = CsrfTokenStore(
        ttl_seconds=app_settings.csrf_ttl_seconds,
        max_entries=app_settings.csrf_max_entries,
        clock=clock,
    )
    api_limiter = create_limiter(
        app_settings.rate_limit_window,
        app_settings.rate_limit_requests,
        client_ip_key,
        skip_api_rate_limit,
        name="api",
        max_buckets=app_settings.rate_limit_max_buckets,
        clock=clock,
    )
    auth_limiter = create_limiter(
        app_settings.auth_rate_limit_window,
        app_settings.auth_rate_limit_requests,
        client_ip_and_path_key,
        skip_auth_rate_limit,
        name="auth",
        max_buckets=app_settings.rate_limit_max_buckets,
        clock=clock,
    )
    cors_policy = CorsPolicy(app_settings.cors_origins_list, is_production=app_settings.is_production)
    header_policy = SecurityHeaderPolicy(is_production=app_settings.is_production)

    app = FastAPI(
        title="Gatehouse API",
        description="JSON API guarded by token auth, CSRF, rate limiting and security headers.",
        version=__version__,
        docs_url=None if app_settings.is_production else "/docs",
        redoc_url=None,
        openapi_url=None if app_settings.is_production else "/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.credentials = credentials
    app.state.csrf_store = csrf_store
    app.state.user_store = UserStore()
    app.state.rate_limiters = (api_limiter, auth_limiter)
    app.state.janitor = StoreJanitor(
        [csrf_store, api_limiter, auth_limiter], interval_seconds=app_settings.sweep_interval_seconds
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → Security Pipeline
    app.add_middleware(
        SecurityPipelineMiddleware,
        pipeline=build_security_pipeline(cors_policy, [api_limiter, auth_limiter], csrf_store, credentials),
        cors_policy=cors_policy,
        header_policy=header_policy,
        trust_forwarded_for=app_settings.trust_forwarded_for,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(health.router)

    return app


def run() -> None:
    """Console entry point: serve the module-level app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "gatehouse.main:app",
        host=default_settings.backend_host,
        port=default_settings.backend_port,
        log_level=default_settings.log_level.lower(),
        server_header=False,
    )


# uvicorn expects `gatehouse.main:app`; a ConfigurationError here stops the process
app = create_app()
