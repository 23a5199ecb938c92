"""
api/main.py -- FastAPI application entry point for BlueInk.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests           -- method, path, status, latency, client IP
  2. TrustedHostMiddleware  -- rejects requests with unexpected Host headers
  3. ip_filter              -- whitelist / blacklist with CIDR support
  4. CORSMiddleware         -- adds CORS headers for allowed browser origins
  5. csrf_protect           -- double-submit cookie check on mutating requests
  6. SlowAPIASGIMiddleware  -- per-IP rate limits from api.limiter
  7. audit_requests         -- records the outcome of every gated request
  8. SessionMiddleware      -- authlib OAuth state between redirect and callback
Authentication and role/ownership gates are route dependencies, so they run
inside all of the above.

Lifespan is the composition root: it builds the token service, captcha store,
stores, audit recorder, mailer and OAuth registry from Settings and puts them
on app.state. Handlers and dependencies read them from there, and tests swap
the lifespan to inject their own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIASGIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.middleware import audit_requests, csrf_protect, error_response, ip_filter, log_requests
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.audit import router as audit_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.captcha import router as captcha_router
from api.routes.v1.oauth import router as oauth_router
from api.routes.v1.profiles import router as profiles_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from audit.recorder import AuditRecorder
from audit.store import AuditStore
from auth.captcha import CAPTCHA_HEADER, CaptchaStore
from auth.csrf import CSRF_HEADER_NAME
from auth.dependencies import get_current_user
from auth.models import User
from auth.oauth import build_oauth
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import get_settings
from core.errors import AppError, TooManyRequests
from core.mailer import Mailer
from profiles.store import ProfileStore

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("blueink.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

_CAPTCHA_PURGE_INTERVAL_SECONDS = 60


async def _purge_loop(app: FastAPI) -> None:
    """Drop captcha challenges that expired without being verified.

    verify() already removes the entries it touches; this catches the ones
    nobody ever answered. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_CAPTCHA_PURGE_INTERVAL_SECONDS)
        removed = app.state.captcha_store.purge_expired()
        if removed:
            logger.debug("Purged %d expired captcha challenges", removed)


# ---------------------------------------------------------------------------
# Lifespan -- composition root
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build every shared component on startup and release it on shutdown.

    Startup order matters:
      1. Stores first -- creating tables and seeding roles must finish before
         any request can arrive.
      2. Audit recorder after the audit store it writes to.
      3. Purge task last -- it references app.state.captcha_store.
    Shutdown drains the audit queue before the stores are disposed.
    """
    cfg = get_settings()
    logger.info("BlueInk API starting up")

    app.state.user_store = UserStore(cfg.database_url, cfg.storage_timeout_seconds)
    app.state.profile_store = ProfileStore(cfg.database_url, cfg.storage_timeout_seconds)
    app.state.audit_store = AuditStore(cfg.database_url, cfg.storage_timeout_seconds)
    app.state.audit_recorder = AuditRecorder(app.state.audit_store)
    app.state.token_service = TokenService(
        cfg.secret_key,
        access_ttl_seconds=cfg.access_token_expire_seconds,
        refresh_ttl_seconds=cfg.refresh_token_expire_seconds,
        reset_ttl_seconds=cfg.reset_token_expire_seconds,
    )
    app.state.captcha_store = CaptchaStore()
    app.state.mailer = Mailer.from_settings(cfg)
    app.state.oauth = build_oauth(cfg)
    if not app.state.mailer.is_configured:
        logger.warning("SMTP not configured -- emails will be logged, not sent")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.audit_recorder.close()
    app.state.audit_store.close()
    app.state.profile_store.close()
    app.state.user_store.close()
    logger.info("BlueInk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    description="User accounts, roles, profiles and audit logging with captcha-gated auth.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# Attach the shared limiter to app.state so SlowAPIASGIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette builds the stack so that the LAST middleware added is the
# OUTERMOST one. Registration below therefore runs innermost-first.
# ---------------------------------------------------------------------------

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback.
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key, https_only=settings.secure_cookies)
app.middleware("http")(audit_requests)
app.add_middleware(SlowAPIASGIMiddleware)
app.middleware("http")(csrf_protect)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", CSRF_HEADER_NAME],
    expose_headers=[CAPTCHA_HEADER],
    max_age=3600,
)
app.middleware("http")(ip_filter)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)
app.middleware("http")(log_requests)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(captcha_router, prefix="/api/v1", tags=["Captcha"])
app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(oauth_router, prefix="/api/v1", tags=["OAuth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])
app.include_router(profiles_router, prefix="/api/v1", tags=["Profiles"])
app.include_router(audit_router, prefix="/api/v1", tags=["Audit"])

Path(settings.media_dir).mkdir(parents=True, exist_ok=True)
app.mount(settings.media_url, StaticFiles(directory=settings.media_dir, check_dir=False), name="media")


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title=settings.app_name)


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title=settings.app_name)


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler answers with the {"error": {code, message, detail}} envelope.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render domain errors raised below the route layer (auth/, core/, stores)."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return error_response(exc)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After is the length of the limit's window -- the longest a client
    can have to wait under the moving-window strategy.
    """
    retry_after = exc.limit.limit.get_expiry() if getattr(exc, "limit", None) else 60
    response = error_response(TooManyRequests(), detail=str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap HTTPException in the error envelope.

    Routes pass ErrorDetail(...).model_dump() as detail; that dict becomes the
    error field as-is. Plain string details (Starlette 404/405) get an
    http_<status> code.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback and answer a bare 500; nothing internal reaches the client."""
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
# Root info and health
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/", tags=["Health"])
@limiter.exempt
async def root() -> dict:
    """Describe the API."""
    return {"status": "ok", "api_name": settings.app_name, "version": __version__, "docs": "/docs"}


@app.get("/api/v1/health", tags=["Health"])
@limiter.exempt
async def health() -> HealthResponse:
    """Return API liveness and current version.

    Exempt from rate limiting -- health checks from load balancers and
    monitoring systems must not be throttled.
    """
    return HealthResponse(version=__version__)
