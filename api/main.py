"""
api/main.py -- FastAPI application entry point for CareGate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- access log line with latency
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Role gating is NOT an ASGI middleware: protected routes declare
Depends(require_access("<route>")), which runs the AccessMiddleware pipeline
from auth/middleware.py before the handler body.

Lifespan builds every service once (store, hasher, token codec, access
policy) from Settings and hangs them on app.state. Nothing reads
configuration per request.
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
from starlette.exceptions import HTTPException

from api.dependencies import PROTECTED_ROUTES
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.errors import CareGateError, StorageUnavailable
from auth.middleware import AccessMiddleware, AccessPolicy
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings
from users.service import UserService

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("caregate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def install_services(app: FastAPI, store: CredentialStore, settings: Settings) -> None:
    """Seed roles, validate the access policy and attach services to app.state.

    Order matters: roles must exist before the policy can resolve role names,
    and the policy must cover every route that declared require_access().
    Raises PolicyConfigurationError / ValueError on bad configuration, which
    aborts startup.
    """
    store.seed_roles(settings.seed_roles)
    roles = store.list_roles()
    policy = AccessPolicy.load(settings.route_roles, roles)
    policy.require_routes(PROTECTED_ROUTES)

    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    codec = TokenCodec(settings.secret_key, expire_seconds=settings.token_expire_seconds)
    patient_role_id = next((r.id for r in roles if r.name == "patient"), None)

    app.state.store = store
    app.state.access = AccessMiddleware(codec, store, policy)
    app.state.auth_service = AuthService(store, hasher, codec)
    app.state.user_service = UserService(
        store,
        hasher,
        patient_role_id=patient_role_id,
        seed_role_ids=frozenset(settings.seed_roles),
    )
    logger.info("Access policy loaded (%d routes, %d roles)", len(PROTECTED_ROUTES), len(roles))


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the credential store on startup, dispose of it on shutdown."""
    logger.info("CareGate API starting up")
    store = CredentialStore(_settings.database_url)
    try:
        install_services(app, store, _settings)
    except Exception:
        store.close()
        raise

    yield

    store.close()
    logger.info("CareGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CareGate API",
    description="Role-based authentication and user administration.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST registration is the
# outermost layer. Registered innermost-first: SlowAPI, CORS, TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Captures wall-clock time around call_next so every response is logged with
# its latency. The Authorization header is never logged.
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

app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])
app.include_router(roles_router, tags=["Roles"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _field_errors(errors: list[dict]) -> dict[str, list[str]]:
    """Collapse pydantic error dicts into {field: [messages]}.

    loc is ("body", "email") for body fields and ("query", "role_id") for
    query parameters; the leading location is dropped.
    """
    fields: dict[str, list[str]] = {}
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        name = ".".join(loc) or "body"
        fields.setdefault(name, []).append(err.get("msg", "Invalid value."))
    return fields


@app.exception_handler(CareGateError)
async def caregate_error_handler(request: Request, exc: CareGateError) -> JSONResponse:
    """Render any service error as the structured envelope with its own status."""
    if isinstance(exc, StorageUnavailable):
        logger.error("Storage unavailable on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


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
                detail=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field messages when the body or query fails to parse."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="The given data was invalid.",
                fields=_field_errors(exc.errors()),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Registered on the Starlette base class so router-level 404 and 405
    responses get the envelope too, not only FastAPI HTTPExceptions.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)),
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred."),
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No auth and no rate limit -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus the database component status."""
    store: CredentialStore = request.app.state.store
    database = "ok" if store.ping() else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
