"""
api/routes/v1/auth.py -- Registration and login endpoints.

Routes:
  POST /register   -- create an account; 201 {token}
  POST /login      -- exchange email + password for a token; 200 {token}
  GET  /me         -- identity of the bearer (any authenticated user)

Security:
  [H2] POST /login and POST /register are rate-limited per client IP.
  [C1] AuthService.login() equalizes timing between unknown email and wrong
       password and raises the same InvalidCredentials for both.
  [M5] Cache-Control: no-store on every response that carries a token.

Handlers are plain def (not async): bcrypt is deliberately slow and FastAPI
runs sync handlers in its thread pool, keeping the event loop free.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_auth_service, require_access
from api.limiter import limiter, login_limit, register_limit
from api.models import LoginRequest, RegisterRequest, TokenResponse, UserResponse
from auth.models import IssuedToken, User
from auth.service import AuthService

# Auth policy:
# - POST /register: public -- account creation
# - POST /login:    public -- login endpoint must be unauthenticated
# - GET  /me:       any authenticated user (route "me")
router = APIRouter()


def _token_response(issued: IssuedToken, status_code: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=TokenResponse(token=issued.token, expires_in=issued.expires_in).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(register_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/register", response_model=TokenResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an account and return a bearer token for it.

    400 with per-field messages when any rule fails (nothing is written),
    409 when the email is already registered.
    """
    issued = service.register(
        name=body.name,
        email=body.email,
        password=body.password,
        role_id=body.role_id,
        password_confirmation=body.password_confirmation,
    )
    return _token_response(issued, 201)


@limiter.limit(login_limit)  # [H2] brute-force mitigation
@router.post("/login", response_model=TokenResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Wrong password and unknown email both answer 401 invalid_credentials.
    """
    issued = service.login(body.email, body.password)
    return _token_response(issued, 200)


@router.get("/me", response_model=UserResponse)
def me(actor: User = Depends(require_access("me"))) -> UserResponse:
    """Return the account the bearer token belongs to."""
    return UserResponse.from_user(actor)
