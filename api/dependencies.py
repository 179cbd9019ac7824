"""
api/dependencies.py -- FastAPI Depends() adapters over the framework-agnostic core.

require_access(route) is the only way a route becomes protected:

    @router.get("/users")
    def list_users(actor: User = Depends(require_access("users.list"))): ...

It builds a RequestContext from the Starlette request, runs the
AccessMiddleware pipeline, and either returns the resolved User or raises the
short-circuit's error (Unauthorized / Forbidden). The CareGateError exception
handler in api/main.py renders that as the usual error envelope, and the route
body never runs.

Every route name passed to require_access() is recorded in PROTECTED_ROUTES
at import time. Startup checks that the access policy covers all of them.

Layer rule: this module may import from fastapi and auth/, never from
users/ internals beyond the service type.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.middleware import AccessMiddleware, RequestContext, ShortCircuit
from auth.models import User
from auth.service import AuthService
from users.service import UserService

PROTECTED_ROUTES: set[str] = set()


def require_access(route: str) -> Callable[[Request], User]:
    """Return a dependency that authorizes the request for the named route."""
    PROTECTED_ROUTES.add(route)

    def dependency(request: Request) -> User:
        middleware: AccessMiddleware = request.app.state.access
        ctx = RequestContext(headers=request.headers, route=route)
        result = middleware.authorize(ctx)
        if isinstance(result, ShortCircuit):
            raise result.error
        request.state.user = result.context.user
        return result.context.user

    dependency.__name__ = f"require_access_{route.replace('.', '_')}"
    return dependency


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service
