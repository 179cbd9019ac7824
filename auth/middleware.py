"""
auth/middleware.py -- Role-gated request interception.

The middleware is framework-agnostic. A request arrives as a plain
RequestContext (headers + matched route name; access decisions never read
the request body) and a refusal leaves as a plain AccessResponse (status +
structured body). api/dependencies.py adapts FastAPI requests to this
shape; nothing here imports FastAPI.

Pipeline: an explicit ordered list of stages. Each stage returns either
Continue(context) or ShortCircuit(response). The first ShortCircuit ends the
run -- later stages and the downstream handler never execute.

    extract bearer token  -> 401 unauthorized     (header missing/malformed)
    decode token          -> 401 invalid_token / token_expired
    resolve subject       -> 401 unauthorized     (user deleted since issue)
    check role            -> 403 forbidden        (role not in allow-list)

Route allow-lists come from AccessPolicy, built and validated once at startup.
An empty allow-list admits any authenticated user; a route the policy does not
know is refused (fail closed).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Union

from auth.errors import CareGateError, Forbidden, NotFound, PolicyConfigurationError, Unauthorized
from auth.models import Role, User
from auth.store import CredentialStore
from auth.tokens import TokenCodec

logger = logging.getLogger("caregate.auth")

_BEARER_PREFIX = "bearer "


# ---------------------------------------------------------------------------
# Request / response values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestContext:
    """What the middleware needs to know about one request.

    headers may be any mapping; lookups are case-insensitive. token,
    subject_id and user are filled in as the stages succeed.
    """

    headers: Mapping[str, str]
    route: str
    token: str | None = None
    subject_id: int | None = None
    user: User | None = None


@dataclass(frozen=True)
class AccessResponse:
    status: int
    body: dict = field(default_factory=dict)

    @classmethod
    def from_error(cls, error: CareGateError) -> AccessResponse:
        return cls(status=error.status_code, body={"error": error.to_dict()})


@dataclass(frozen=True)
class Continue:
    context: RequestContext


@dataclass(frozen=True)
class ShortCircuit:
    error: CareGateError

    @property
    def response(self) -> AccessResponse:
        return AccessResponse.from_error(self.error)


StageResult = Union[Continue, ShortCircuit]
Stage = Callable[[RequestContext], StageResult]
Handler = Callable[[RequestContext], AccessResponse]


# ---------------------------------------------------------------------------
# Route policy
# ---------------------------------------------------------------------------


class AccessPolicy:
    """Immutable route name -> allowed role ids mapping."""

    def __init__(self, routes: Mapping[str, frozenset[int]]) -> None:
        self._routes = dict(routes)

    @classmethod
    def load(cls, route_roles: Mapping[str, Iterable[int | str]], roles: Iterable[Role]) -> AccessPolicy:
        """Build a policy from configuration, resolving role names and ids.

        Raises PolicyConfigurationError for any entry that does not name an
        existing role. This runs once at startup so a typo fails the deploy
        instead of locking users out at request time.
        """
        by_id = {r.id: r for r in roles}
        by_name = {r.name: r for r in by_id.values()}
        resolved: dict[str, frozenset[int]] = {}
        for route, entries in route_roles.items():
            if isinstance(entries, (str, bytes)):
                raise PolicyConfigurationError(f"Route {route!r}: roles must be a list, got {entries!r}.")
            ids: set[int] = set()
            for entry in entries:
                if isinstance(entry, bool):
                    raise PolicyConfigurationError(f"Route {route!r}: invalid role {entry!r}.")
                if isinstance(entry, int):
                    if entry not in by_id:
                        raise PolicyConfigurationError(f"Route {route!r}: unknown role id {entry}.")
                    ids.add(entry)
                elif isinstance(entry, str):
                    role = by_name.get(entry)
                    if role is None and entry.isdigit():
                        role = by_id.get(int(entry))
                    if role is None:
                        raise PolicyConfigurationError(f"Route {route!r}: unknown role {entry!r}.")
                    ids.add(role.id)
                else:
                    raise PolicyConfigurationError(f"Route {route!r}: invalid role {entry!r}.")
            resolved[route] = frozenset(ids)
        return cls(resolved)

    def allowed_roles(self, route: str) -> frozenset[int] | None:
        """Role ids allowed on route; empty = any authenticated user; None = unknown route."""
        return self._routes.get(route)

    def require_routes(self, routes: Iterable[str]) -> None:
        """Fail startup if a protected route has no policy entry."""
        missing = sorted(set(routes) - set(self._routes))
        if missing:
            raise PolicyConfigurationError(f"No access policy for routes: {', '.join(missing)}")

    def __contains__(self, route: str) -> bool:
        return route in self._routes

    def __repr__(self) -> str:
        return f"AccessPolicy({self._routes!r})"


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


class AccessMiddleware:
    """Authenticate the bearer token and enforce the route's role allow-list."""

    def __init__(self, codec: TokenCodec, store: CredentialStore, policy: AccessPolicy) -> None:
        self.codec = codec
        self.store = store
        self.policy = policy
        self.stages: list[Stage] = [
            self.extract_token,
            self.decode_token,
            self.resolve_subject,
            self.check_role,
        ]

    # -- stages ----------------------------------------------------------

    def extract_token(self, ctx: RequestContext) -> StageResult:
        header = _header(ctx.headers, "Authorization") or ""
        if not header.lower().startswith(_BEARER_PREFIX):
            return self._deny(ctx, Unauthorized(), "missing bearer token")
        token = header[len(_BEARER_PREFIX) :].strip()
        if not token:
            return self._deny(ctx, Unauthorized(), "empty bearer token")
        return Continue(replace(ctx, token=token))

    def decode_token(self, ctx: RequestContext) -> StageResult:
        try:
            subject_id = self.codec.decode(ctx.token)
        except Unauthorized as exc:  # InvalidToken, ExpiredToken
            return self._deny(ctx, exc, exc.code)
        return Continue(replace(ctx, subject_id=subject_id))

    def resolve_subject(self, ctx: RequestContext) -> StageResult:
        try:
            user = self.store.find_user_by_id(ctx.subject_id)
        except NotFound:
            return self._deny(ctx, Unauthorized(), f"subject {ctx.subject_id} no longer exists")
        return Continue(replace(ctx, user=user))

    def check_role(self, ctx: RequestContext) -> StageResult:
        allowed = self.policy.allowed_roles(ctx.route)
        if allowed is None:
            return self._deny(ctx, Forbidden(), "route has no access policy")
        if allowed and ctx.user.role_id not in allowed:
            return self._deny(ctx, Forbidden(), f"role {ctx.user.role_id} not in {sorted(allowed)}")
        return Continue(ctx)

    # -- driver ----------------------------------------------------------

    def authorize(self, ctx: RequestContext) -> StageResult:
        """Run every stage in order, stopping at the first ShortCircuit."""
        result: StageResult = Continue(ctx)
        for stage in self.stages:
            result = stage(result.context)
            if isinstance(result, ShortCircuit):
                return result
        return result

    def dispatch(self, ctx: RequestContext, handler: Handler) -> AccessResponse:
        """Authorize, then invoke handler exactly once with the resolved context."""
        result = self.authorize(ctx)
        if isinstance(result, ShortCircuit):
            return result.response
        return handler(result.context)

    def _deny(self, ctx: RequestContext, error: CareGateError, reason: str) -> ShortCircuit:
        logger.info("Access denied on %s: %s (%d)", ctx.route, reason, error.status_code)
        return ShortCircuit(error)
