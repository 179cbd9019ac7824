"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work. secret_hash lives on User but is
never copied into an api/ response model.

Layer rule: no imports from api/, users/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Role:
    """Coarse authorization category. Ids are stable and never reused."""

    id: int
    name: str


@dataclass
class User:
    """A registered account.

    role_id always references an existing Role -- the store rejects any write
    that would break this. email is stored normalized (stripped, lower-case).
    """

    name: str
    email: str
    role_id: int
    id: int | None = None
    secret_hash: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class IssuedToken:
    """Result of a successful register() or login()."""

    token: str
    expires_in: int
    user: User
