"""
API request and response models for CareGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models declare types only. Field rules (lengths, email shape,
password length, role existence) belong to the services so the same rules
hold no matter which surface calls them.

secret_hash never appears in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /register."""

    name: str
    email: str
    password: str
    password_confirmation: Optional[str] = None
    role_id: int


class LoginRequest(BaseModel):
    """Request body for POST /login. No confirmation field -- registration only."""

    email: str
    password: str


class UserCreate(BaseModel):
    """Request body for POST /users."""

    name: str
    email: str
    password: str
    role_id: int


class UserPatch(BaseModel):
    """Request body for PUT/PATCH /users/{id}. Omitted fields are left untouched."""

    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role_id: Optional[int] = None


class RoleCreate(BaseModel):
    """Request body for POST /roles."""

    name: str


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Returned by POST /register and POST /login."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role_id: int
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Build the public view of a User. Drops secret_hash by construction."""
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role_id=user.role_id,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, name=role.name)


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    fields is present on validation failures and maps field name -> messages.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, list[str]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
