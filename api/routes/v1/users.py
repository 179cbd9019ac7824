"""
api/routes/v1/users.py -- User administration endpoints.

Routes:
  GET    /users[?role_id=]  -- list users
  GET    /users/{id}        -- one user
  POST   /users             -- create user
  PUT    /users/{id}        -- partial update (same semantics as PATCH)
  PATCH  /users/{id}        -- partial update
  DELETE /users/{id}        -- hard delete; 404 on a second call
  GET    /patients          -- patient-role users visible to the caller

No route here is reachable without a bearer token. Allowed roles per route
come from the access policy (ROUTE_ROLES), not from this module.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Response

from api.dependencies import get_user_service, require_access
from api.models import UserCreate, UserPatch, UserResponse
from auth.models import User
from users.service import UserService

router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
def list_users(
    role_id: Optional[int] = None,
    actor: User = Depends(require_access("users.list")),
    service: UserService = Depends(get_user_service),
) -> list[UserResponse]:
    return [UserResponse.from_user(u) for u in service.list(role_id=role_id)]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    actor: User = Depends(require_access("users.get")),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    return UserResponse.from_user(service.get(user_id))


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    body: UserCreate,
    actor: User = Depends(require_access("users.create")),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    """Create an account on someone's behalf. No token is issued."""
    user = service.create(name=body.name, email=body.email, password=body.password, role_id=body.role_id)
    return UserResponse.from_user(user)


@router.api_route("/users/{user_id}", methods=["PUT", "PATCH"], response_model=UserResponse)
def update_user(
    user_id: int,
    body: UserPatch,
    actor: User = Depends(require_access("users.update")),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    """Write only the fields present in the body.

    An unknown role_id answers 400 invalid_reference and leaves the record
    exactly as it was.
    """
    fields = body.model_dump(exclude_unset=True)
    return UserResponse.from_user(service.update(user_id, **fields))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    user_id: int,
    actor: User = Depends(require_access("users.delete")),
    service: UserService = Depends(get_user_service),
) -> Response:
    service.delete(user_id)
    return Response(status_code=204)


@router.get("/patients", response_model=list[UserResponse])
def list_patients(
    actor: User = Depends(require_access("patients.list")),
    service: UserService = Depends(get_user_service),
) -> list[UserResponse]:
    """Doctors see every patient; a patient sees only themself."""
    return [UserResponse.from_user(u) for u in service.list_patients(actor)]
