"""
api/routes/v1/roles.py -- Role listing and administration.

Routes:
  GET    /roles       -- all roles (any authenticated user)
  POST   /roles       -- add a role
  DELETE /roles/{id}  -- remove a role; 409 role_in_use while any user holds it

Role ids are never reused: the roles table uses AUTOINCREMENT, so an id
freed by DELETE is not handed to a later role.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.dependencies import get_user_service, require_access
from api.models import RoleCreate, RoleResponse
from auth.models import User
from users.service import UserService

router = APIRouter()


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(
    actor: User = Depends(require_access("roles.list")),
    service: UserService = Depends(get_user_service),
) -> list[RoleResponse]:
    return [RoleResponse.from_role(r) for r in service.list_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    body: RoleCreate,
    actor: User = Depends(require_access("roles.create")),
    service: UserService = Depends(get_user_service),
) -> RoleResponse:
    return RoleResponse.from_role(service.create_role(body.name))


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(
    role_id: int,
    actor: User = Depends(require_access("roles.delete")),
    service: UserService = Depends(get_user_service),
) -> Response:
    service.delete_role(role_id)
    return Response(status_code=204)
