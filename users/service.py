"""
users/service.py -- CRUD over user records and roles.

Every operation here is reached only through a protected route; the access
middleware has already authenticated the caller and checked the role before
any method runs.

Field rules are the registration rules (auth/validation.py) applied to the
fields actually supplied. Role existence is never pre-checked here: the store
folds it into the write and raises InvalidReference, which leaves the stored
record unchanged.
"""

from __future__ import annotations

import logging

from auth.errors import RoleProtected, ValidationError
from auth.models import Role, User
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from auth.validation import check_email, check_name, check_password, check_role_id

logger = logging.getLogger("caregate.users")

_PATCHABLE_FIELDS = ("name", "email", "password", "role_id")


class UserService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        patient_role_id: int | None = None,
        seed_role_ids: frozenset[int] = frozenset(),
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.patient_role_id = patient_role_id
        # Startup re-seeds these ids, so they must keep their names.
        self.seed_role_ids = seed_role_ids

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list(self, role_id: int | None = None) -> list[User]:
        return self.store.list_users(role_id=role_id)

    def get(self, user_id: int) -> User:
        return self.store.find_user_by_id(user_id)

    def create(self, name: str, email: str, password: str, role_id: int) -> User:
        errors: dict[str, list[str]] = {}
        check_name(errors, name)
        check_email(errors, email)
        check_password(errors, password)
        check_role_id(errors, role_id)
        if errors:
            raise ValidationError(errors)
        user = self.store.create_user(
            name=name.strip(),
            email=email,
            secret_hash=self.hasher.hash(password),
            role_id=role_id,
        )
        logger.info("User created: id=%d role_id=%d", user.id, user.role_id)
        return user

    def update(self, user_id: int, **fields) -> User:
        """Partial update. Only supplied fields are validated and written.

        Accepted keys: name, email, password, role_id. A key whose value is
        None counts as omitted.
        """
        supplied = {k: v for k, v in fields.items() if v is not None}
        unknown = set(supplied) - set(_PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError({k: ["This field cannot be updated."] for k in sorted(unknown)})
        if not supplied:
            raise ValidationError({"body": ["No fields to update."]})

        errors: dict[str, list[str]] = {}
        if "name" in supplied:
            check_name(errors, supplied["name"])
        if "email" in supplied:
            check_email(errors, supplied["email"])
        if "password" in supplied:
            check_password(errors, supplied["password"])
        if "role_id" in supplied:
            check_role_id(errors, supplied["role_id"])
        if errors:
            raise ValidationError(errors)

        changes: dict = {}
        if "name" in supplied:
            changes["name"] = supplied["name"].strip()
        if "email" in supplied:
            changes["email"] = supplied["email"]
        if "role_id" in supplied:
            changes["role_id"] = supplied["role_id"]
        if "password" in supplied:
            changes["secret_hash"] = self.hasher.hash(supplied["password"])

        user = self.store.update_user(user_id, **changes)
        logger.info("User updated: id=%d fields=%s", user_id, ",".join(sorted(supplied)))
        return user

    def delete(self, user_id: int) -> None:
        """Hard delete. A second delete of the same id raises NotFound."""
        self.store.delete_user(user_id)
        logger.info("User deleted: id=%d", user_id)

    def list_patients(self, actor: User) -> list[User]:
        """Patient-role users visible to actor.

        A patient sees only their own record; anyone else the route admits
        sees every patient.
        """
        if self.patient_role_id is None:
            return []
        if actor.role_id == self.patient_role_id:
            return [actor]
        return self.store.list_users(role_id=self.patient_role_id)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def list_roles(self) -> list[Role]:
        return self.store.list_roles()

    def create_role(self, name: str) -> Role:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError({"name": ["The name field is required."]})
        if len(name.strip()) > 100:
            raise ValidationError({"name": ["The name may not be greater than 100 characters."]})
        return self.store.create_role(name.strip())

    def delete_role(self, role_id: int) -> None:
        """Remove a role no user holds. RoleInUse otherwise.

        Seeded roles raise RoleProtected even when unused: deleting one and
        recreating its name under a new id would make the next startup's
        seeding collide with that name.
        """
        if role_id in self.seed_role_ids:
            raise RoleProtected()
        self.store.delete_role(role_id)
