"""
auth/service.py -- Registration and login.

AuthService orchestrates the credential store, the password hasher and the
token codec. All three are passed in at construction; nothing is looked up
from module globals, so tests can wire a cheap hasher and a fixed-key codec.

Security:
  [C1] login() always runs one bcrypt check, against the real hash or a dummy
       one, so response time does not reveal whether an email is registered.
       Unknown email and wrong password raise the same InvalidCredentials.
"""

from __future__ import annotations

import logging

from auth.errors import InvalidCredentials, NotFound, ValidationError
from auth.models import IssuedToken
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from auth.tokens import TokenCodec
from auth.validation import check_email, check_name, check_password, check_role_id

logger = logging.getLogger("caregate.auth")


class AuthService:
    def __init__(self, store: CredentialStore, hasher: PasswordHasher, codec: TokenCodec) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec

    def register(
        self,
        name: str,
        email: str,
        password: str,
        role_id: int,
        password_confirmation: str | None = None,
    ) -> IssuedToken:
        """Create an account and return a token for it.

        Every field rule is checked before anything is written. A role that
        vanishes between the check and the insert is still caught by the
        store (InvalidReference), and a concurrent registration of the same
        email loses at the UNIQUE constraint (DuplicateEmail).
        """
        errors: dict[str, list[str]] = {}
        check_name(errors, name)
        check_email(errors, email)
        check_password(errors, password, password_confirmation)
        check_role_id(errors, role_id)
        if "role_id" not in errors and not self.store.role_exists(role_id):
            errors.setdefault("role_id", []).append("The selected role id is invalid.")
        if errors:
            raise ValidationError(errors)

        user = self.store.create_user(
            name=name.strip(),
            email=email,
            secret_hash=self.hasher.hash(password),
            role_id=role_id,
        )
        logger.info("User registered: id=%d role_id=%d", user.id, user.role_id)
        return IssuedToken(token=self.codec.issue(user.id), expires_in=self.codec.expire_seconds, user=user)

    def login(self, email: str, password: str) -> IssuedToken:
        """Exchange email + password for a token.

        Password confirmation is a registration-only rule and is not checked
        here.
        """
        try:
            user = self.store.find_user_by_email(email or "")
        except NotFound:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.hasher.dummy_verify(password or "")
            raise InvalidCredentials() from None

        if not self.hasher.verify(password or "", user.secret_hash):
            raise InvalidCredentials()

        logger.info("User logged in: id=%d", user.id)
        return IssuedToken(token=self.codec.issue(user.id), expires_in=self.codec.expire_seconds, user=user)
