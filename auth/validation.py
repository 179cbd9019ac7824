"""
auth/validation.py -- Field rules shared by registration and user administration.

Each check appends a message to a per-field list instead of raising at the
first failure, so a client gets every problem with its input in one 400.
Callers raise ValidationError(errors) when the dict is non-empty -- before
any side effect.

Role existence is not checked here: it needs the store, and the store folds
it into the write itself.
"""

from __future__ import annotations

import re

from auth.passwords import MAX_PASSWORD_BYTES

MAX_LENGTH = 255
MIN_PASSWORD_LENGTH = 6

# Pragmatic address shape: local@domain.tld, no whitespace, one "@".
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _add(errors: dict[str, list[str]], field: str, message: str) -> None:
    errors.setdefault(field, []).append(message)


def check_name(errors: dict[str, list[str]], name) -> None:
    if not isinstance(name, str) or not name.strip():
        _add(errors, "name", "The name field is required.")
    elif len(name) > MAX_LENGTH:
        _add(errors, "name", f"The name may not be greater than {MAX_LENGTH} characters.")


def check_email(errors: dict[str, list[str]], email) -> None:
    if not isinstance(email, str) or not email.strip():
        _add(errors, "email", "The email field is required.")
        return
    if len(email) > MAX_LENGTH:
        _add(errors, "email", f"The email may not be greater than {MAX_LENGTH} characters.")
    if not EMAIL_PATTERN.match(email.strip()):
        _add(errors, "email", "The email must be a valid email address.")


def check_password(errors: dict[str, list[str]], password, confirmation=None) -> None:
    """Length rules, plus confirmation when the client sent one.

    The upper bound is in UTF-8 bytes, not characters, so a 30-character
    password of multibyte letters can already be too long.
    """
    if not isinstance(password, str) or not password:
        _add(errors, "password", "The password field is required.")
        return
    try:
        size = len(password.encode("utf-8"))
    except UnicodeEncodeError:
        _add(errors, "password", "The password must be valid text.")
        return
    if len(password) < MIN_PASSWORD_LENGTH:
        _add(errors, "password", f"The password must be at least {MIN_PASSWORD_LENGTH} characters.")
    elif size > MAX_PASSWORD_BYTES:
        _add(errors, "password", f"The password may not be greater than {MAX_PASSWORD_BYTES} bytes.")
    if confirmation is not None and confirmation != password:
        _add(errors, "password", "The password confirmation does not match.")


def check_role_id(errors: dict[str, list[str]], role_id) -> None:
    """Type check only. bool is rejected even though it subclasses int."""
    if isinstance(role_id, bool) or not isinstance(role_id, int):
        _add(errors, "role_id", "The role id field must be an integer.")
