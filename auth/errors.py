"""
auth/errors.py -- Error taxonomy for the authentication and user layers.

Every failure the services can report is a CareGateError subclass carrying a
stable machine-readable code, a human-readable message, and the HTTP status
the api/ layer should answer with. The services never build HTTP responses
themselves; api/main.py registers one exception handler for the base class
and renders the ErrorResponse envelope.

Only StorageUnavailable is fatal to the request (5xx). Everything else is an
expected outcome reported to the client.

Layer rule: stdlib only. Imported by auth/, users/, and api/.
"""

from __future__ import annotations


class CareGateError(Exception):
    """Base class for all reportable service errors."""

    code: str = "error"
    message: str = "Request failed."
    status_code: int = 400

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body: dict = {"code": self.code, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


# ---------------------------------------------------------------------------
# Input errors (400)
# ---------------------------------------------------------------------------


class ValidationError(CareGateError):
    """One or more input fields failed validation.

    fields maps a field name to the list of messages for that field, e.g.
    {"email": ["The email must be a valid email address."]}.
    """

    code = "validation_error"
    message = "The given data was invalid."
    status_code = 400

    def __init__(self, fields: dict[str, list[str]], message: str | None = None) -> None:
        super().__init__(message)
        self.fields = fields

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["fields"] = self.fields
        return body


class InvalidReference(ValidationError):
    """A foreign reference (role_id) does not resolve to an existing row."""

    code = "invalid_reference"
    message = "The selected role does not exist."

    def __init__(self, field: str = "role_id", message: str | None = None) -> None:
        super().__init__({field: [message or self.message]}, message)


# ---------------------------------------------------------------------------
# Conflicts (409)
# ---------------------------------------------------------------------------


class Conflict(CareGateError):
    code = "conflict"
    message = "The request conflicts with existing data."
    status_code = 409


class DuplicateEmail(Conflict):
    code = "duplicate_email"
    message = "The email has already been taken."


class RoleInUse(Conflict):
    code = "role_in_use"
    message = "The role is still assigned to one or more users."


class RoleProtected(Conflict):
    code = "role_protected"
    message = "Seeded roles cannot be deleted."


# ---------------------------------------------------------------------------
# Authentication / authorization (401, 403)
# ---------------------------------------------------------------------------


class InvalidCredentials(CareGateError):
    """Login failure. Deliberately identical for unknown email and wrong password."""

    code = "invalid_credentials"
    message = "Invalid email or password."
    status_code = 401


class Unauthorized(CareGateError):
    code = "unauthorized"
    message = "Authentication required."
    status_code = 401


class InvalidToken(Unauthorized):
    """Token is malformed or its signature does not verify under the current key."""

    code = "invalid_token"
    message = "The access token is invalid."


class ExpiredToken(Unauthorized):
    code = "token_expired"
    message = "The access token has expired."


class Forbidden(CareGateError):
    code = "forbidden"
    message = "You do not have permission to perform this action."
    status_code = 403


# ---------------------------------------------------------------------------
# Lookup (404)
# ---------------------------------------------------------------------------


class NotFound(CareGateError):
    code = "not_found"
    message = "Resource not found."
    status_code = 404


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class StorageUnavailable(CareGateError):
    """The storage collaborator could not be reached. Not retried inline."""

    code = "storage_unavailable"
    message = "The service is temporarily unavailable."
    status_code = 503


class PolicyConfigurationError(ValueError):
    """Route access policy is invalid. Raised at startup, never per request."""
