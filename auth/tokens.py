"""
auth/tokens.py -- Signed, time-bounded session tokens (JWT, HS256).

Security design decisions:
  JWT: python-jose with HS256. Claims are kept minimal: sub (user id as a
       string, as RFC 7519 requires), iat and exp. Role is NOT embedded --
       the access middleware loads the user on every request so a role change
       or a deleted account takes effect immediately.

  Fail closed: jose verifies the signature before any claim is read. Expiry
       is checked here rather than by jose so the clock can be injected; the
       claims are only inspected once the signature is known good.

  Stateless: there is no server-side session table. Rotating SECRET_KEY
       invalidates every outstanding token, which is the accepted tradeoff.

The codec receives its key at construction. Nothing in this module reads
configuration on its own.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode

from auth.errors import ExpiredToken, InvalidToken

_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _canonical_signature(token: str) -> bool:
    """True when the signature segment is the one encoding of its bytes.

    The last base64url character of an HS256 signature carries two unused
    bits. Lenient decoding ignores them, so four spellings of that character
    verify unless the segment is compared against its re-encoding.
    """
    segment = token.rsplit(".", 1)[-1].encode("utf-8", "surrogatepass")
    try:
        return base64url_encode(base64url_decode(segment)) == segment
    except ValueError:
        return False


class TokenCodec:
    """Issue and verify bearer tokens for a single signing key."""

    def __init__(self, secret_key: str, expire_seconds: int = 3600) -> None:
        if len(secret_key) < 32:
            raise ValueError("Signing key must be at least 32 characters.")
        if expire_seconds <= 0:
            raise ValueError("Token expiry must be positive.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds

    def issue(self, subject_id: int, now: datetime | None = None) -> str:
        """Encode a signed token for subject_id valid for expire_seconds from now."""
        issued = now or _utcnow()
        expires = issued + timedelta(seconds=self.expire_seconds)
        payload = {
            "sub": str(subject_id),
            "iat": int(issued.timestamp()),
            "exp": int(expires.timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def decode(self, token: str, now: datetime | None = None) -> int:
        """Verify token and return the subject user id.

        Raises InvalidToken for a malformed token, a bad signature, or missing
        claims, and ExpiredToken once now reaches the exp claim.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidToken() from exc
        if not _canonical_signature(token):
            raise InvalidToken(detail="Token signature is not canonically encoded.")

        subject = payload.get("sub")
        expires = payload.get("exp")
        if not isinstance(expires, (int, float)):
            raise InvalidToken(detail="Token carries no expiry.")
        try:
            subject_id = int(subject)
        except (TypeError, ValueError) as exc:
            raise InvalidToken(detail="Token subject is not a user id.") from exc

        current = now or _utcnow()
        if current.timestamp() >= expires:
            raise ExpiredToken()
        return subject_id
