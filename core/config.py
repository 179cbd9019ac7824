"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CareGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Values
      are read at process startup and never per request.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Complex fields (route_roles,
      seed_roles, allowed_hosts) are parsed from JSON strings.

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY logic. Dev
      mode generates a key with a warning, production refuses to start.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. Rotating the key invalidates all issued tokens.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or users/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("caregate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'caregate.db'}"

# Role seed required by the default route policy.
DEFAULT_SEED_ROLES: dict[int, str] = {1: "admin", 2: "doctor", 3: "patient"}

# Route name -> role names allowed. An empty list admits any authenticated user.
DEFAULT_ROUTE_ROLES: dict[str, list[str]] = {
    "me": [],
    "users.list": ["admin"],
    "users.get": ["admin"],
    "users.create": ["admin"],
    "users.update": ["admin"],
    "users.delete": ["admin"],
    "patients.list": ["doctor", "patient"],
    "roles.list": [],
    "roles.create": ["admin"],
    "roles.delete": ["admin"],
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expire_seconds: int = Field(default=3600, gt=0)
    # bcrypt cost factor. 12 is the library default; tests drop to 4.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    # Role ids seeded at startup. Ids are stable: changing the name bound to
    # an existing id is rejected by the store.
    seed_roles: dict[int, str] = Field(default_factory=lambda: dict(DEFAULT_SEED_ROLES))
    # Entries may be role names or role ids; both are resolved against the
    # roles table when the policy is loaded.
    route_roles: dict[str, list[int | str]] = Field(default_factory=lambda: dict(DEFAULT_ROUTE_ROLES))

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1", "*.localhost"])
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost", "http://localhost:3000"])

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
