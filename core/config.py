"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Recipe Shelf happen here. No module should
call os.getenv() or os.environ.get() directly.

Design patterns used:
  Explicit construction: create_app(settings) receives a Settings instance and
      hands the relevant values to each component constructor (TokenCodec,
      PasswordHasher, stores). Components never look configuration up on
      their own, so tests can build an app from a hand-made Settings object.

  get_settings() with lru_cache: used only at process start (asgi.py and the
      main.py CLI) to build the one Settings instance for the process.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode (DEBUG=true) generates a SECRET_KEY with a warning,
      production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing relies
  on key entropy -- a short key weakens every session token.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or catalog/.
"""

import logging
import re
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("recipeshelf.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'recipeshelf.db'}"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> int:
    """Convert a duration string such as "1d", "12h", "30m" or "45s" to seconds.

    Bare digits are read as seconds. Raises ValueError for anything else so a
    typo in TOKEN_EXPIRES_IN stops the process at startup instead of silently
    issuing tokens with a surprising lifetime.
    """
    match = _DURATION_RE.match(value or "")
    if match is None:
        raise ValueError(f"Invalid duration {value!r}; expected e.g. '1d', '12h', '30m', '45s'.")
    amount, unit = match.groups()
    seconds = int(amount) * _UNIT_SECONDS[unit.lower()]
    if seconds <= 0:
        raise ValueError(f"Duration {value!r} must be greater than zero.")
    return seconds


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except secret_key have usable defaults. The validators enforce
    production-safety rules when the object is built.
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
    # "production" turns on Secure cookies and hides diagnostics in 500 bodies.
    environment: Literal["development", "test", "production"] = "development"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expires_in: str = "1d"
    secure_cookies: bool = False
    cookie_path: str = "/api/v1"
    bcrypt_rounds: int = 10

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    # all_or_nothing: one invalid or conflicting element rejects the batch.
    # partial: valid elements are created, failures reported per index.
    bulk_create_policy: Literal["all_or_nothing", "partial"] = "all_or_nothing"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("token_expires_in")
    @classmethod
    def validate_token_expires_in(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        # bcrypt accepts 4..31; anything outside fails at the first hash.
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def token_ttl_seconds(self) -> int:
        return parse_duration(self.token_expires_in)

    @property
    def cookie_secure(self) -> bool:
        return self.secure_cookies or self.environment == "production"

    @property
    def expose_error_detail(self) -> bool:
        return self.environment != "production"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings instance.

    Only entry points (asgi.py, main.py) call this. Everything below the app
    factory receives settings, or values derived from them, as arguments.

    In tests: call get_settings.cache_clear() after changing the environment.
    """
    return Settings()
