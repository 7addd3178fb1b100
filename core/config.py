"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for userdir happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, token_expire_seconds -> TOKEN_EXPIRE_SECONDS).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode generates a signing key with a warning, production
      mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. HMAC token signing
  relies on key entropy.

  TOKEN_ALGORITHM is restricted to the HMAC family. The signing secret is
  symmetric; an asymmetric algorithm name here would be a misconfiguration.

Layer rule: core/ is the kernel. This module may not import from api/ or identity/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("userdir.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'identity' / 'userdir.db'}"

ONE_YEAR_SECONDS = 365 * 24 * 60 * 60

_SIGNING_ALGORITHMS = ("HS256", "HS384", "HS512")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true supplies the key).
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
    # Tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = ONE_YEAR_SECONDS
    token_algorithm: str = "HS256"
    # Authorization header scheme. validate_token() strips exactly
    # len(token_scheme) + 1 characters ("Bearer " -> 7).
    token_scheme: str = "Bearer"

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    password_hash_rounds: int = 12

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    deleted_user_name: str = "(deleted)"
    default_page_limit: int = 20

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
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

    @model_validator(mode="after")
    def validate_token_policy(self) -> "Settings":
        """Reject token and hashing parameters that cannot work at runtime."""
        if self.token_algorithm not in _SIGNING_ALGORITHMS:
            raise ValueError(f"TOKEN_ALGORITHM must be one of {', '.join(_SIGNING_ALGORITHMS)}.")
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        if not self.token_scheme or " " in self.token_scheme:
            raise ValueError("TOKEN_SCHEME must be a single non-empty word.")
        # bcrypt accepts cost factors 4..31
        if not 4 <= self.password_hash_rounds <= 31:
            raise ValueError("PASSWORD_HASH_ROUNDS must be between 4 and 31.")
        if self.default_page_limit <= 0:
            raise ValueError("DEFAULT_PAGE_LIMIT must be positive.")
        return self

    @property
    def token_prefix(self) -> str:
        """The literal header prefix, scheme plus one space."""
        return f"{self.token_scheme} "


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
