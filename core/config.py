"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Config Studio happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET).

  @model_validator(mode="after"): cross-field checks that can only run once
      every field is resolved (secret length, default admin password warning).

Security notes:
  An empty JWT_SECRET means "not configured". The auth layer then persists a
  generated secret next to the credential files (PERSIST_JWT_SECRET=true) so
  a restart does not log every user out. A configured JWT_SECRET shorter than
  32 characters is rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("configstudio.config")

DEFAULT_ADMIN_PASSWORD = "admin123"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Tests usually construct
    Settings(auth_dir=tmp_path, ...) directly instead of going through env.
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
    auth_dir: Path = Field(default_factory=lambda: Path.home() / ".gemini" / "auth")

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    persist_jwt_secret: bool = True
    admin_password: str = DEFAULT_ADMIN_PASSWORD
    bcrypt_rounds: int = 12
    session_sweep_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    storage_backend: Literal["json", "sql"] = "json"
    # Empty means sqlite:///<auth_dir>/auth.db when storage_backend == "sql".
    database_url: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        """bcrypt accepts a log2 work factor between 4 and 31."""
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @field_validator("session_sweep_interval_seconds")
    @classmethod
    def validate_sweep_interval(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SESSION_SWEEP_INTERVAL_SECONDS must be at least 1.")
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Reject weak signing secrets and warn about the default admin password.

        Short keys have insufficient entropy for HMAC-SHA256 JWT signing.
        The default admin password is tolerated in DEBUG mode only; outside
        it a warning is logged because the bootstrap account is guessable
        until its password is changed.
        """
        if self.jwt_secret and len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        if self.admin_password == DEFAULT_ADMIN_PASSWORD and not self.debug:
            logger.warning("ADMIN_PASSWORD is not set; the bootstrap admin uses the default password.")
        return self

    @property
    def resolved_database_url(self) -> str:
        """Return DATABASE_URL, or a SQLite file inside auth_dir when unset."""
        return self.database_url or f"sqlite:///{self.auth_dir / 'auth.db'}"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
