"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TaskBoard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or accept a Settings instance in a constructor.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      process entry points (api/main.py lifespan, main.py CLI) call it; every
      service receives its Settings explicitly.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates missing signing secrets with a warning;
      production mode refuses to start without them.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright.
  [M7] In production mode a missing secret is a hard startup failure.
  [M8] The access and refresh secrets must differ, so a leaked access secret
       cannot mint refresh tokens.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, projects/, or cache/.
"""

import logging
import re
import secrets
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigurationError

logger = logging.getLogger("taskboard.config")

_DATA_DIR = Path(__file__).resolve().parent.parent

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")

_UNIT_SECONDS: dict[str, int] = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as "15m" or "7d" into a timedelta.

    Only an integer followed by one of s, m, h, d is accepted. Anything else
    ("1.5h", "10", "2w", " 5m") raises ConfigurationError -- token lifetimes
    are deployment configuration, and a typo must fail loudly.
    """
    match = _DURATION_RE.match(value or "")
    if match is None:
        raise ConfigurationError(f"Invalid duration {value!r}: expected <int><s|m|h|d>, e.g. '15m' or '7d'.")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). The
    model_validator enforces production-safety rules at startup.
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
    database_url: str = f"sqlite:///{_DATA_DIR / 'taskboard.db'}"
    # SQLite busy timeout. A store call that cannot get the lock within this
    # window raises, and the request fails as an infrastructure error.
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    access_token_expiration: str = "15m"
    refresh_token_expiration: str = "7d"

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    cache_enabled: bool = True
    cache_path: str = str(_DATA_DIR / "taskboard_cache.db")
    cache_timeout_seconds: float = 0.5
    cache_ttl_profile: int = 3600
    cache_ttl_project: int = 600
    cache_ttl_listing: int = 300
    cache_ttl_task: int = 120

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_token_ttl(self) -> timedelta:
        return parse_duration(self.access_token_expiration)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return parse_duration(self.refresh_token_expiration)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce signing secret policy [M6] [M7] [M8] and duration formats.

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
        """
        for name in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, name)
            if not value:
                if self.debug:
                    setattr(self, name, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Sessions will not persist across restarts.",
                        name.upper(),
                    )
                else:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, name)) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        # Fail at startup rather than on the first login.
        parse_duration(self.access_token_expiration)
        parse_duration(self.refresh_token_expiration)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.

    In tests: build Settings(...) directly, or call get_settings.cache_clear()
    between test cases if you need to inject different environment variables.
    """
    return Settings()
