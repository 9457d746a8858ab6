"""Environment-driven configuration with Pydantic v2."""

from typing import Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


DEFAULT_JWT_SECRET = "changeme"
DEFAULT_ADMIN_KEY = "admin-change-me"


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables.

    Field names double as environment variable names (case-insensitive),
    e.g. ``jwt_ttl_seconds`` is read from ``JWT_TTL_SECONDS``.
    """

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    debug: bool = Field(default=False)
    workers: int = Field(default=1, ge=1, le=8)

    # Cache Configuration (no REDIS_URL = in-process cache)
    redis_url: Optional[str] = Field(default=None)
    cache_ttl_seconds: int = Field(default=300, ge=1)
    local_cache_max_entries: int = Field(default=1000, ge=1)
    local_cache_check_period: int = Field(default=60, ge=1)

    # Authentication
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET, min_length=1)
    jwt_ttl_seconds: int = Field(default=900, ge=1)
    admin_key: str = Field(default=DEFAULT_ADMIN_KEY, min_length=1)
    api_key_ttl: int = Field(default=0, ge=0)  # 0 = keys never expire

    # Rate Limiting (fixed 60s window per client IP)
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_per_min: int = Field(default=60, ge=1)

    # Rendering
    render_concurrency: int = Field(default=2, ge=1, le=32)
    render_timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    render_user_agent: str = Field(default="WebRendererBot/1.0")
    render_viewport_width: int = Field(default=1280, ge=320, le=3840)
    render_viewport_height: int = Field(default=720, ge=240, le=2160)
    render_single_flight: bool = Field(default=False)

    # HTTP
    max_body_bytes: int = Field(default=1024 * 1024, ge=1024)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    @field_validator("redis_url")
    @classmethod
    def blank_redis_url_is_none(cls, v):
        """Treat an empty REDIS_URL the same as an unset one."""
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper()

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug

    @property
    def uses_default_secrets(self) -> bool:
        """True when either signing or admin secret was left at its default."""
        return self.jwt_secret == DEFAULT_JWT_SECRET or self.admin_key == DEFAULT_ADMIN_KEY

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
