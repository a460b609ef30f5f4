import json
import re
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # Prefer JSON, but tolerate comma/space separated values.
    if raw.startswith(("[", '"', "'")):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    origins: list[str] = []
    for part in (p for p in re.split(r"[,\s]+", raw) if p):
        if part == "*":
            return ["*"]
        if "://" in part:
            origins.append(part)
            continue
        # Browsers include the scheme in the Origin header.
        origins.append(f"http://{part}")
        origins.append(f"https://{part}")

    return list(dict.fromkeys(origins))


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # PostgreSQL settings
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "solvegate"
    db_password: str = "solvegate"
    db_name: str = "solvegate"

    # Connection pool settings
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 300
    db_pool_pre_ping: bool = True
    db_command_timeout: float = 30.0

    # Explicit DATABASE_URL (takes priority over db_* settings)
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")

    @property
    def database_url(self) -> str:
        """Build database connection URL.

        Priority:
        1. database_url_override (from DATABASE_URL env var or .env file)
        2. Built from db_* settings
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}@"
            f"{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # Store retry before the provider call
    store_retry_attempts: int = 2
    store_retry_base_delay: float = 0.1

    # Completion provider (OpenAI-compatible)
    provider_base_url: str = "https://api.openai.com/v1"
    provider_api_key: str = ""
    provider_model: str = "gpt-4o-mini"
    provider_timeout: float = 30.0
    provider_temperature: float = 0.7
    max_output_tokens: int = 1000
    mock_provider: bool = Field(default=False, validation_alias="SOLVEGATE_MOCK_PROVIDER")

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Quota policy
    free_daily_limit: int = 5
    premium_display_limit: int = 999  # reported to clients, never enforced
    user_daily_call_limit: int = 50  # cache-backed, applies to every tier
    daily_budget_cents: int = 100_000
    cost_cents_per_1k_tokens: float = 0.015
    quota_timezone: str = "UTC"
    upgrade_url: str = "https://apps.apple.com/app/ai-homework-helper"

    # Sessions
    session_secret: str = ""
    session_ttl_days: int = 30
    session_algorithm: str = "HS256"

    # Rate limiting (per client address)
    rate_limit_general_requests: int = 100
    rate_limit_general_window_seconds: int = 15 * 60
    rate_limit_auth_requests: int = 5
    rate_limit_auth_window_seconds: int = 15 * 60
    rate_limit_solve_requests: int = 10
    rate_limit_solve_window_seconds: int = 60
    rate_limit_algorithm: str = "sliding_window"  # sliding_window | token_bucket
    rate_limit_fail_closed: bool = False  # If True, deny requests when Redis is unavailable
    rate_limit_trust_proxy: bool = True
    # Proxies in front of the service that append to X-Forwarded-For
    rate_limit_trusted_proxy_hops: int = 1
    rate_limit_cleanup_interval_seconds: int = 300

    # Request body limit (base64 images included)
    max_request_body_bytes: int = 10 * 1024 * 1024

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (optional)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Admin endpoints
    admin_token: str = ""

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator(
        "rate_limit_general_requests",
        "rate_limit_auth_requests",
        "rate_limit_solve_requests",
        "rate_limit_general_window_seconds",
        "rate_limit_auth_window_seconds",
        "rate_limit_solve_window_seconds",
        "rate_limit_trusted_proxy_hops",
        "rate_limit_cleanup_interval_seconds",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_algorithm")
    @classmethod
    def validate_rate_limit_algorithm(cls, v: str) -> str:
        if v not in ("sliding_window", "token_bucket"):
            raise ValueError("rate_limit_algorithm must be sliding_window or token_bucket")
        return v

    @field_validator("free_daily_limit", "user_daily_call_limit", "session_ttl_days")
    @classmethod
    def validate_limits_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quota and session limits must be at least 1")
        return v

    @field_validator("daily_budget_cents", "store_retry_attempts")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator("provider_timeout", "httpx_connect_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("max_output_tokens")
    @classmethod
    def validate_max_output_tokens(cls, v: int) -> int:
        if not 1 <= v <= 32000:
            raise ValueError("max_output_tokens must be between 1 and 32000")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
