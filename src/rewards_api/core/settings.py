from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./rewards.db"
    tracing_enabled: bool = True

    # Internal API security (staff validators, business admin tooling)
    validator_api_key: str = ""

    # Redemption anti-abuse
    redemption_rate_limit_max: int = 10
    redemption_rate_limit_window_days: int = 30
    rewards_timezone: str = "UTC"

    # Validator connectivity gate
    reachability_probe_enabled: bool = True
    reachability_probe_url: str = "https://www.google.com/favicon.ico"
    reachability_timeout_seconds: float = 3.0

    # QR rendering is delegated to an external endpoint
    qr_render_base_url: str = "https://api.qrserver.com/v1/create-qr-code/"
    qr_render_size: int = 400
    qr_render_error_correction: Literal["L", "M", "Q", "H"] = "H"

    audit_log_default_limit: int = Field(default=100, ge=1, le=1000)

    # Push gateway; pushes are only logged when unset
    push_webhook_url: str | None = None
    push_webhook_token: str | None = None
    push_timeout_seconds: float = 5.0

    # Periodic expiry sweep for unvalidated redemptions
    redemption_expiry_sweep_enabled: bool = False
    redemption_expiry_sweep_interval_seconds: int = Field(default=900, ge=10)

    @field_validator("database_url")
    @classmethod
    def ensure_async_driver(cls, value: str) -> str:
        if value.startswith("postgresql://"):
            return value.replace("postgresql://", "postgresql+asyncpg://", 1)
        if value.startswith("sqlite:///"):
            return value.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return value

    @field_validator("rewards_timezone")
    @classmethod
    def ensure_known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown rewards timezone: {value!r}") from exc
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
