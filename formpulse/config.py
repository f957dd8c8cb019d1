"""Runtime settings for FormPulse.

Values come from code defaults, overridden by ``FORMPULSE_*`` environment
variables (e.g. ``FORMPULSE_CHANGE_SAMPLE_EVERY=5``).
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["json", "console"]


class Settings(BaseSettings):
    """FormPulse configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FORMPULSE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Tracking
    form_name: str = Field(default="signup", description="Prefix for telemetry names")
    change_sample_every: int = Field(
        default=10,
        ge=1,
        description="Emit a change breadcrumb on the 1st keystroke and every Nth after",
    )

    # Remote signup endpoint (unset: simulate the endpoint in-process)
    signup_base_url: Optional[str] = Field(default=None, description="e.g. http://localhost:3000")
    request_timeout: float = Field(default=10.0, gt=0, description="Seconds")

    # Simulated service
    persist_delay_ms: int = Field(default=150, ge=0)
    email_delay_ms: int = Field(default=50, ge=0)
    conflict_rate: float = Field(default=0.1, ge=0.0, le=1.0)

    # Telemetry delivery
    dispatch_queue_size: int = Field(default=1000, ge=1)

    # Logging
    log_level: LogLevel = Field(default="INFO")
    log_format: LogFormat = Field(default="console")
    redact_pii: bool = Field(default=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once."""
    return Settings()


__all__ = ["Settings", "get_settings"]
