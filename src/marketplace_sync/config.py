"""Runtime settings for the gateway sync."""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_PAYSTACK_BASE_URL = "https://api.paystack.co"


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class SyncSettings(BaseModel):
    """Settings shared by the gateway client, the engine and the outer surfaces."""
    paystack_secret_key: Optional[str] = Field(default=None, description="Paystack secret key")
    paystack_base_url: str = Field(default=DEFAULT_PAYSTACK_BASE_URL)
    admin_api_key: Optional[str] = Field(default=None, description="Bearer key for the admin sync API")
    page_size: int = Field(default=100, ge=1, le=1000, description="Items requested per gateway page")
    max_pages: int = Field(default=1000, ge=1, description="Upper bound on pages per drain")
    http_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    retry_attempts: int = Field(default=3, ge=1, description="Attempts per page request")
    retry_backoff: float = Field(default=1.0, ge=0, description="Exponential backoff multiplier")
    retry_max_wait: float = Field(default=10.0, ge=0, description="Longest wait between attempts")
    user_snapshot_ttl: float = Field(default=300.0, ge=0, description="Seconds a user snapshot stays fresh")
    deadline_seconds: Optional[float] = Field(default=None, gt=0, description="Per-run deadline")
    failure_policy: str = Field(default="abort", description="Stage failure policy: abort or continue")
    rate_limit: str = Field(default="10/minute", description="Rate limit for the admin sync endpoints")
    default_currency: str = Field(default="GHS")

    @field_validator("failure_policy")
    @classmethod
    def _check_failure_policy(cls, value: str) -> str:
        value = value.lower()
        if value not in ("abort", "continue"):
            raise ValueError("failure_policy must be abort or continue")
        return value

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings from environment variables.

        Returns:
            SyncSettings populated from the process environment.
        """
        return cls(
            paystack_secret_key=os.getenv("PAYSTACK_SECRET_KEY") or None,
            paystack_base_url=os.getenv("PAYSTACK_BASE_URL", DEFAULT_PAYSTACK_BASE_URL),
            admin_api_key=os.getenv("API_KEY") or None,
            page_size=_env_int("SYNC_PAGE_SIZE", 100),
            max_pages=_env_int("SYNC_MAX_PAGES", 1000),
            http_timeout=_env_float("SYNC_HTTP_TIMEOUT", 30.0),
            retry_attempts=_env_int("SYNC_RETRY_ATTEMPTS", 3),
            retry_backoff=_env_float("SYNC_RETRY_BACKOFF", 1.0),
            retry_max_wait=_env_float("SYNC_RETRY_MAX_WAIT", 10.0),
            user_snapshot_ttl=_env_float("SYNC_USER_SNAPSHOT_TTL", 300.0),
            deadline_seconds=_env_float("SYNC_DEADLINE_SECONDS", None),
            failure_policy=os.getenv("SYNC_FAILURE_POLICY", "abort").lower(),
            rate_limit=os.getenv("SYNC_RATE_LIMIT", "10/minute"),
            default_currency=os.getenv("DEFAULT_CURRENCY", "GHS").upper(),
        )


def get_settings() -> SyncSettings:
    """Return settings read from the current environment."""
    return SyncSettings.from_env()
