"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclasses for safety and clarity
- Single source of truth for all configurable values

EXTENSIBILITY:
- To add a messaging vendor: add a <Vendor>Settings group and wire it in
  the provider factory
- To add an order source: add its defaults to IntegrationSettings
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv

# Development convenience; real environment variables win
load_dotenv()

DEV_TOKEN_SECRET = "dev-review-token-secret-change-me"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DatabaseSettings:
    """SQLite storage."""

    path: Path = field(
        default_factory=lambda: Path(os.getenv("DATABASE_PATH", "reviewflow.db"))
    )


@dataclass(frozen=True)
class QueueSettings:
    """Order queue processor."""

    interval_seconds: int = field(default_factory=lambda: _env_int("QUEUE_INTERVAL_SECONDS", 60))
    batch_size: int = field(default_factory=lambda: _env_int("QUEUE_BATCH_SIZE", 10))

    # Items stuck in processing after a crash
    stale_after_minutes: int = field(default_factory=lambda: _env_int("QUEUE_STALE_MINUTES", 15))
    max_attempts: int = 2

    retention_days: int = field(default_factory=lambda: _env_int("QUEUE_RETENTION_DAYS", 30))
    retention_sweep_hours: int = 24


@dataclass(frozen=True)
class DispatcherSettings:
    """Outbound notification sending."""

    interval_seconds: int = field(default_factory=lambda: _env_int("DISPATCH_INTERVAL_SECONDS", 10))
    batch_size: int = field(default_factory=lambda: _env_int("DISPATCH_BATCH_SIZE", 10))
    max_retries: int = 3
    retry_delays_seconds: Tuple[int, ...] = (60, 120, 240)


@dataclass(frozen=True)
class LinkSettings:
    """Signed review links."""

    secret: str = field(
        default_factory=lambda: os.getenv("REVIEW_TOKEN_SECRET")
        or os.getenv("JWT_SECRET")
        or DEV_TOKEN_SECRET
    )
    expiry_days: int = 60
    frontend_url: str = field(
        default_factory=lambda: os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")
    )
    default_country_code: str = field(default_factory=lambda: os.getenv("DEFAULT_COUNTRY_CODE", "45"))


@dataclass(frozen=True)
class HttpSettings:
    """Outbound HTTP to vendors."""

    timeout_seconds: int = field(default_factory=lambda: _env_int("HTTP_TIMEOUT_SECONDS", 10))
    max_attempts: int = 3
    backoff_seconds: float = 0.5


@dataclass(frozen=True)
class GatewayApiSettings:
    api_key: str = field(default_factory=lambda: os.getenv("GATEWAYAPI_API_KEY", ""))
    sender: str = field(default_factory=lambda: os.getenv("GATEWAYAPI_SENDER", "ReviewFlow"))
    webhook_secret: str = field(default_factory=lambda: os.getenv("GATEWAYAPI_WEBHOOK_SECRET", ""))
    api_url: str = "https://gatewayapi.com/rest"


@dataclass(frozen=True)
class InMobileSettings:
    api_key: str = field(default_factory=lambda: os.getenv("INMOBILE_API_KEY", ""))
    sender: str = field(default_factory=lambda: os.getenv("INMOBILE_SENDER", "ReviewFlow"))
    webhook_secret: str = field(default_factory=lambda: os.getenv("INMOBILE_WEBHOOK_SECRET", ""))
    status_callback_url: str = field(default_factory=lambda: os.getenv("INMOBILE_STATUS_CALLBACK_URL", ""))
    api_url: str = "https://api.inmobile.com/v4"


@dataclass(frozen=True)
class SendGridSettings:
    api_key: str = field(default_factory=lambda: os.getenv("SENDGRID_API_KEY", ""))
    from_email: str = field(default_factory=lambda: os.getenv("SENDGRID_FROM_EMAIL", ""))
    from_name: str = field(default_factory=lambda: os.getenv("SENDGRID_FROM_NAME", "ReviewFlow"))
    # Base64 DER or PEM public key from the SendGrid event webhook settings
    webhook_verification_key: str = field(
        default_factory=lambda: os.getenv("SENDGRID_WEBHOOK_VERIFICATION_KEY", "")
    )
    api_url: str = "https://api.sendgrid.com/v3"


@dataclass(frozen=True)
class ResendSettings:
    api_key: str = field(default_factory=lambda: os.getenv("RESEND_API_KEY", ""))
    from_email: str = field(default_factory=lambda: os.getenv("RESEND_FROM_EMAIL", ""))
    from_name: str = field(default_factory=lambda: os.getenv("RESEND_FROM_NAME", "ReviewFlow"))
    webhook_secret: str = field(default_factory=lambda: os.getenv("RESEND_WEBHOOK_SECRET", ""))
    api_url: str = "https://api.resend.com"


@dataclass(frozen=True)
class RateLimitSettings:
    """(max requests, window ms) per vendor."""

    limits: Dict[str, Tuple[int, int]] = field(
        default_factory=lambda: {
            "gatewayapi": (100, 1000),
            "inmobile": (100, 1000),
            "sendgrid": (100, 1000),
            "resend": (100, 1000),
        }
    )
    max_wait_ms: int = 30000


@dataclass(frozen=True)
class IntegrationSettings:
    """Order sources."""

    # Minutes between order completion and the review request
    platform_delays: Dict[str, int] = field(
        default_factory=lambda: {"dully": 60, "easytable": 120}
    )
    signature_tolerance_seconds: int = 300
    easytable_api_url: str = field(
        default_factory=lambda: os.getenv("EASYTABLE_API_URL", "https://api.easytable.com/v1")
    )
    easytable_poll_interval_seconds: int = field(
        default_factory=lambda: _env_int("EASYTABLE_POLL_INTERVAL_SECONDS", 300)
    )


@dataclass(frozen=True)
class ServerSettings:
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _env_int("PORT", 8000))
    reload: bool = field(default_factory=lambda: _env_bool("RELOAD", False))
    # Run queue processor and dispatcher inside the web process
    run_jobs: bool = field(default_factory=lambda: _env_bool("RUN_JOBS", True))
    internal_api_key: str = field(default_factory=lambda: os.getenv("INTERNAL_API_KEY", ""))
    sms_provider: str = field(default_factory=lambda: os.getenv("SMS_PROVIDER", "gatewayapi"))
    email_provider: str = field(default_factory=lambda: os.getenv("EMAIL_PROVIDER", "sendgrid"))


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from src.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.queue.batch_size)
    """

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    dispatcher: DispatcherSettings = field(default_factory=DispatcherSettings)
    links: LinkSettings = field(default_factory=LinkSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    gatewayapi: GatewayApiSettings = field(default_factory=GatewayApiSettings)
    inmobile: InMobileSettings = field(default_factory=InMobileSettings)
    sendgrid: SendGridSettings = field(default_factory=SendGridSettings)
    resend: ResendSettings = field(default_factory=ResendSettings)
    rate_limits: RateLimitSettings = field(default_factory=RateLimitSettings)
    integrations: IntegrationSettings = field(default_factory=IntegrationSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings/errors.
        Returns empty list if all settings are valid.
        """
        issues = []

        if self.links.secret == DEV_TOKEN_SECRET:
            issues.append(
                "WARNING: REVIEW_TOKEN_SECRET not set. "
                "Review links are signed with the development secret."
            )

        sms_keys = {"gatewayapi": self.gatewayapi.api_key, "inmobile": self.inmobile.api_key}
        if not sms_keys.get(self.server.sms_provider):
            issues.append(
                f"WARNING: SMS provider '{self.server.sms_provider}' has no API key. "
                "SMS notifications will fail."
            )

        email_keys = {"sendgrid": self.sendgrid.api_key, "resend": self.resend.api_key}
        if not email_keys.get(self.server.email_provider):
            issues.append(
                f"WARNING: Email provider '{self.server.email_provider}' has no API key. "
                "Email notifications will fail."
            )

        if not self.server.internal_api_key:
            issues.append(
                "WARNING: INTERNAL_API_KEY not set. Operator endpoints are disabled."
            )

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()
