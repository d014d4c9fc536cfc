from unittest.mock import MagicMock

import pytest
import requests

from src.application import Container, build_container
from src.domain.models import Business, IntegrationConfig
from src.infrastructure.config.settings import (
    DatabaseSettings,
    DispatcherSettings,
    GatewayApiSettings,
    HttpSettings,
    InMobileSettings,
    IntegrationSettings,
    LinkSettings,
    QueueSettings,
    RateLimitSettings,
    ResendSettings,
    SendGridSettings,
    ServerSettings,
    Settings,
)
from src.infrastructure.persistence import Database, NotificationStore, OrderQueueStore

TOKEN_SECRET = "test-token-secret"
FRONTEND_URL = "https://app.reviewflow.test"
INTERNAL_KEY = "internal-test-key"
DULLY_SECRET = "dully-webhook-secret"


@pytest.fixture
def db(tmp_path) -> Database:
    database = Database(tmp_path / "reviewflow-test.db")
    database.init()
    return database


@pytest.fixture
def queue(db) -> OrderQueueStore:
    return OrderQueueStore(db)


@pytest.fixture
def notifications(db) -> NotificationStore:
    return NotificationStore(db)


@pytest.fixture
def business(db) -> Business:
    """SMS-only business with a Dully integration."""
    return db.save_business(
        Business(
            id="cafe-hygge",
            name="Cafe Hygge",
            sms_enabled=True,
            email_enabled=False,
            google_review_url="https://g.page/r/cafe-hygge/review",
            integrations=[
                IntegrationConfig(platform="dully", enabled=True, webhook_secret=DULLY_SECRET),
            ],
        )
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Fully explicit settings so nothing leaks in from the environment."""
    return Settings(
        database=DatabaseSettings(path=tmp_path / "reviewflow-test.db"),
        queue=QueueSettings(interval_seconds=60, batch_size=10, stale_after_minutes=15, retention_days=30),
        dispatcher=DispatcherSettings(interval_seconds=10, batch_size=10),
        links=LinkSettings(
            secret=TOKEN_SECRET,
            expiry_days=60,
            frontend_url=FRONTEND_URL,
            default_country_code="45",
        ),
        http=HttpSettings(timeout_seconds=5, max_attempts=1, backoff_seconds=0),
        gatewayapi=GatewayApiSettings(api_key="gw-key", sender="Hygge", webhook_secret="gw-secret"),
        inmobile=InMobileSettings(
            api_key="im-key", sender="Hygge", webhook_secret="im-secret", status_callback_url=""
        ),
        sendgrid=SendGridSettings(
            api_key="sg-key", from_email="hello@hygge.test", from_name="Hygge",
            webhook_verification_key="",
        ),
        resend=ResendSettings(
            api_key="re-key", from_email="hello@hygge.test", from_name="Hygge",
            webhook_secret="whsec_dGVzdC1yZXNlbmQtc2VjcmV0",
        ),
        rate_limits=RateLimitSettings(),
        integrations=IntegrationSettings(
            easytable_api_url="https://easytable.test/v1", easytable_poll_interval_seconds=300
        ),
        server=ServerSettings(
            host="127.0.0.1",
            port=8000,
            reload=False,
            run_jobs=False,
            internal_api_key=INTERNAL_KEY,
            sms_provider="gatewayapi",
            email_provider="sendgrid",
        ),
    )


@pytest.fixture
def http_session():
    """Stands in for every outbound vendor call."""
    return MagicMock(spec=requests.Session)


@pytest.fixture
def container(settings, http_session) -> Container:
    return build_container(settings, session=http_session)
