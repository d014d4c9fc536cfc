"""
Application Container
=====================

Builds every service once from Settings. The web app's lifespan and the
worker CLI each own one container; nothing in the pipeline is a module
global, so tests build as many isolated containers as they like.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from ..domain.templates import TemplateService
from ..infrastructure.config import Settings
from ..infrastructure.integrations import (
    DullyAdapter,
    EasyTableAdapter,
    EasyTablePoller,
    IntegrationRegistry,
)
from ..infrastructure.links import SignedLinkService
from ..infrastructure.messaging import ProviderFactory, RateLimiterRegistry
from ..infrastructure.persistence import Database, NotificationStore, OrderQueueStore
from .notification_dispatcher import NotificationDispatcher
from .order_intake import OrderIntake
from .queue_processor import QueueProcessor
from .webhook_ingester import WebhookIngester

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    db: Database
    queue: OrderQueueStore
    notifications: NotificationStore
    templates: TemplateService
    links: SignedLinkService
    rate_limiters: RateLimiterRegistry
    providers: ProviderFactory
    integrations: IntegrationRegistry
    intake: OrderIntake
    processor: QueueProcessor
    dispatcher: NotificationDispatcher
    ingester: WebhookIngester
    poller: EasyTablePoller

    @property
    def dully(self) -> DullyAdapter:
        return self.integrations.get_or_raise("dully")

    async def start_jobs(self):
        self.processor.start()
        self.dispatcher.start()
        await self.poller.start()

    async def stop_jobs(self):
        await self.poller.stop()
        await self.dispatcher.stop()
        await self.processor.stop()
        self.integrations.disconnect_all()
        self.rate_limiters.reset_all()


def build_container(settings: Settings, session: Optional[requests.Session] = None) -> Container:
    """Wire the pipeline. Creates the database schema if missing."""
    db = Database(settings.database.path)
    db.init()

    queue = OrderQueueStore(db)
    notifications = NotificationStore(db)
    templates = TemplateService()
    links = SignedLinkService(
        settings.links.secret, settings.links.frontend_url, settings.links.expiry_days
    )
    rate_limiters = RateLimiterRegistry(
        settings.rate_limits.limits, max_wait_ms=settings.rate_limits.max_wait_ms
    )
    providers = ProviderFactory(settings, rate_limiters, session)

    integrations = IntegrationRegistry()
    integrations.register(DullyAdapter(settings.integrations.signature_tolerance_seconds))
    integrations.register(EasyTableAdapter(settings.integrations.easytable_api_url, session))

    intake = OrderIntake(db, queue, settings.integrations.platform_delays)
    processor = QueueProcessor(
        db, queue, notifications, templates, links, settings.queue,
        settings.links.default_country_code,
    )
    dispatcher = NotificationDispatcher(db, notifications, providers, settings.dispatcher)
    ingester = WebhookIngester(notifications, providers)
    poller = EasyTablePoller(
        db,
        handler=intake.enqueue_order,
        interval_seconds=settings.integrations.easytable_poll_interval_seconds,
        adapter_factory=lambda: EasyTableAdapter(settings.integrations.easytable_api_url, session),
    )

    for warning in settings.validate():
        logger.warning(warning)

    return Container(
        settings=settings,
        db=db,
        queue=queue,
        notifications=notifications,
        templates=templates,
        links=links,
        rate_limiters=rate_limiters,
        providers=providers,
        integrations=integrations,
        intake=intake,
        processor=processor,
        dispatcher=dispatcher,
        ingester=ingester,
        poller=poller,
    )
