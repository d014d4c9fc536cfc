"""
Provider Factory
================

Builds every vendor client once from settings and hands out the active SMS
and email provider. Webhook routes look providers up by name, so a vendor's
delivery reports are still accepted after switching the active provider.
"""

import logging
from typing import Dict, Optional

import requests

from ...domain.models import NotificationType
from ..config.settings import Settings
from .email_providers import ResendProvider, SendGridProvider
from .errors import ProviderNotConfiguredError
from .messaging_provider import MessagingProvider
from .rate_limiter import RateLimiterRegistry
from .sms_providers import GatewayApiProvider, InMobileProvider

logger = logging.getLogger(__name__)


class ProviderFactory:
    """
    Usage:
        providers = ProviderFactory(settings, RateLimiterRegistry(...))
        sms = providers.for_channel(NotificationType.SMS)
        gateway = providers.get("gatewayapi")
    """

    def __init__(
        self,
        settings: Settings,
        rate_limiters: RateLimiterRegistry,
        session: Optional[requests.Session] = None,
    ):
        http = settings.http
        country = settings.links.default_country_code
        self._providers: Dict[str, MessagingProvider] = {
            "gatewayapi": GatewayApiProvider(
                settings.gatewayapi, rate_limiters.get("gatewayapi"), http, country, session
            ),
            "inmobile": InMobileProvider(
                settings.inmobile, rate_limiters.get("inmobile"), http, country, session
            ),
            "sendgrid": SendGridProvider(
                settings.sendgrid, rate_limiters.get("sendgrid"), http, session
            ),
            "resend": ResendProvider(
                settings.resend,
                rate_limiters.get("resend"),
                http,
                settings.integrations.signature_tolerance_seconds,
                session,
            ),
        }
        self._active = {
            NotificationType.SMS: settings.server.sms_provider,
            NotificationType.EMAIL: settings.server.email_provider,
        }
        for channel, name in self._active.items():
            provider = self._providers.get(name)
            if provider is None or provider.channel != channel:
                raise ValueError(f"'{name}' is not a known {channel.value} provider")

    def get(self, name: str) -> MessagingProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotConfiguredError(f"Unknown provider: {name}")
        return provider

    def for_channel(self, channel: NotificationType) -> MessagingProvider:
        provider = self._providers[self._active[channel]]
        if not provider.is_configured():
            raise ProviderNotConfiguredError(
                f"{channel.value} provider '{provider.name}' is not configured"
            )
        return provider

    def status(self) -> Dict[str, dict]:
        return {
            name: {
                "channel": provider.channel.value,
                "configured": provider.is_configured(),
                "active": self._active[provider.channel] == name,
            }
            for name, provider in self._providers.items()
        }
