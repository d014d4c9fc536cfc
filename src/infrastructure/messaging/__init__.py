from .email_providers import ResendProvider, SendGridProvider
from .errors import (
    MessagingError,
    ProviderError,
    ProviderNotConfiguredError,
    RateLimitExceededError,
    TransientProviderError,
)
from .messaging_provider import (
    Message,
    MessageStatusResult,
    MessagingProvider,
    SendResult,
    WebhookEvent,
)
from .provider_factory import ProviderFactory
from .rate_limiter import RateLimiter, RateLimiterRegistry
from .sms_providers import GatewayApiProvider, InMobileProvider

__all__ = [
    "GatewayApiProvider",
    "InMobileProvider",
    "ResendProvider",
    "SendGridProvider",
    "MessagingError",
    "ProviderError",
    "ProviderNotConfiguredError",
    "RateLimitExceededError",
    "TransientProviderError",
    "Message",
    "MessageStatusResult",
    "MessagingProvider",
    "SendResult",
    "WebhookEvent",
    "ProviderFactory",
    "RateLimiter",
    "RateLimiterRegistry",
]
