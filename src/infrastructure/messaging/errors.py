"""Exceptions raised by the outbound messaging layer."""

from typing import Optional


class MessagingError(Exception):
    """Base exception for messaging provider errors."""
    pass


class RateLimitExceededError(MessagingError):
    """Waiting for a send permit would exceed the allowed wait."""

    def __init__(self, provider: str, message: str, retry_after_ms: Optional[float] = None):
        super().__init__(message)
        self.provider = provider
        self.retry_after_ms = retry_after_ms


class ProviderError(MessagingError):
    """A vendor rejected the request or answered with something unusable."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Network failure, timeout, 429 or 5xx. Worth retrying."""
    pass


class ProviderNotConfiguredError(MessagingError):
    """No provider (or no credentials) for the requested channel."""
    pass
