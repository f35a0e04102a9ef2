"""Domain exceptions for webhook-service."""
from __future__ import annotations


class WebhookServiceError(Exception):
    """Base class for all service errors."""


class NotFoundError(WebhookServiceError):
    """Requested entity does not exist (or belongs to another tenant)."""


class ConflictError(WebhookServiceError):
    """Entity is in a state that does not allow the requested operation."""


class AuthorizationError(WebhookServiceError):
    """Trigger call lacks a valid shared secret."""


class StoreUnavailableError(WebhookServiceError):
    """Persistence layer is unreachable or failing."""


class ClaimConflict(WebhookServiceError):
    """Another pass claimed the delivery first."""


class DeliveryError(WebhookServiceError):
    """A single delivery attempt failed."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DeliveryTransientError(DeliveryError):
    """Timeout, connection failure, 5xx, 408 or 429."""


class DeliveryPermanentError(DeliveryError):
    """Receiver rejected the delivery for good, or the subscription is unusable."""
