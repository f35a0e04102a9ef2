"""Domain services exports."""

from webhook_service.services.retry_policy import RetryPolicy
from webhook_service.services.retry_scheduler import RetryScheduler
from webhook_service.services.webhooks import WebhookService

__all__ = [
    "RetryPolicy",
    "RetryScheduler",
    "WebhookService",
]
