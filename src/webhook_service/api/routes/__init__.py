"""Route modules."""

from webhook_service.api.routes import cron, deliveries, webhooks

__all__ = ["cron", "deliveries", "webhooks"]
