"""Enumerations shared across layers."""
from __future__ import annotations

from enum import Enum


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SUCCEEDED, DeliveryStatus.FAILED_TERMINAL)


CLAIMABLE_STATUSES = (DeliveryStatus.PENDING, DeliveryStatus.FAILED_RETRYABLE)


class RetryAction(str, Enum):
    DELIVERED = "delivered"
    RESCHEDULE = "reschedule"
    GIVE_UP = "give_up"


class TenantRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class WebhookEventType(str, Enum):
    """Events a subscription can listen to and the platform can emit."""

    LEAD_CREATED = "lead.created"
    LEAD_UPDATED = "lead.updated"
    LEAD_STATUS_CHANGED = "lead.status_changed"
    CONTRACT_GENERATED = "contract.generated"
    CONTRACT_SIGNED = "contract.signed"
    CONTRACT_EXPIRED = "contract.expired"
    INVOICE_CREATED = "invoice.created"
    INVOICE_PAID = "invoice.paid"
    INVOICE_OVERDUE = "invoice.overdue"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    SCREENING_COMPLETED = "screening.completed"
    WHATSAPP_MESSAGE_SENT = "whatsapp.message_sent"
    WHATSAPP_MESSAGE_RECEIVED = "whatsapp.message_received"
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    TENANT_UPDATED = "tenant.updated"


WEBHOOK_EVENT_TYPES = frozenset(e.value for e in WebhookEventType)


def invalid_event_types(event_types) -> list[str]:
    """Entries of ``event_types`` outside the catalog, in input order."""
    return [e for e in event_types if e not in WEBHOOK_EVENT_TYPES]
