"""Store interfaces consumed by the webhook services.

The PostgreSQL repositories implement these; tests plug in in-memory doubles.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, Sequence
from uuid import UUID

from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.webhooks import (
    DeliveryOutcome,
    DeliveryStats,
    WebhookDelivery,
    WebhookSubscription,
)


class SubscriptionStore(Protocol):
    async def create(
        self,
        *,
        tenant_id: UUID,
        target_url: str,
        event_types: list[str],
        secret: str,
        name: str | None = None,
        description: str | None = None,
    ) -> WebhookSubscription: ...

    async def list_by_tenant(
        self, tenant_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> tuple[list[WebhookSubscription], int]: ...

    async def disable(self, tenant_id: UUID, subscription_id: UUID) -> None: ...

    async def update(
        self, tenant_id: UUID, subscription_id: UUID, updates: dict[str, Any]
    ) -> WebhookSubscription: ...

    async def list_active_matching(
        self, tenant_id: UUID, event_type: str
    ) -> list[WebhookSubscription]: ...

    async def get_many(self, subscription_ids: Sequence[UUID]) -> dict[UUID, WebhookSubscription]: ...


class DeliveryStore(Protocol):
    async def enqueue(
        self,
        *,
        tenant_id: UUID,
        subscription_id: UUID,
        event_type: str,
        payload: dict[str, Any],
        redelivery_of: UUID | None = None,
    ) -> WebhookDelivery: ...

    async def claim_due_attempts(self, now: datetime, limit: int) -> list[WebhookDelivery]: ...

    async def mark_in_flight(self, delivery_id: UUID, now: datetime) -> bool: ...

    async def record_outcome(
        self, delivery_id: UUID, outcome: DeliveryOutcome, now: datetime
    ) -> bool: ...

    async def get(self, tenant_id: UUID, delivery_id: UUID) -> WebhookDelivery: ...

    async def list_by_tenant(
        self,
        tenant_id: UUID,
        *,
        subscription_id: UUID | None = None,
        status: DeliveryStatus | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WebhookDelivery], int]: ...

    async def stats(self, tenant_id: UUID, *, since: datetime) -> DeliveryStats: ...

    async def reclaim_stuck(self, claimed_before: datetime) -> int: ...

    async def redeliver_failed(
        self, tenant_id: UUID, *, subscription_id: UUID | None = None
    ) -> list[WebhookDelivery]: ...
