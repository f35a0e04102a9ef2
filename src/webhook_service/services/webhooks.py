"""Webhook domain service (subscriptions, emitting events, delivery history)."""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, List
from uuid import UUID

import structlog

from webhook_service.core.exceptions import ConflictError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.stores import DeliveryStore, SubscriptionStore
from webhook_service.domain.webhooks import DeliveryStats, WebhookDelivery, WebhookSubscription

logger = structlog.get_logger(__name__)

STATS_WINDOW_DAYS = 7


def generate_secret() -> str:
    return secrets.token_urlsafe(32)


def build_event_payload(
    tenant_id: UUID,
    event_type: str,
    data: dict[str, Any],
    metadata: dict[str, Any] | None = None,
    *,
    occurred_at: datetime | None = None,
) -> dict[str, Any]:
    occurred_at = occurred_at or datetime.now(timezone.utc)
    body: dict[str, Any] = {
        "event": event_type,
        "tenant_id": str(tenant_id),
        "timestamp": occurred_at.isoformat(),
        "data": data,
    }
    if metadata:
        body["metadata"] = metadata
    return body


class WebhookService:
    def __init__(
        self,
        subscription_repository: SubscriptionStore,
        delivery_repository: DeliveryStore,
    ):
        self._subscriptions = subscription_repository
        self._deliveries = delivery_repository

    async def create_subscription(
        self,
        *,
        tenant_id: UUID,
        target_url: str,
        event_types: list[str],
        secret: str | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> WebhookSubscription:
        return await self._subscriptions.create(
            tenant_id=tenant_id,
            target_url=target_url,
            event_types=event_types,
            secret=secret or generate_secret(),
            name=name,
            description=description,
        )

    async def list_subscriptions(
        self, tenant_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> tuple[List[WebhookSubscription], int]:
        return await self._subscriptions.list_by_tenant(tenant_id, limit=limit, offset=offset)

    async def disable_subscription(self, tenant_id: UUID, subscription_id: UUID) -> None:
        await self._subscriptions.disable(tenant_id, subscription_id)

    async def emit(
        self,
        *,
        tenant_id: UUID,
        event_type: str,
        data: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> List[WebhookDelivery]:
        """Enqueue one delivery per active subscription listening to ``event_type``."""
        subs = await self._subscriptions.list_active_matching(tenant_id, event_type)
        body = build_event_payload(tenant_id, event_type, data, metadata)
        deliveries: List[WebhookDelivery] = []
        for sub in subs:
            delivery = await self._deliveries.enqueue(
                tenant_id=tenant_id,
                subscription_id=sub.id,
                event_type=event_type,
                payload=body,
            )
            deliveries.append(delivery)
        logger.info(
            "webhook_event enqueued",
            tenant_id=str(tenant_id),
            event_type=event_type,
            deliveries=len(deliveries),
        )
        return deliveries

    async def list_deliveries(
        self,
        tenant_id: UUID,
        *,
        subscription_id: UUID | None = None,
        status: DeliveryStatus | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[List[WebhookDelivery], int]:
        return await self._deliveries.list_by_tenant(
            tenant_id,
            subscription_id=subscription_id,
            status=status,
            event_type=event_type,
            limit=limit,
            offset=offset,
        )

    async def delivery_stats(self, tenant_id: UUID, *, days: int = STATS_WINDOW_DAYS) -> DeliveryStats:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        return await self._deliveries.stats(tenant_id, since=since)

    async def redeliver(self, tenant_id: UUID, delivery_id: UUID) -> WebhookDelivery:
        """Queue a fresh delivery of a terminally failed one.

        The original record stays ``failed_terminal`` for audit.
        """
        original = await self._deliveries.get(tenant_id, delivery_id)
        if original.status is not DeliveryStatus.FAILED_TERMINAL:
            raise ConflictError("Only failed deliveries can be redelivered")
        return await self._deliveries.enqueue(
            tenant_id=tenant_id,
            subscription_id=original.subscription_id,
            event_type=original.event_type,
            payload=original.payload,
            redelivery_of=original.id,
        )

    async def update_subscription(
        self, tenant_id: UUID, subscription_id: UUID, updates: dict[str, Any]
    ) -> WebhookSubscription:
        sub = await self._subscriptions.update(tenant_id, subscription_id, updates)
        logger.info(
            "webhook_subscription updated",
            tenant_id=str(tenant_id),
            subscription_id=str(subscription_id),
            fields=sorted(updates),
            is_active=sub.is_active,
        )
        return sub

    async def redeliver_failed(
        self, tenant_id: UUID, *, subscription_id: UUID | None = None
    ) -> List[WebhookDelivery]:
        """Queue a fresh delivery for every terminally failed one not already redelivered.

        Failures whose subscription is disabled are left alone.
        """
        deliveries = await self._deliveries.redeliver_failed(tenant_id, subscription_id=subscription_id)
        logger.info(
            "webhook_delivery bulk redeliver",
            tenant_id=str(tenant_id),
            subscription_id=str(subscription_id) if subscription_id else None,
            retried_count=len(deliveries),
        )
        return deliveries
