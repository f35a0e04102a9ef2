"""Test helpers: in-memory stores, a controllable clock and request headers."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Sequence
from uuid import UUID, uuid4

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import CLAIMABLE_STATUSES, DeliveryStatus
from webhook_service.domain.webhooks import (
    DeliveryOutcome,
    DeliveryStats,
    RetryableFailure,
    Success,
    TerminalFailure,
    WebhookDelivery,
    WebhookSubscription,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_headers(tenant_id: UUID, *, role: str | None = "owner", user_id: UUID | None = None) -> dict[str, str]:
    headers = {
        "X-User-Id": str(user_id or uuid4()),
        "X-Tenant-Id": str(tenant_id),
    }
    if role is not None:
        headers["X-Tenant-Role"] = role
    return headers


class _FailureInjection:
    def __init__(self) -> None:
        self.fail_on: dict[str, Exception] = {}

    def _check(self, method: str) -> None:
        exc = self.fail_on.get(method)
        if exc is not None:
            raise exc


class InMemorySubscriptionStore(_FailureInjection):
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        super().__init__()
        self._clock = clock
        self.records: dict[UUID, WebhookSubscription] = {}

    def add(self, tenant_id: UUID, target_url: str, *, event_types: Sequence[str] = ("lead.created",),
            secret: str = "s" * 32, is_active: bool = True) -> WebhookSubscription:
        now = self._clock()
        sub = WebhookSubscription(
            id=uuid4(),
            tenant_id=tenant_id,
            target_url=target_url,
            secret=secret,
            event_types=list(event_types),
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self.records[sub.id] = sub
        return sub

    async def create(self, *, tenant_id, target_url, event_types, secret, name=None, description=None):
        self._check("create")
        sub = self.add(tenant_id, target_url, event_types=event_types, secret=secret)
        sub = sub.model_copy(update={"name": name, "description": description})
        self.records[sub.id] = sub
        return sub

    async def list_by_tenant(self, tenant_id, *, limit=50, offset=0):
        self._check("list_by_tenant")
        items = sorted(
            (s for s in self.records.values() if s.tenant_id == tenant_id),
            key=lambda s: s.created_at,
            reverse=True,
        )
        return items[offset:offset + limit], len(items)

    async def disable(self, tenant_id, subscription_id):
        self._check("disable")
        sub = self.records.get(subscription_id)
        if sub is None or sub.tenant_id != tenant_id:
            raise NotFoundError("Webhook subscription not found")
        self.records[sub.id] = sub.model_copy(update={"is_active": False, "updated_at": self._clock()})

    async def update(self, tenant_id, subscription_id, updates):
        self._check("update")
        if not updates:
            raise ValueError("No fields provided for update")
        sub = self.records.get(subscription_id)
        if sub is None or sub.tenant_id != tenant_id:
            raise NotFoundError("Webhook subscription not found")
        sub = sub.model_copy(update={**updates, "updated_at": self._clock()})
        self.records[sub.id] = sub
        return sub

    async def list_active_matching(self, tenant_id, event_type):
        self._check("list_active_matching")
        return [
            s for s in self.records.values()
            if s.tenant_id == tenant_id and s.is_active and event_type in s.event_types
        ]

    async def get_many(self, subscription_ids):
        self._check("get_many")
        return {i: self.records[i] for i in subscription_ids if i in self.records}


class InMemoryDeliveryStore(_FailureInjection):
    """Mirrors the conditional-update semantics of the PostgreSQL repository."""

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        subscriptions: InMemorySubscriptionStore | None = None,
    ):
        super().__init__()
        self._clock = clock
        self._subscriptions = subscriptions
        self.records: dict[UUID, WebhookDelivery] = {}

    def add(self, sub: WebhookSubscription, *, status: DeliveryStatus = DeliveryStatus.PENDING,
            attempt_count: int = 0, next_attempt_at: datetime | None = None,
            payload: dict[str, Any] | None = None, event_type: str = "lead.created") -> WebhookDelivery:
        now = self._clock()
        delivery = WebhookDelivery(
            id=uuid4(),
            tenant_id=sub.tenant_id,
            subscription_id=sub.id,
            event_type=event_type,
            payload=payload if payload is not None else {"event": event_type, "data": {"id": 1}},
            status=status,
            attempt_count=attempt_count,
            next_attempt_at=None if status.is_terminal else (next_attempt_at or now),
            created_at=now,
            updated_at=now,
        )
        self.records[delivery.id] = delivery
        return delivery

    def _update(self, delivery_id: UUID, **changes: Any) -> None:
        current = self.records[delivery_id]
        self.records[delivery_id] = current.model_copy(update={**changes, "updated_at": self._clock()})

    async def enqueue(self, *, tenant_id, subscription_id, event_type, payload, redelivery_of=None):
        self._check("enqueue")
        now = self._clock()
        delivery = WebhookDelivery(
            id=uuid4(),
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            event_type=event_type,
            payload=payload,
            status=DeliveryStatus.PENDING,
            attempt_count=0,
            next_attempt_at=now,
            redelivery_of=redelivery_of,
            created_at=now,
            updated_at=now,
        )
        self.records[delivery.id] = delivery
        return delivery

    def _is_due(self, delivery: WebhookDelivery, now: datetime) -> bool:
        return (
            delivery.status in CLAIMABLE_STATUSES
            and delivery.next_attempt_at is not None
            and delivery.next_attempt_at <= now
        )

    async def claim_due_attempts(self, now, limit):
        self._check("claim_due_attempts")
        due = [d for d in self.records.values() if self._is_due(d, now)]
        due.sort(key=lambda d: (d.next_attempt_at, d.id))
        return [d.model_copy() for d in due[:limit]]

    async def mark_in_flight(self, delivery_id, now):
        self._check("mark_in_flight")
        delivery = self.records.get(delivery_id)
        if delivery is None or not self._is_due(delivery, now):
            return False
        self._update(delivery_id, status=DeliveryStatus.IN_FLIGHT, claimed_at=now)
        return True

    async def record_outcome(self, delivery_id, outcome: DeliveryOutcome, now):
        self._check("record_outcome")
        delivery = self.records.get(delivery_id)
        if delivery is None or delivery.status is not DeliveryStatus.IN_FLIGHT:
            return False
        common = {
            "attempt_count": delivery.attempt_count + 1,
            "last_attempted_at": now,
            "last_response_status": outcome.status_code,
            "claimed_at": None,
        }
        if isinstance(outcome, Success):
            self._update(delivery_id, status=DeliveryStatus.SUCCEEDED, next_attempt_at=None,
                         last_error=None, delivered_at=now, **common)
        elif isinstance(outcome, RetryableFailure):
            self._update(delivery_id, status=DeliveryStatus.FAILED_RETRYABLE,
                         next_attempt_at=outcome.next_attempt_at, last_error=outcome.error, **common)
        elif isinstance(outcome, TerminalFailure):
            self._update(delivery_id, status=DeliveryStatus.FAILED_TERMINAL, next_attempt_at=None,
                         last_error=outcome.error, **common)
        return True

    async def get(self, tenant_id, delivery_id):
        self._check("get")
        delivery = self.records.get(delivery_id)
        if delivery is None or delivery.tenant_id != tenant_id:
            raise NotFoundError("Webhook delivery not found")
        return delivery

    async def list_by_tenant(self, tenant_id, *, subscription_id=None, status=None, event_type=None,
                             limit=50, offset=0):
        self._check("list_by_tenant")
        items = [
            d for d in self.records.values()
            if d.tenant_id == tenant_id
            and (subscription_id is None or d.subscription_id == subscription_id)
            and (status is None or d.status is status)
            and (event_type is None or d.event_type == event_type)
        ]
        items.sort(key=lambda d: d.created_at, reverse=True)
        return items[offset:offset + limit], len(items)

    async def stats(self, tenant_id, *, since):
        self._check("stats")
        items = [d for d in self.records.values() if d.tenant_id == tenant_id and d.created_at >= since]
        total = len(items)
        succeeded = sum(1 for d in items if d.status is DeliveryStatus.SUCCEEDED)
        return DeliveryStats(
            total_deliveries=total,
            successful_deliveries=succeeded,
            failed_deliveries=sum(1 for d in items if d.status is DeliveryStatus.FAILED_TERMINAL),
            pending_deliveries=sum(1 for d in items if not d.status.is_terminal),
            success_rate=round(succeeded * 100 / total, 2) if total else 0.0,
        )

    async def reclaim_stuck(self, claimed_before):
        self._check("reclaim_stuck")
        now = self._clock()
        reclaimed = 0
        for delivery in list(self.records.values()):
            if delivery.status is DeliveryStatus.IN_FLIGHT and delivery.claimed_at and delivery.claimed_at < claimed_before:
                status = DeliveryStatus.PENDING if delivery.attempt_count == 0 else DeliveryStatus.FAILED_RETRYABLE
                self._update(delivery.id, status=status, claimed_at=None, next_attempt_at=now)
                reclaimed += 1
        return reclaimed

    async def redeliver_failed(self, tenant_id, *, subscription_id=None):
        self._check("redeliver_failed")
        already = {d.redelivery_of for d in self.records.values() if d.redelivery_of}
        candidates = [
            d for d in self.records.values()
            if d.tenant_id == tenant_id
            and d.status is DeliveryStatus.FAILED_TERMINAL
            and (subscription_id is None or d.subscription_id == subscription_id)
            and d.id not in already
            and self._subscription_active(d.subscription_id)
        ]
        return [
            await self.enqueue(tenant_id=d.tenant_id, subscription_id=d.subscription_id,
                               event_type=d.event_type, payload=d.payload, redelivery_of=d.id)
            for d in candidates
        ]

    def _subscription_active(self, subscription_id: UUID) -> bool:
        if self._subscriptions is None:
            return True
        sub = self._subscriptions.records.get(subscription_id)
        return sub is not None and sub.is_active
