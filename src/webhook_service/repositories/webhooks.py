"""Webhook repositories (subscriptions + delivery records)."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Sequence, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.webhooks import (
    DeliveryOutcome,
    DeliveryStats,
    RetryableFailure,
    Success,
    TerminalFailure,
    WebhookDelivery,
    WebhookSubscription,
)
from webhook_service.repositories.base import BaseRepository


class WebhookSubscriptionRepository(BaseRepository):
    # Column -> cast appended to its placeholder.
    UPDATABLE_COLUMNS = {
        "target_url": "",
        "event_types": "::text[]",
        "is_active": "",
        "name": "",
        "description": "",
    }

    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookSubscription:
        return WebhookSubscription.model_validate(dict(record))

    async def create(
        self,
        *,
        tenant_id: UUID,
        target_url: str,
        event_types: list[str],
        secret: str,
        name: str | None = None,
        description: str | None = None,
    ) -> WebhookSubscription:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_subscriptions (
                tenant_id, target_url, event_types, secret, name, description, is_active
            )
            VALUES ($1, $2, $3::text[], $4, $5, $6, true)
            RETURNING *
            """,
            tenant_id,
            target_url,
            event_types,
            secret,
            name,
            description,
        )
        assert record is not None
        return self._to_model(record)

    async def list_by_tenant(
        self, tenant_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> Tuple[List[WebhookSubscription], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_subscriptions
            WHERE tenant_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            tenant_id,
            limit,
            offset,
        )
        items: List[WebhookSubscription] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            items.append(WebhookSubscription.model_validate(rec_dict))
        if total is None:
            total = await self._count_by_tenant(tenant_id)
        return items, total

    async def _count_by_tenant(self, tenant_id: UUID) -> int:
        record = await self._fetchrow(
            "SELECT COUNT(*) AS total FROM webhook_subscriptions WHERE tenant_id = $1",
            tenant_id,
        )
        return int(record["total"]) if record else 0

    async def disable(self, tenant_id: UUID, subscription_id: UUID) -> None:
        # Delivery records reference subscriptions, so "delete" only deactivates.
        record = await self._fetchrow(
            """
            UPDATE webhook_subscriptions
            SET is_active = false,
                updated_at = now()
            WHERE tenant_id = $1 AND id = $2
            RETURNING id
            """,
            tenant_id,
            subscription_id,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")

    async def update(
        self, tenant_id: UUID, subscription_id: UUID, updates: dict[str, Any]
    ) -> WebhookSubscription:
        unknown = set(updates) - set(self.UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")
        if not updates:
            raise ValueError("No fields provided for update")

        assignments = []
        values: list[Any] = []
        idx = 1
        for column, value in updates.items():
            assignments.append(f"{column} = ${idx}{self.UPDATABLE_COLUMNS[column]}")
            values.append(value)
            idx += 1
        assignments.append("updated_at = now()")
        values.extend([tenant_id, subscription_id])

        query = f"""
            UPDATE webhook_subscriptions
            SET {', '.join(assignments)}
            WHERE tenant_id = ${idx} AND id = ${idx + 1}
            RETURNING *
        """
        record = await self._fetchrow(query, *values)
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def list_active_matching(
        self, tenant_id: UUID, event_type: str
    ) -> List[WebhookSubscription]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_subscriptions
            WHERE tenant_id = $1
              AND is_active = true
              AND $2 = ANY(event_types)
            ORDER BY created_at ASC
            """,
            tenant_id,
            event_type,
        )
        return [self._to_model(r) for r in records]

    async def get_many(self, subscription_ids: Sequence[UUID]) -> dict[UUID, WebhookSubscription]:
        if not subscription_ids:
            return {}
        records = await self._fetch(
            "SELECT * FROM webhook_subscriptions WHERE id = ANY($1::uuid[])",
            list(subscription_ids),
        )
        subs = [self._to_model(r) for r in records]
        return {sub.id: sub for sub in subs}


class WebhookDeliveryRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookDelivery:
        return WebhookDelivery.model_validate(WebhookDeliveryRepository._normalize(dict(record)))

    @staticmethod
    def _normalize(payload: dict[str, Any]) -> dict[str, Any]:
        value = payload.get("payload")
        if isinstance(value, str):
            payload["payload"] = json.loads(value)
        return payload

    async def enqueue(
        self,
        *,
        tenant_id: UUID,
        subscription_id: UUID,
        event_type: str,
        payload: dict[str, Any],
        redelivery_of: UUID | None = None,
    ) -> WebhookDelivery:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_deliveries (
                tenant_id,
                subscription_id,
                event_type,
                payload,
                redelivery_of,
                status,
                attempt_count,
                next_attempt_at
            )
            VALUES ($1, $2, $3, $4::jsonb, $5, 'pending', 0, now())
            RETURNING *
            """,
            tenant_id,
            subscription_id,
            event_type,
            json.dumps(payload),
            redelivery_of,
        )
        assert record is not None
        return self._to_model(record)

    async def claim_due_attempts(self, now: datetime, limit: int) -> List[WebhookDelivery]:
        """Return due deliveries in dispatch order.

        This only selects candidates; each one still has to be won through
        :meth:`mark_in_flight` before it may be dispatched.
        """
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_deliveries
            WHERE status IN ('pending', 'failed_retryable')
              AND next_attempt_at <= $1
            ORDER BY next_attempt_at ASC, id ASC
            LIMIT $2
            """,
            now,
            limit,
        )
        return [self._to_model(r) for r in records]

    async def mark_in_flight(self, delivery_id: UUID, now: datetime) -> bool:
        """Conditionally move a due delivery to ``in_flight``.

        Returns ``False`` when another pass already claimed it or it is no
        longer due.
        """
        record = await self._fetchrow(
            """
            UPDATE webhook_deliveries
            SET status = 'in_flight',
                claimed_at = $2,
                updated_at = now()
            WHERE id = $1
              AND status IN ('pending', 'failed_retryable')
              AND next_attempt_at <= $2
            RETURNING id
            """,
            delivery_id,
            now,
        )
        return record is not None

    async def record_outcome(
        self, delivery_id: UUID, outcome: DeliveryOutcome, now: datetime
    ) -> bool:
        """Apply an attempt outcome; ``False`` when the row is no longer ``in_flight``."""
        if isinstance(outcome, Success):
            status, next_at, error, delivered_at = DeliveryStatus.SUCCEEDED, None, None, now
        elif isinstance(outcome, RetryableFailure):
            status, next_at, error, delivered_at = (
                DeliveryStatus.FAILED_RETRYABLE,
                outcome.next_attempt_at,
                outcome.error,
                None,
            )
        elif isinstance(outcome, TerminalFailure):
            status, next_at, error, delivered_at = DeliveryStatus.FAILED_TERMINAL, None, outcome.error, None
        else:
            raise TypeError(f"Unsupported outcome: {outcome!r}")

        result = await self._execute(
            """
            UPDATE webhook_deliveries
            SET status = $2,
                attempt_count = attempt_count + 1,
                last_attempted_at = $3,
                next_attempt_at = $4,
                last_error = $5,
                last_response_status = $6,
                delivered_at = $7,
                claimed_at = NULL,
                updated_at = now()
            WHERE id = $1
              AND status = 'in_flight'
            """,
            delivery_id,
            status.value,
            now,
            next_at,
            error,
            outcome.status_code,
            delivered_at,
        )
        return self._affected_rows(result) > 0

    async def get(self, tenant_id: UUID, delivery_id: UUID) -> WebhookDelivery:
        record = await self._fetchrow(
            "SELECT * FROM webhook_deliveries WHERE tenant_id = $1 AND id = $2",
            tenant_id,
            delivery_id,
        )
        if record is None:
            raise NotFoundError("Webhook delivery not found")
        return self._to_model(record)

    async def redeliver_failed(
        self, tenant_id: UUID, *, subscription_id: UUID | None = None
    ) -> List[WebhookDelivery]:
        """Insert one ``pending`` copy of each ``failed_terminal`` delivery.

        Originals that already have a redelivery, or whose subscription is
        disabled, are skipped. The originals themselves are not touched.
        """
        records = await self._fetch(
            """
            INSERT INTO webhook_deliveries (
                tenant_id,
                subscription_id,
                event_type,
                payload,
                redelivery_of,
                status,
                attempt_count,
                next_attempt_at
            )
            SELECT d.tenant_id, d.subscription_id, d.event_type, d.payload, d.id,
                   'pending', 0, now()
            FROM webhook_deliveries d
            JOIN webhook_subscriptions s
              ON s.id = d.subscription_id AND s.is_active = true
            WHERE d.tenant_id = $1
              AND d.status = 'failed_terminal'
              AND ($2::uuid IS NULL OR d.subscription_id = $2::uuid)
              AND NOT EXISTS (
                  SELECT 1 FROM webhook_deliveries r WHERE r.redelivery_of = d.id
              )
            RETURNING *
            """,
            tenant_id,
            subscription_id,
        )
        return [self._to_model(r) for r in records]

    async def list_by_tenant(
        self,
        tenant_id: UUID,
        *,
        subscription_id: UUID | None = None,
        status: DeliveryStatus | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookDelivery], int]:
        where = ["tenant_id = $1"]
        values: list[Any] = [tenant_id]
        idx = 2
        if subscription_id is not None:
            where.append(f"subscription_id = ${idx}")
            values.append(subscription_id)
            idx += 1
        if status is not None:
            where.append(f"status = ${idx}")
            values.append(status.value)
            idx += 1
        if event_type is not None:
            where.append(f"event_type = ${idx}")
            values.append(event_type)
            idx += 1
        where_sql = " AND ".join(where)
        query = f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_deliveries
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """
        records = await self._fetch(query, *values, limit, offset)
        items: List[WebhookDelivery] = []
        total = 0
        for rec in records:
            rec_dict = dict(rec)
            total = int(rec_dict.pop("total_count", 0) or 0)
            items.append(WebhookDelivery.model_validate(self._normalize(rec_dict)))
        if not records and offset:
            total = int(
                await self._fetchval(
                    f"SELECT COUNT(*) FROM webhook_deliveries WHERE {where_sql}", *values
                )
            )
        return items, total

    async def stats(self, tenant_id: UUID, *, since: datetime) -> DeliveryStats:
        record = await self._fetchrow(
            """
            SELECT COUNT(*) AS total_deliveries,
                   COUNT(*) FILTER (WHERE status = 'succeeded') AS successful_deliveries,
                   COUNT(*) FILTER (WHERE status = 'failed_terminal') AS failed_deliveries,
                   COUNT(*) FILTER (
                       WHERE status IN ('pending', 'in_flight', 'failed_retryable')
                   ) AS pending_deliveries
            FROM webhook_deliveries
            WHERE tenant_id = $1
              AND created_at >= $2
            """,
            tenant_id,
            since,
        )
        if record is None:
            return DeliveryStats()
        total = int(record["total_deliveries"])
        succeeded = int(record["successful_deliveries"])
        return DeliveryStats(
            total_deliveries=total,
            successful_deliveries=succeeded,
            failed_deliveries=int(record["failed_deliveries"]),
            pending_deliveries=int(record["pending_deliveries"]),
            success_rate=round(succeeded * 100 / total, 2) if total else 0.0,
        )

    async def reclaim_stuck(self, claimed_before: datetime) -> int:
        """Release deliveries left ``in_flight`` by a crashed pass.

        They become due immediately; never-attempted ones go back to ``pending``.
        Returns the number of reclaimed rows.
        """
        result = await self._execute(
            """
            UPDATE webhook_deliveries
            SET status = CASE WHEN attempt_count = 0 THEN 'pending' ELSE 'failed_retryable' END,
                claimed_at = NULL,
                next_attempt_at = now(),
                updated_at = now()
            WHERE status = 'in_flight'
              AND claimed_at < $1
            """,
            claimed_before,
        )
        return self._affected_rows(result)
