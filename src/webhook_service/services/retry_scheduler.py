"""Retry scheduler: one bounded pass over due webhook deliveries.

A pass claims due deliveries from the store, dispatches them with bounded
concurrency and records each outcome. Exclusivity across processes comes from
the store's conditional ``mark_in_flight``; nothing here holds a lock while a
request is outstanding.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Protocol, cast

import structlog

from webhook_service.core.exceptions import ClaimConflict, StoreUnavailableError
from webhook_service.domain.enums import RetryAction
from webhook_service.domain.stores import DeliveryStore, SubscriptionStore
from webhook_service.domain.webhooks import (
    DeliveryOutcome,
    DispatchResult,
    PassSummary,
    RetryableFailure,
    RetryConfig,
    Success,
    TerminalFailure,
    WebhookDelivery,
    WebhookSubscription,
)
from webhook_service.services.retry_policy import RetryPolicy

logger = structlog.get_logger(__name__)


class Dispatcher(Protocol):
    async def deliver(
        self, delivery: WebhookDelivery, subscription: WebhookSubscription | None
    ) -> DispatchResult: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetryScheduler:
    def __init__(
        self,
        deliveries: DeliveryStore,
        subscriptions: SubscriptionStore,
        dispatcher: Dispatcher,
        policy: RetryPolicy,
        config: RetryConfig,
        *,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] | None = None,
    ):
        self._deliveries = deliveries
        self._subscriptions = subscriptions
        self._dispatcher = dispatcher
        self._policy = policy
        self._config = config
        self._clock = clock
        self._monotonic = monotonic
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_pass(self, now: datetime | None = None) -> PassSummary:
        """Process one batch of deliveries due at ``now`` (default: the clock).

        Raises :class:`StoreUnavailableError` only when the store itself
        fails; individual delivery failures end up in the summary.
        """
        if self._running:
            logger.warning("webhook_retry_pass skipped, previous pass still running")
            return PassSummary(already_running=True)

        self._running = True
        try:
            summary = await self._run(now or self._clock())
        finally:
            self._running = False

        logger.info("webhook_retry_pass completed", **summary.as_dict())
        return summary

    async def _run(self, now: datetime) -> PassSummary:
        monotonic = self._monotonic or asyncio.get_running_loop().time
        deadline = monotonic() + self._config.pass_budget_seconds
        summary = PassSummary()

        due = await self._deliveries.claim_due_attempts(now, self._config.batch_size)
        if not due:
            return summary
        subscriptions = await self._subscriptions.get_many(
            list(dict.fromkeys(d.subscription_id for d in due))
        )

        semaphore = asyncio.Semaphore(max(1, self._config.dispatch_concurrency))

        async def worker(delivery: WebhookDelivery) -> None:
            async with semaphore:
                if monotonic() >= deadline:
                    # Out of budget: leave it due for the next pass.
                    summary.skipped += 1
                    return
                try:
                    await self._process(
                        delivery, subscriptions.get(delivery.subscription_id), now, summary
                    )
                except ClaimConflict:
                    summary.skipped += 1

        results = await asyncio.gather(*(worker(d) for d in due), return_exceptions=True)
        for delivery, result in zip(due, results):
            if isinstance(result, StoreUnavailableError):
                raise result
            if isinstance(result, BaseException):
                summary.errors += 1
                logger.error(
                    "webhook_delivery processing failed",
                    delivery_id=str(delivery.id),
                    error=str(result),
                    error_type=type(result).__name__,
                )
        return summary

    async def _process(
        self,
        delivery: WebhookDelivery,
        subscription: WebhookSubscription | None,
        claimed_at: datetime,
        summary: PassSummary,
    ) -> None:
        if not await self._deliveries.mark_in_flight(delivery.id, claimed_at):
            raise ClaimConflict(str(delivery.id))
        summary.claim_count += 1

        result = await self._dispatcher.deliver(delivery, subscription)
        now = self._clock()
        decision = self._policy.decide(delivery, result, now=now)

        outcome: DeliveryOutcome
        if decision.action is RetryAction.DELIVERED:
            outcome = Success(status_code=result.status_code)
            summary.succeeded += 1
        elif decision.action is RetryAction.RESCHEDULE:
            outcome = RetryableFailure(
                error=result.error or "Delivery failed",
                next_attempt_at=cast(datetime, decision.next_attempt_at),
                status_code=result.status_code,
            )
            summary.rescheduled += 1
        else:
            outcome = TerminalFailure(
                error=result.error or "Delivery failed",
                status_code=result.status_code,
            )
            summary.given_up += 1

        if decision.action is not RetryAction.DELIVERED:
            logger.warning(
                "webhook_delivery failed",
                delivery_id=str(delivery.id),
                subscription_id=str(delivery.subscription_id),
                attempt=delivery.attempt_count + 1,
                action=decision.action.value,
                status_code=result.status_code,
                error=result.error,
            )
        if not await self._deliveries.record_outcome(delivery.id, outcome, now):
            # Reclaimed or otherwise moved on while the request was outstanding.
            logger.warning(
                "webhook_delivery outcome discarded, no longer in_flight",
                delivery_id=str(delivery.id),
                attempt=delivery.attempt_count + 1,
                action=decision.action.value,
                status_code=result.status_code,
            )
