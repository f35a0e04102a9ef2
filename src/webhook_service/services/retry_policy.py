"""Retry policy: backoff schedule and give-up decisions for webhook deliveries."""
from __future__ import annotations

import random
from datetime import datetime, timedelta

from webhook_service.domain.enums import RetryAction
from webhook_service.domain.webhooks import (
    DispatchResult,
    RetryConfig,
    RetryDecision,
    WebhookDelivery,
)

# Client errors that still mean "try again later".
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})

_MAX_EXPONENT = 32


def is_retryable_status(status: int) -> bool:
    """Classify a non-2xx HTTP status.

    5xx, 408 and 429 are retryable. Other 4xx and 3xx (redirects are never
    followed) are permanent rejections.
    """
    if status in RETRYABLE_CLIENT_STATUSES:
        return True
    if 300 <= status < 500:
        return False
    return True


class RetryPolicy:
    """Pure decision function over an attempt and its dispatch result.

    ``attempt_count`` used for the backoff is the count *including* the
    attempt that just finished, so the first retry waits ``base_delay``.
    """

    def __init__(self, config: RetryConfig, *, rng: random.Random | None = None):
        self._config = config
        self._rng = rng or random.Random()

    @property
    def config(self) -> RetryConfig:
        return self._config

    def backoff_seconds(self, attempt_count: int) -> float:
        exponent = min(max(attempt_count, 1) - 1, _MAX_EXPONENT)
        return min(self._config.max_delay_seconds, self._config.base_delay_seconds * 2**exponent)

    def next_delay_seconds(self, attempt_count: int) -> float:
        delay = self.backoff_seconds(attempt_count)
        return delay + self._rng.uniform(0, delay * self._config.jitter_ratio)

    def decide(
        self, delivery: WebhookDelivery, result: DispatchResult, *, now: datetime
    ) -> RetryDecision:
        if result.success:
            return RetryDecision(action=RetryAction.DELIVERED)
        if not result.retryable:
            return RetryDecision(action=RetryAction.GIVE_UP)

        attempts = delivery.attempt_count + 1
        if attempts >= self._config.max_attempts:
            return RetryDecision(action=RetryAction.GIVE_UP)

        next_at = now + timedelta(seconds=self.next_delay_seconds(attempts))
        return RetryDecision(action=RetryAction.RESCHEDULE, next_attempt_at=next_at)
