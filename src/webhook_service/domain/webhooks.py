"""Webhook domain primitives."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Union
from uuid import UUID

from pydantic import BaseModel, Field

from webhook_service.domain.enums import DeliveryStatus, RetryAction


class WebhookSubscription(BaseModel):
    id: UUID
    tenant_id: UUID
    target_url: str
    secret: str
    event_types: list[str] = Field(default_factory=list)
    is_active: bool = True
    name: str | None = None
    description: str | None = None
    created_at: datetime
    updated_at: datetime

    def public_dump(self) -> dict[str, Any]:
        """JSON view with the signing secret masked."""
        payload = self.model_dump(mode="json")
        payload["secret"] = "***"
        return payload


class WebhookDelivery(BaseModel):
    id: UUID
    tenant_id: UUID
    subscription_id: UUID
    event_type: str
    payload: dict[str, Any]
    status: DeliveryStatus
    attempt_count: int = Field(ge=0)
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    last_attempted_at: datetime | None = None
    last_response_status: int | None = None
    claimed_at: datetime | None = None
    delivered_at: datetime | None = None
    redelivery_of: UUID | None = None
    created_at: datetime
    updated_at: datetime


class DeliveryStats(BaseModel):
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    pending_deliveries: int = 0
    success_rate: float = 0.0


@dataclass(frozen=True)
class RetryConfig:
    """Knobs for the retry pass. Built from settings and passed in explicitly."""

    max_attempts: int = 8
    base_delay_seconds: float = 30.0
    max_delay_seconds: float = 86400.0
    jitter_ratio: float = 0.2
    request_timeout_seconds: float = 10.0
    dispatch_concurrency: int = 10
    batch_size: int = 100
    pass_budget_seconds: float = 50.0
    response_body_limit: int = 1000
    user_agent: str = "webhook-service/1.0"


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a single HTTP delivery attempt."""

    success: bool
    retryable: bool = False
    status_code: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    next_attempt_at: datetime | None = None


@dataclass(frozen=True)
class Success:
    status_code: int | None = None


@dataclass(frozen=True)
class RetryableFailure:
    error: str
    next_attempt_at: datetime
    status_code: int | None = None


@dataclass(frozen=True)
class TerminalFailure:
    error: str
    status_code: int | None = None


DeliveryOutcome = Union[Success, RetryableFailure, TerminalFailure]


@dataclass
class PassSummary:
    """Counters reported by one retry pass."""

    claim_count: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    given_up: int = 0
    skipped: int = 0
    errors: int = 0
    already_running: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
