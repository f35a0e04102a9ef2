"""Webhook dispatcher: one signed HTTP POST per delivery attempt."""
from __future__ import annotations

import asyncio
import hmac
import json
from datetime import datetime, timezone
from hashlib import sha256
from typing import Any, Callable

import structlog
from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout
from yarl import URL

from webhook_service.core.exceptions import (
    DeliveryError,
    DeliveryPermanentError,
    DeliveryTransientError,
)
from webhook_service.domain.webhooks import (
    DispatchResult,
    RetryConfig,
    WebhookDelivery,
    WebhookSubscription,
)
from webhook_service.services.retry_policy import is_retryable_status

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"


def serialize_payload(payload: dict[str, Any]) -> bytes:
    """Canonical body encoding; receivers verify the signature over these bytes."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(secret: str, body_bytes: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body_bytes, sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body_bytes: bytes, signature: str) -> bool:
    """Constant-time check of an ``X-Webhook-Signature`` value."""
    return hmac.compare_digest(sign_payload(secret, body_bytes), signature)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookDispatcher:
    def __init__(
        self,
        session: ClientSession,
        config: RetryConfig,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session = session
        self._config = config
        self._clock = clock

    async def deliver(
        self, delivery: WebhookDelivery, subscription: WebhookSubscription | None
    ) -> DispatchResult:
        try:
            status = await self._send(delivery, subscription)
        except DeliveryTransientError as exc:
            return DispatchResult(
                success=False, retryable=True, status_code=exc.status_code, error=str(exc)
            )
        except DeliveryPermanentError as exc:
            return DispatchResult(
                success=False, retryable=False, status_code=exc.status_code, error=str(exc)
            )
        return DispatchResult(success=True, status_code=status)

    def _validate_target(self, subscription: WebhookSubscription | None) -> tuple[URL, str]:
        """Return the target URL and signing secret of a deliverable subscription."""
        if subscription is None:
            raise DeliveryPermanentError("Webhook subscription not found")
        if not subscription.is_active:
            raise DeliveryPermanentError("Webhook subscription is disabled")
        try:
            url = URL(subscription.target_url)
        except (TypeError, ValueError) as exc:
            raise DeliveryPermanentError(f"Invalid target URL: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise DeliveryPermanentError(f"Invalid target URL: {subscription.target_url}")
        return url, subscription.secret

    async def _send(
        self, delivery: WebhookDelivery, subscription: WebhookSubscription | None
    ) -> int:
        url, secret = self._validate_target(subscription)
        body_bytes = serialize_payload(delivery.payload)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
            EVENT_HEADER: delivery.event_type,
            DELIVERY_ID_HEADER: str(delivery.id),
            TIMESTAMP_HEADER: self._clock().isoformat(),
            SIGNATURE_HEADER: sign_payload(secret, body_bytes),
        }
        timeout_s = self._config.request_timeout_seconds
        try:
            async with self._session.post(
                url,
                data=body_bytes,
                headers=headers,
                timeout=ClientTimeout(total=timeout_s),
                allow_redirects=False,
            ) as resp:
                if 200 <= resp.status < 300:
                    return resp.status
                # The status alone decides the class; the body is only detail.
                error_cls: type[DeliveryError] = (
                    DeliveryTransientError if is_retryable_status(resp.status) else DeliveryPermanentError
                )
                excerpt = await self._read_excerpt(resp)
                raise error_cls(f"HTTP {resp.status}: {excerpt}", status_code=resp.status)
        except asyncio.TimeoutError as exc:
            raise DeliveryTransientError(f"Timed out after {timeout_s:g}s") from exc
        except ClientError as exc:
            raise DeliveryTransientError(f"Connection error: {exc}") from exc

    async def _read_excerpt(self, resp: ClientResponse) -> str:
        """Read at most ``response_body_limit`` bytes of an error response."""
        try:
            raw = await resp.content.read(self._config.response_body_limit)
        except (asyncio.TimeoutError, ClientError) as exc:
            logger.info(
                "webhook_delivery error body unavailable",
                status_code=resp.status,
                error_type=type(exc).__name__,
            )
            return "<body unavailable>"
        return raw.decode("utf-8", errors="replace")
