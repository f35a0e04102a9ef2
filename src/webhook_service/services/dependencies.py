"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
from uuid import UUID

import structlog
from aiohttp import ClientSession, ClientTimeout, web

from webhook_service.db.pool import get_pool
from webhook_service.domain.enums import TenantRole
from webhook_service.domain.stores import DeliveryStore, SubscriptionStore
from webhook_service.repositories import (
    WebhookDeliveryRepository,
    WebhookSubscriptionRepository,
)
from webhook_service.services.retry_policy import RetryPolicy
from webhook_service.services.retry_scheduler import RetryScheduler
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import settings
from webhook_service.webhooks_dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)

TService = TypeVar("TService")

STORES_KEY = "webhook_stores"
RETRY_CONFIG_KEY = "webhook_retry_config"
_HTTP_SESSION_KEY = "webhook_http_session"
_SCHEDULER_KEY = "webhook_retry_scheduler"
_WEBHOOK_SERVICE_KEY = "webhook_service"

USER_ID_HEADER = "X-User-Id"
TENANT_ID_HEADER = "X-Tenant-Id"
TENANT_ROLE_HEADER = "X-Tenant-Role"

WRITE_ROLES = (TenantRole.OWNER.value, TenantRole.ADMIN.value)


@dataclass
class WebhookStores:
    subscriptions: SubscriptionStore
    deliveries: DeliveryStore


@dataclass
class UserContext:
    user_id: UUID
    tenant_id: UUID
    role: str | None


def require_current_user(request: web.Request) -> UserContext:
    """Auth hook: identity and tenant come from headers set by the API gateway."""
    user_header = request.headers.get(USER_ID_HEADER)
    if user_header is None:
        raise web.HTTPUnauthorized(reason=f"Header {USER_ID_HEADER} is required")
    tenant_header = request.headers.get(TENANT_ID_HEADER)
    if tenant_header is None:
        raise web.HTTPBadRequest(text=f"Header {TENANT_ID_HEADER} is required")
    try:
        user_id = UUID(user_header)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {USER_ID_HEADER}") from exc
    try:
        tenant_id = UUID(tenant_header)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {TENANT_ID_HEADER}") from exc
    return UserContext(
        user_id=user_id,
        tenant_id=tenant_id,
        role=request.headers.get(TENANT_ROLE_HEADER),
    )


def ensure_tenant_role(user: UserContext, require_role: tuple[str, ...] | None = None) -> None:
    if user.role is None:
        raise web.HTTPForbidden(reason="User does not belong to tenant")
    if require_role and user.role not in require_role:
        raise web.HTTPForbidden(reason="Insufficient tenant role")


async def get_stores(app: web.Application) -> WebhookStores:
    """Stores injected at app creation win; otherwise PostgreSQL repositories."""
    stores = app.get(STORES_KEY)
    if stores is not None:
        return stores
    pool = await get_pool()
    return WebhookStores(
        subscriptions=WebhookSubscriptionRepository(pool),
        deliveries=WebhookDeliveryRepository(pool),
    )


async def _get_or_create_service(
    request: web.Request,
    cache_key: str,
    builder: Callable[[web.Request], Awaitable[TService]],
) -> TService:
    service = request.get(cache_key)
    if service is None:
        service = await builder(request)
        request[cache_key] = service
    return service


async def get_webhook_service(request: web.Request) -> WebhookService:
    async def builder(req: web.Request) -> WebhookService:
        stores = await get_stores(req.app)
        return WebhookService(stores.subscriptions, stores.deliveries)

    return await _get_or_create_service(request, _WEBHOOK_SERVICE_KEY, builder)


def get_retry_scheduler(app: web.Application) -> RetryScheduler:
    scheduler = app.get(_SCHEDULER_KEY)
    if scheduler is None:
        raise RuntimeError("Retry scheduler not started. Register start_retry_scheduler on startup.")
    return scheduler


async def start_retry_scheduler(app: web.Application) -> None:
    """Create the shared HTTP session and the per-process scheduler."""
    config = app.get(RETRY_CONFIG_KEY) or settings.retry_config()
    session = ClientSession(timeout=ClientTimeout(total=config.request_timeout_seconds))
    app[_HTTP_SESSION_KEY] = session
    stores = await get_stores(app)
    app[_SCHEDULER_KEY] = RetryScheduler(
        stores.deliveries,
        stores.subscriptions,
        WebhookDispatcher(session, config),
        RetryPolicy(config),
        config,
    )
    logger.info(
        "retry_scheduler started",
        max_attempts=config.max_attempts,
        dispatch_concurrency=config.dispatch_concurrency,
        batch_size=config.batch_size,
    )


async def stop_retry_scheduler(app: web.Application) -> None:
    session = app.get(_HTTP_SESSION_KEY)
    if session is not None:
        await session.close()
