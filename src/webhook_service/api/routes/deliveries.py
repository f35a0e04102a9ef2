"""Webhook delivery history and redelivery endpoints."""
from __future__ import annotations

from aiohttp import web

from webhook_service.api.utils import paginated_response, pagination_params, parse_uuid
from webhook_service.core.exceptions import ConflictError, NotFoundError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.services.dependencies import (
    WRITE_ROLES,
    ensure_tenant_role,
    get_webhook_service,
    require_current_user,
)

routes = web.RouteTableDef()


@routes.get("/api/v1/webhooks/deliveries")
async def list_deliveries(request: web.Request):
    user = require_current_user(request)
    ensure_tenant_role(user)
    query = request.rel_url.query

    subscription_id = None
    if "subscription_id" in query:
        subscription_id = parse_uuid(query["subscription_id"], "subscription_id")
    status = None
    if "status" in query:
        try:
            status = DeliveryStatus(query["status"])
        except ValueError as exc:
            raise web.HTTPBadRequest(text="Invalid status") from exc
    event_type = query.get("event_type") or None

    service = await get_webhook_service(request)
    limit, offset = pagination_params(request)
    items, total = await service.list_deliveries(
        user.tenant_id,
        subscription_id=subscription_id,
        status=status,
        event_type=event_type,
        limit=limit,
        offset=offset,
    )
    stats = await service.delivery_stats(user.tenant_id)
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items],
        limit=limit,
        offset=offset,
        key="deliveries",
        total=total,
    )
    payload["statistics"] = stats.model_dump(mode="json")
    return web.json_response(payload)


@routes.post("/api/v1/webhooks/deliveries/{delivery_id}/redeliver")
async def redeliver(request: web.Request):
    user = require_current_user(request)
    ensure_tenant_role(user, WRITE_ROLES)
    delivery_id = parse_uuid(request.match_info["delivery_id"], "delivery_id")
    service = await get_webhook_service(request)
    try:
        delivery = await service.redeliver(user.tenant_id, delivery_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ConflictError as exc:
        raise web.HTTPConflict(text=str(exc)) from exc
    return web.json_response(delivery.model_dump(mode="json"), status=201)


@routes.post("/api/v1/webhooks/deliveries/redeliver")
async def redeliver_failed(request: web.Request):
    user = require_current_user(request)
    ensure_tenant_role(user, WRITE_ROLES)
    query = request.rel_url.query
    subscription_id = None
    if "subscription_id" in query:
        subscription_id = parse_uuid(query["subscription_id"], "subscription_id")
    service = await get_webhook_service(request)
    deliveries = await service.redeliver_failed(user.tenant_id, subscription_id=subscription_id)
    return web.json_response(
        {"retried_count": len(deliveries), "delivery_ids": [str(d.id) for d in deliveries]},
        status=202,
    )
