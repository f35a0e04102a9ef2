"""Webhook subscription and event endpoints."""
from __future__ import annotations

from typing import Any

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from webhook_service.api.utils import paginated_response, pagination_params, parse_uuid, read_json
from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import invalid_event_types
from webhook_service.services.dependencies import (
    WRITE_ROLES,
    ensure_tenant_role,
    get_webhook_service,
    require_current_user,
)

routes = web.RouteTableDef()


def _http_url(value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError("target_url must be an http(s) URL")
    return value


def _known_event_types(values: list[str]) -> list[str]:
    """Strip, drop blanks and duplicates, then reject anything outside the catalog."""
    cleaned = list(dict.fromkeys(v.strip() for v in values if v and v.strip()))
    if not cleaned:
        raise ValueError("event_types must be a non-empty list")
    invalid = invalid_event_types(cleaned)
    if invalid:
        raise ValueError(f"Invalid event types: {', '.join(invalid)}")
    return cleaned


class WebhookCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_url: str
    event_types: list[str] = Field(min_length=1)
    secret: str | None = Field(default=None, min_length=16)
    name: str | None = None
    description: str | None = None

    @field_validator("target_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _http_url(value)

    @field_validator("event_types")
    @classmethod
    def _check_event_types(cls, value: list[str]) -> list[str]:
        return _known_event_types(value)


class WebhookUpdateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_url: str | None = None
    event_types: list[str] | None = None
    is_active: bool | None = None
    name: str | None = None
    description: str | None = None

    @field_validator("target_url")
    @classmethod
    def _check_url(cls, value: str | None) -> str | None:
        return None if value is None else _http_url(value)

    @field_validator("event_types")
    @classmethod
    def _check_event_types(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else _known_event_types(value)

    @model_validator(mode="after")
    def _check_fields(self) -> "WebhookUpdateDTO":
        if not self.model_fields_set:
            raise ValueError("No fields provided for update")
        for field in ("target_url", "event_types", "is_active"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self

    def updates(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class WebhookEventDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_type: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None

    @field_validator("event_type")
    @classmethod
    def _check_event_type(cls, value: str) -> str:
        return _known_event_types([value])[0]


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    user = require_current_user(request)
    ensure_tenant_role(user)
    service = await get_webhook_service(request)
    limit, offset = pagination_params(request)
    items, total = await service.list_subscriptions(user.tenant_id, limit=limit, offset=offset)
    payload = paginated_response(
        [item.public_dump() for item in items],
        limit=limit,
        offset=offset,
        key="webhooks",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    user = require_current_user(request)
    ensure_tenant_role(user, WRITE_ROLES)
    body = await read_json(request)
    try:
        dto = WebhookCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_webhook_service(request)
    sub = await service.create_subscription(
        tenant_id=user.tenant_id,
        target_url=dto.target_url,
        event_types=dto.event_types,
        secret=dto.secret,
        name=dto.name,
        description=dto.description,
    )
    # The secret is only ever returned here.
    return web.json_response(sub.model_dump(mode="json"), status=201)


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    user = require_current_user(request)
    ensure_tenant_role(user, WRITE_ROLES)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        await service.disable_subscription(user.tenant_id, webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.Response(status=204)


@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    user = require_current_user(request)
    ensure_tenant_role(user, WRITE_ROLES)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request)
    try:
        dto = WebhookUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_webhook_service(request)
    try:
        sub = await service.update_subscription(user.tenant_id, webhook_id, dto.updates())
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(sub.public_dump())


@routes.post("/api/v1/webhooks/events")
async def emit_event(request: web.Request):
    user = require_current_user(request)
    ensure_tenant_role(user, WRITE_ROLES)
    body = await read_json(request)
    try:
        dto = WebhookEventDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_webhook_service(request)
    deliveries = await service.emit(
        tenant_id=user.tenant_id,
        event_type=dto.event_type,
        data=dto.data,
        metadata=dto.metadata,
    )
    return web.json_response(
        {"event_type": dto.event_type, "delivery_ids": [str(d.id) for d in deliveries]},
        status=202,
    )
