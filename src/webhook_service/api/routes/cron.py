"""Periodic trigger for the webhook retry pass."""
from __future__ import annotations

import hmac
from datetime import datetime, timezone

import structlog
from aiohttp import web

from webhook_service.api.utils import extract_bearer_token
from webhook_service.core.exceptions import AuthorizationError, StoreUnavailableError
from webhook_service.services.dependencies import get_retry_scheduler
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

routes = web.RouteTableDef()

CRON_WEBHOOK_RETRIES_PATH = "/api/cron/webhook-retries"


def authorize_cron_request(request: web.Request, secret: str) -> None:
    """Check the bearer token against the shared secret in constant time."""
    token = extract_bearer_token(request)
    if not secret or token is None:
        raise AuthorizationError("Missing cron credentials")
    if not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        raise AuthorizationError("Invalid cron credentials")


@routes.post(CRON_WEBHOOK_RETRIES_PATH)
async def process_webhook_retries(request: web.Request) -> web.Response:
    try:
        authorize_cron_request(request, settings.cron_secret)
    except AuthorizationError as exc:
        logger.warning("cron webhook_retries unauthorized", reason=str(exc))
        return web.json_response({"error": "Unauthorized"}, status=401)

    scheduler = get_retry_scheduler(request.app)
    try:
        summary = await scheduler.run_pass()
    except StoreUnavailableError:
        logger.exception("cron webhook_retries failed")
        return web.json_response({"error": "Failed to process webhook retries"}, status=500)

    return web.json_response(
        {
            "success": True,
            "processed_at": datetime.now(timezone.utc).isoformat(),
            "summary": summary.as_dict(),
        }
    )


@routes.get(CRON_WEBHOOK_RETRIES_PATH)
async def webhook_retries_status(_request: web.Request) -> web.Response:
    return web.json_response(
        {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
    )
