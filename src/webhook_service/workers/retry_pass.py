"""Worker: run the webhook retry pass without waiting for the external trigger."""
from __future__ import annotations

from datetime import datetime

from aiohttp import web

from webhook_service.services.dependencies import get_retry_scheduler


async def webhook_retry_pass(app: web.Application, now: datetime) -> str | None:
    summary = await get_retry_scheduler(app).run_pass(now)
    if summary.already_running or not summary.claim_count:
        return None
    return (
        f"claimed={summary.claim_count} succeeded={summary.succeeded} "
        f"rescheduled={summary.rescheduled} given_up={summary.given_up}"
    )
