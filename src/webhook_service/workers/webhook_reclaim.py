"""Worker: reclaim webhook deliveries stuck in ``in_flight``."""
from __future__ import annotations

from datetime import datetime, timedelta

from aiohttp import web

from webhook_service.services.dependencies import get_stores
from webhook_service.settings import settings


async def webhook_reclaim_stuck(app: web.Application, now: datetime) -> str | None:
    """Make deliveries claimed more than ``webhook_stuck_minutes`` ago due again."""
    stores = await get_stores(app)
    cutoff = now - timedelta(minutes=settings.webhook_stuck_minutes)
    reclaimed = await stores.deliveries.reclaim_stuck(cutoff)
    return f"reclaimed={reclaimed}" if reclaimed else None
