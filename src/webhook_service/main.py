"""aiohttp application entrypoint."""
from __future__ import annotations

from pathlib import Path

from aiohttp import web
from aiohttp_cors import ResourceOptions, setup as cors_setup

from webhook_service.api.router import setup_routes
from webhook_service.db.migrations import create_migration_runner
from webhook_service.db.pool import close_pool, init_pool
from webhook_service.domain.webhooks import RetryConfig
from webhook_service.logging_config import configure_logging
from webhook_service.middleware.trace import create_trace_middleware
from webhook_service.services.dependencies import (
    RETRY_CONFIG_KEY,
    STORES_KEY,
    WebhookStores,
    start_retry_scheduler,
    stop_retry_scheduler,
)
from webhook_service.settings import settings
from webhook_service.workers import build_worker

configure_logging()

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
MIGRATIONS_PATHS = [
    PROJECT_ROOT / "migrations",
    Path("/app/migrations"),
]

_ALLOWED_HEADERS = (
    "Accept",
    "Content-Type",
    "Authorization",
    "X-Trace-Id",
    "X-Request-Id",
    "X-User-Id",
    "X-Tenant-Id",
    "X-Tenant-Role",
)


async def healthcheck(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})


def create_app(
    *,
    stores: WebhookStores | None = None,
    retry_config: RetryConfig | None = None,
) -> web.Application:
    """Build the application.

    Passing ``stores`` replaces the PostgreSQL repositories (no pool, no
    migrations); ``retry_config`` overrides the settings-derived one.
    """
    app = web.Application()
    app.middlewares.append(create_trace_middleware(settings.app_name))

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=("X-Trace-Id", "X-Request-Id"),
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=("GET", "POST", "DELETE", "OPTIONS"),
            )
            for origin in settings.cors_allowed_origins
        },
    )

    app.router.add_get("/health", healthcheck)
    setup_routes(app)

    if stores is not None:
        app[STORES_KEY] = stores
    else:
        app.on_startup.append(init_pool)
        app.on_startup.append(create_migration_runner(str(settings.database_url), MIGRATIONS_PATHS))
    if retry_config is not None:
        app[RETRY_CONFIG_KEY] = retry_config

    worker = build_worker(settings)
    app.on_startup.append(start_retry_scheduler)
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
    app.on_cleanup.append(stop_retry_scheduler)
    if stores is None:
        app.on_cleanup.append(close_pool)

    for route in list(app.router.routes()):
        cors.add(route)

    return app


def main() -> None:
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
