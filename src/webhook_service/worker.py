"""In-process periodic worker for aiohttp apps.

Usage::

    worker = BackgroundWorker(
        interval_seconds=60.0,
        tasks=[WorkerTask(name="webhook_reclaim_stuck", fn=webhook_reclaim_stuck)],
    )
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

# A task gets the app and the sweep time (UTC) and may return a short summary,
# which is logged when non-empty.
TaskFn = Callable[[web.Application, datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    name: str
    fn: TaskFn


_WORKER_TASK_KEY = "__background_worker_task__"


@dataclass
class BackgroundWorker:
    """Runs its tasks one after another every ``interval_seconds``.

    A failing task is logged and does not stop the others or the loop.
    """

    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)

    async def start(self, app: web.Application) -> None:
        app[_WORKER_TASK_KEY] = asyncio.create_task(self._loop(app))

    async def stop(self, app: web.Application) -> None:
        task = app.get(_WORKER_TASK_KEY)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def run_once(self, app: web.Application, now: datetime) -> None:
        for task in self.tasks:
            try:
                summary = await task.fn(app, now)
            except Exception:
                logger.exception("background_task failed", task=task.name)
                continue
            if summary:
                logger.info("background_task completed", task=task.name, summary=summary)

    async def _loop(self, app: web.Application) -> None:
        logger.info(
            "background_worker started",
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once(app, datetime.now(timezone.utc))
            except asyncio.CancelledError:
                logger.info("background_worker stopped")
                raise
