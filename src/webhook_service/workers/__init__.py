"""Background workers for webhook-service.

Each worker module exports one async task function compatible with
:class:`webhook_service.worker.WorkerTask`. :func:`build_worker` assembles
them according to settings.
"""
from __future__ import annotations

from webhook_service.settings import Settings
from webhook_service.worker import BackgroundWorker, WorkerTask
from webhook_service.workers.retry_pass import webhook_retry_pass
from webhook_service.workers.webhook_reclaim import webhook_reclaim_stuck


def build_worker(settings: Settings) -> BackgroundWorker:
    tasks = [WorkerTask(name="webhook_reclaim_stuck", fn=webhook_reclaim_stuck)]
    if settings.webhook_inprocess_dispatch:
        tasks.append(WorkerTask(name="webhook_retry_pass", fn=webhook_retry_pass))
    return BackgroundWorker(interval_seconds=settings.worker_interval_seconds, tasks=tasks)


__all__ = [
    "build_worker",
    "webhook_reclaim_stuck",
    "webhook_retry_pass",
]
