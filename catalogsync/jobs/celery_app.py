"""Celery configuration for scheduled jobs."""

from __future__ import annotations

import asyncio
import os

from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

from catalogsync.ingest.errors import ConfigurationError
from catalogsync.settings import SyncSettings

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

TASKS = {
    "category-sweep": "catalogsync.jobs.sync_due_categories",
    "stale-items": "catalogsync.jobs.refresh_stale_items",
    "daily-cleanup": "catalogsync.jobs.daily_cleanup",
    "weekly-report": "catalogsync.jobs.weekly_report",
}


def cron_schedule(expression: str) -> crontab:
    """Build a crontab from a five-field ``minute hour dom month dow`` string."""
    fields = expression.split()
    if len(fields) != 5:
        raise ConfigurationError(f"Expected five cron fields, got {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


def beat_schedule(settings: SyncSettings) -> dict[str, dict]:
    return {
        name: {"task": TASKS[name], "schedule": cron_schedule(expression)}
        for name, expression in settings.schedules.items()
        if name in TASKS and expression
    }


celery_app = Celery("catalogsync", broker=broker_url, backend=backend_url)
settings = SyncSettings.from_env()
celery_app.conf.timezone = settings.timezone
celery_app.conf.beat_schedule = beat_schedule(settings)


async def _with_runtime(job):
    from catalogsync.jobs.runtime import build_runtime

    runtime = build_runtime()
    try:
        return await job(runtime)
    finally:
        await runtime.close()


async def _sweep(runtime):
    batch = await runtime.scheduler.tick()
    return batch.as_dict() if batch else None


async def _refresh(runtime):
    result = await runtime.scheduler.refresh_stale_items()
    return result.as_dict()


@celery_app.task(name=TASKS["category-sweep"])
def sync_due_categories_task():  # pragma: no cover - executed by worker
    load_dotenv()
    return asyncio.run(_with_runtime(_sweep))


@celery_app.task(name=TASKS["stale-items"])
def refresh_stale_items_task():  # pragma: no cover - executed by worker
    load_dotenv()
    return asyncio.run(_with_runtime(_refresh))


@celery_app.task(name=TASKS["daily-cleanup"])
def daily_cleanup_task():  # pragma: no cover - executed by worker
    from catalogsync.db.session import create_engine_from_env
    from catalogsync.db.stores import CategoryStore, ProductStore
    from catalogsync.jobs.maintenance import cleanup
    from catalogsync.utils.dates import utcnow

    load_dotenv()
    engine = create_engine_from_env()
    return cleanup(CategoryStore(engine), ProductStore(engine), utcnow())


@celery_app.task(name=TASKS["weekly-report"])
def weekly_report_task():  # pragma: no cover - executed by worker
    from catalogsync.db.session import create_engine_from_env
    from catalogsync.db.stores import CategoryStore, ProductStore
    from catalogsync.jobs.maintenance import product_stats
    from catalogsync.utils.dates import utcnow

    load_dotenv()
    engine = create_engine_from_env()
    return product_stats(CategoryStore(engine), ProductStore(engine), utcnow())
