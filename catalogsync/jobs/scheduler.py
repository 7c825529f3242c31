"""Periodic selection of categories and products due for a refresh."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from catalogsync.db.stores import CategoryStore, ProductStore
from catalogsync.ingest.errors import (
    ExternalError,
    NormalizationError,
    PersistenceError,
    TerminalExternalError,
)
from catalogsync.ingest.marketplace import DetailClient
from catalogsync.ingest.models import CanonicalProduct, Category, NormalizationContext
from catalogsync.jobs.orchestrator import SyncOrchestrator
from catalogsync.jobs.results import BatchResult, RefreshResult
from catalogsync.utils.dates import FREQUENCY_INTERVALS, as_utc, format_ts

logger = logging.getLogger(__name__)

REFRESH_QUERY = "scheduled-refresh"


def needs_sync(category: Category, now: datetime) -> bool:
    """True when the category's frequency interval has fully elapsed."""
    config = category.sync_config
    if not category.is_active or not config.enabled:
        return False
    interval = FREQUENCY_INTERVALS.get(config.frequency)
    if interval is None:
        return False
    if category.last_sync_at is None:
        return True
    return as_utc(now) - as_utc(category.last_sync_at) >= interval


class StalenessScheduler:
    """Feeds due categories to the orchestrator and refreshes stale products.

    Shares the orchestrator's clients, limiter, retry policy and clock so the
    category sync and the item sweep draw on one rate budget.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        detail: DetailClient,
        *,
        categories: CategoryStore | None = None,
        products: ProductStore | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.detail = detail
        self.categories = categories or orchestrator.categories
        self.products = products or orchestrator.products
        self.settings = orchestrator.settings
        self.clock = orchestrator.clock
        self._ticking = False
        self._refreshing = False
        self._stop_requested = False
        self.last_tick: dict[str, Any] | None = None
        self.last_refresh: dict[str, Any] | None = None

    async def _call(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def needs_sync(self, category: Category, now: datetime | None = None) -> bool:
        return needs_sync(category, now or self.clock.now())

    def due_categories(self, now: datetime | None = None) -> list[Category]:
        now = now or self.clock.now()
        return [category for category in self.categories.list_active() if needs_sync(category, now)]

    async def tick(self) -> BatchResult | None:
        """Sync every due category, one at a time.

        Returns ``None`` when a previous tick is still running.
        """
        if self._ticking:
            logger.info("Previous tick still running, skipping")
            return None
        self._ticking = True
        self._stop_requested = False
        try:
            due = await self._call(self.due_categories)
            if not due:
                logger.info("No categories due for sync")
                batch = BatchResult(max_errors=self.settings.max_errors)
            else:
                logger.info("Due for sync: %s", ", ".join(category.name for category in due))
                batch = await self.orchestrator.run_all_categories_sync(
                    category_ids=[category.id for category in due],
                    workers=1,
                    synced_by="scheduler",
                )
        finally:
            self._ticking = False
        self.last_tick = {"finished_at": format_ts(self.clock.now()), **batch.as_dict()}
        return batch

    async def refresh_stale_items(self, limit: int | None = None) -> RefreshResult:
        """Re-fetch products whose own last sync is older than the freshness window.

        Never touches more than ``limit`` products. A failed product is marked
        failed and the sweep moves on; a terminal marketplace error ends it.
        """
        limit = self.settings.stale_sweep_limit if limit is None else limit
        result = RefreshResult(max_errors=self.settings.max_errors)
        if limit <= 0:
            return result
        now = self.clock.now()
        cutoff = now - timedelta(hours=self.settings.freshness_hours)
        stale = await self._call(self.products.find_stale, cutoff, limit)
        logger.info("Refreshing %s stale products", len(stale))

        self._refreshing = True
        self._stop_requested = False
        categories: dict[int, Category] = {}
        try:
            for product in stale[:limit]:
                if self._stop_requested:
                    logger.info("Stale sweep stopped")
                    break
                try:
                    await self._refresh_one(product, categories)
                except TerminalExternalError as exc:
                    logger.error("Stale sweep aborted: %s", exc)
                    result.aborted = str(exc)
                    break
                except (ExternalError, NormalizationError, PersistenceError) as exc:
                    logger.warning("Refresh %s failed: %s", product.external_id, exc)
                    result.fail(f"{product.external_id}: {exc}")
                    await self._call(
                        self.products.mark_sync,
                        product.external_id,
                        status="failed",
                        at=self.clock.now(),
                        error=str(exc),
                    )
                    continue
                result.updated += 1
        finally:
            self._refreshing = False

        logger.info("Stale sweep: %s updated, %s failed", result.updated, result.failed)
        self.last_refresh = {"finished_at": format_ts(self.clock.now()), **result.as_dict()}
        return result

    async def _refresh_one(self, product: CanonicalProduct, categories: dict[int, Category]) -> None:
        raw = await self.orchestrator.retry.call(self._fetch_detail, product.external_id)
        category = await self._category_for(product, categories)
        context = NormalizationContext(query=product.source_query or REFRESH_QUERY)
        fresh = self.orchestrator.normalizer.parse(raw, category, context)
        if fresh.external_id != product.external_id:
            raise NormalizationError(
                f"detail returned {fresh.external_id} for {product.external_id}"
            )
        outcome = await self._call(self.orchestrator.upserter.upsert, fresh)
        if not outcome.ok:
            raise PersistenceError(f"rejected: {outcome.reason}")

    async def _fetch_detail(self, external_id: str) -> dict[str, Any]:
        await self.orchestrator.limiter.wait("detail")
        async with self.orchestrator.limiter.slot():
            return await self.detail.fetch_detail(external_id)

    async def _category_for(self, product: CanonicalProduct, cache: dict[int, Category]) -> Category:
        if product.category_id in cache:
            return cache[product.category_id]
        category = await self._call(self.categories.get, product.category_id)
        if category is None:
            category = Category(name=product.category_name, id=product.category_id)
        cache[product.category_id] = category
        return category

    def get_status(self) -> dict[str, Any]:
        return {
            "ticking": self._ticking,
            "refreshing": self._refreshing,
            "stop_requested": self._stop_requested,
            "last_tick": self.last_tick,
            "last_refresh": self.last_refresh,
            "orchestrator": self.orchestrator.get_status(),
        }

    def stop(self) -> dict[str, Any]:
        if self._refreshing:
            self._stop_requested = True
        ack = self.orchestrator.stop()
        return {"acknowledged": True, "running": ack["running"] or self._refreshing}


class IntervalTicker:
    """Calls an async job every ``interval`` seconds until stopped."""

    def __init__(
        self,
        job: Callable[[], Awaitable[Any]],
        interval: float,
        *,
        name: str = "ticker",
        run_immediately: bool = True,
    ) -> None:
        self.job = job
        self.interval = interval
        self.name = name
        self.run_immediately = run_immediately
        self.runs = 0
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> None:
        if not self.run_immediately:
            if await self._wait():
                return
        while not self._stop.is_set():
            try:
                await self.job()
            except Exception:
                logger.exception("%s run failed", self.name)
            self.runs += 1
            if await self._wait():
                return

    async def _wait(self) -> bool:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return False
        return True
