"""Category sync runs: band partitioning, pagination, normalization and upsert."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from catalogsync.db.stores import CategoryStore, ProductStore
from catalogsync.ingest.errors import (
    ConfigurationError,
    ExternalError,
    NormalizationError,
    PersistenceError,
    SyncInProgressError,
    TerminalExternalError,
)
from catalogsync.ingest.marketplace import SearchClient
from catalogsync.ingest.models import CanonicalProduct, Category, NormalizationContext, PriceBand
from catalogsync.ingest.upsert import UpsertEngine
from catalogsync.jobs.results import BandResult, BatchResult, CategoryRunResult
from catalogsync.logic.bands import bands_for_category
from catalogsync.logic.normalize import RecordNormalizer
from catalogsync.settings import SyncSettings
from catalogsync.utils.dates import SystemClock, format_ts
from catalogsync.utils.rate_limit import RateLimiter
from catalogsync.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = ("pending", "queued", "completed", "failed")


class SyncOrchestrator:
    """Runs category syncs against the marketplace search API.

    Store access is synchronous SQLAlchemy and is pushed to the default
    executor so a long batch never blocks the event loop.
    """

    def __init__(
        self,
        *,
        categories: CategoryStore,
        products: ProductStore,
        search: SearchClient,
        normalizer: RecordNormalizer | None = None,
        upserter: UpsertEngine | None = None,
        limiter: RateLimiter | None = None,
        retry: RetryPolicy | None = None,
        settings: SyncSettings | None = None,
        clock=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or SyncSettings()
        self.clock = clock or SystemClock()
        self.categories = categories
        self.products = products
        self.search = search
        self.normalizer = normalizer or RecordNormalizer(self.settings, clock=self.clock)
        self.upserter = upserter or UpsertEngine(products, clock=self.clock)
        self.limiter = limiter or RateLimiter.from_settings(self.settings)
        self.retry = retry or RetryPolicy.from_settings(self.settings)
        self._sleep = sleep
        self._active = 0
        self._current: dict[int, str] = {}
        self._stop_requested = False
        self.last_run_stats: dict[str, Any] | None = None

    async def _call(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    # -- public operations -------------------------------------------------

    async def run_sync(
        self,
        category_id: int,
        *,
        max_items_per_band: int | None = None,
        skip_existing: bool = False,
        synced_by: str = "manual",
    ) -> CategoryRunResult:
        """Sync one category.

        Raises :class:`CategoryNotFoundError` or :class:`ConfigurationError`
        before any marketplace call, :class:`SyncInProgressError` when the
        category is already running, and re-raises
        :class:`TerminalExternalError` after marking the category failed.
        """
        category = await self._call(self.categories.require, category_id)
        bands = bands_for_category(category)
        self._enter()
        try:
            result = await self._run_category(
                category,
                bands,
                max_items_per_band=max_items_per_band,
                skip_existing=skip_existing,
                synced_by=synced_by,
            )
        finally:
            self._leave()
        self._remember(result.as_dict())
        if result.terminal:
            raise TerminalExternalError(result.error)
        return result

    async def run_all_categories_sync(
        self,
        *,
        category_ids: list[int] | None = None,
        max_items_per_band: int | None = None,
        skip_existing: bool = False,
        workers: int | None = None,
        synced_by: str = "batch",
    ) -> BatchResult:
        """Sync every active category (or ``category_ids``), isolating failures.

        A terminal marketplace error aborts the batch and returns the untouched
        categories to pending. After ``stop()`` they stay queued.
        """
        if category_ids is None:
            candidates = await self._call(self.categories.list_active)
        else:
            candidates = []
            for category_id in category_ids:
                candidates.append(await self._call(self.categories.require, category_id))

        batch = BatchResult(max_errors=self.settings.max_errors)
        queue: list[Category] = []
        for category in candidates:
            claimed = await self._call(
                self.categories.claim,
                category.id,
                expected=CLAIMABLE_STATUSES,
                new_status="queued",
            )
            if claimed:
                queue.append(category)
            else:
                logger.info("Category %s already running, not queued", category.name)

        worker_count = max(1, workers or self.settings.batch_workers)
        worker_count = min(worker_count, len(queue)) or 1
        logger.info("Batch sync: %s categories, %s worker(s)", len(queue), worker_count)

        self._enter()
        try:
            outcomes = await asyncio.gather(
                *(
                    self._batch_worker(
                        index,
                        queue,
                        batch,
                        max_items_per_band=max_items_per_band,
                        skip_existing=skip_existing,
                        synced_by=synced_by,
                    )
                    for index in range(worker_count)
                ),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    logger.error("Batch worker crashed: %r", outcome, exc_info=outcome)
            if self._stop_requested:
                batch.cancelled = True
        finally:
            self._leave()

        if queue and batch.aborted is not None:
            await self._call(
                self.categories.reset_status,
                [category.id for category in queue],
                from_status="queued",
                to_status="pending",
            )
        elif queue:
            logger.info("Batch ended with %s categories still queued", len(queue))
        self._remember(batch.as_dict())
        return batch

    async def preview_category(
        self,
        category_id: int,
        *,
        max_items_per_band: int | None = None,
    ) -> list[CanonicalProduct]:
        """Fetch and normalize without touching the store or category status."""
        category = await self._call(self.categories.require, category_id)
        bands = bands_for_category(category)
        limit = max_items_per_band or self.settings.max_items_per_band
        candidates: list[CanonicalProduct] = []
        self._enter()
        try:
            for band in bands:
                if self._stop_requested:
                    break
                await self.limiter.wait("band")
                band_result = await self._sync_band(
                    category, band, limit=limit, skip_existing=False, candidates=candidates
                )
                logger.info(
                    "Preview %s band %s: %s candidates",
                    category.name,
                    band.label,
                    band_result.success,
                )
        finally:
            self._leave()
        return candidates

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._active > 0,
            "current_category": next(iter(self._current.values()), None),
            "current_categories": sorted(self._current.values()),
            "stop_requested": self._stop_requested,
            "last_run_stats": self.last_run_stats,
        }

    def stop(self) -> dict[str, Any]:
        """Ask running syncs to stop at the next band or page boundary."""
        running = self._active > 0
        if running:
            self._stop_requested = True
            logger.info("Stop requested for %s", ", ".join(sorted(self._current.values())) or "batch")
        return {"acknowledged": True, "running": running}

    # -- run bookkeeping ---------------------------------------------------

    def _enter(self) -> None:
        if self._active == 0:
            self._stop_requested = False
        self._active += 1

    def _leave(self) -> None:
        self._active -= 1
        if self._active == 0:
            self._stop_requested = False

    def _remember(self, stats: dict[str, Any]) -> None:
        stats["finished_at"] = format_ts(self.clock.now())
        self.last_run_stats = stats

    # -- batch -------------------------------------------------------------

    async def _batch_worker(
        self,
        index: int,
        queue: list[Category],
        batch: BatchResult,
        *,
        max_items_per_band: int | None,
        skip_existing: bool,
        synced_by: str,
    ) -> None:
        if index:
            await self._sleep(self.settings.worker_stagger * index)
        while queue and not self._stop_requested and batch.aborted is None:
            category = queue.pop(0)
            await self.limiter.wait("category")
            if self._stop_requested or batch.aborted is not None:
                queue.insert(0, category)
                break
            try:
                bands = bands_for_category(category)
            except ConfigurationError as exc:
                logger.error("Category %s misconfigured: %s", category.name, exc)
                result = CategoryRunResult(category.id, category.name, self.settings.max_errors)
                await self._fail_category(result, str(exc), synced_by)
                batch.categories.append(result)
                continue
            try:
                result = await self._run_category(
                    category,
                    bands,
                    max_items_per_band=max_items_per_band,
                    skip_existing=skip_existing,
                    synced_by=synced_by,
                    expected=("queued",),
                )
            except SyncInProgressError as exc:
                logger.info("%s", exc)
                continue
            except Exception as exc:
                logger.exception("Category %s could not be synced", category.name)
                result = CategoryRunResult(category.id, category.name, self.settings.max_errors)
                await self._fail_category(result, f"{exc.__class__.__name__}: {exc}", synced_by)
            batch.categories.append(result)
            if result.terminal:
                logger.error("Batch aborted on %s: %s", category.name, result.error)
                batch.aborted = f"{category.name}: {result.error}"
                break

    # -- category ----------------------------------------------------------

    async def _run_category(
        self,
        category: Category,
        bands: list[PriceBand],
        *,
        max_items_per_band: int | None,
        skip_existing: bool,
        synced_by: str,
        expected: tuple[str, ...] = CLAIMABLE_STATUSES,
    ) -> CategoryRunResult:
        claimed = await self._call(
            self.categories.claim, category.id, expected=expected, new_status="in_progress"
        )
        if not claimed:
            raise SyncInProgressError(f"Category {category.name} is already syncing")

        result = CategoryRunResult(category.id, category.name, self.settings.max_errors)
        band_cap = max_items_per_band or self.settings.max_items_per_band
        run_budget = category.sync_config.max_items_per_run
        self._current[category.id] = category.name
        logger.info("Sync %s: %s bands", category.name, len(bands))
        try:
            for band in bands:
                if self._stop_requested:
                    result.cancelled = True
                    break
                remaining = run_budget - result.success if run_budget else band_cap
                if remaining <= 0:
                    logger.info("Sync %s: run cap of %s reached", category.name, run_budget)
                    break
                await self.limiter.wait("band")
                try:
                    band_result = await self._sync_band(
                        category,
                        band,
                        limit=min(band_cap, remaining),
                        skip_existing=skip_existing,
                    )
                except TerminalExternalError:
                    raise
                except Exception as exc:
                    logger.exception("Sync %s band %s failed", category.name, band.label)
                    band_result = BandResult(band.label, self.settings.max_errors, stopped_by="error")
                    band_result.record_error(f"{exc.__class__.__name__}: {exc}")
                result.bands.append(band_result)
                if band_result.stopped_by == "cancelled":
                    result.cancelled = True
                    break
        except TerminalExternalError as exc:
            logger.error("Sync %s failed: %s", category.name, exc)
            result.terminal = True
            await self._fail_category(result, str(exc), synced_by)
            return result
        except asyncio.CancelledError:
            # the loop is going away; write directly instead of via the executor
            try:
                self.categories.set_status(category.id, "queued")
            except Exception:
                logger.exception("Could not requeue %s", category.name)
            raise
        except Exception as exc:
            logger.exception("Sync %s failed", category.name)
            await self._fail_category(result, f"{exc.__class__.__name__}: {exc}", synced_by)
            return result
        finally:
            self._current.pop(category.id, None)

        if result.cancelled:
            result.status = "queued"
            try:
                await self._call(self.categories.set_status, category.id, "queued")
            except Exception as exc:
                logger.exception("Could not requeue %s", category.name)
                await self._fail_category(result, f"requeue failed: {exc}", synced_by)
                return result
            logger.info("Sync %s stopped, returned to queue", category.name)
            return result

        synced_at = self.clock.now()
        result.status = "completed"
        try:
            await self._call(
                self.categories.record_success,
                category.id,
                synced_at,
                result.summary(synced_by=synced_by, synced_at=format_ts(synced_at)),
            )
        except Exception as exc:
            logger.exception("Could not record sync of %s", category.name)
            await self._fail_category(result, f"{exc.__class__.__name__}: {exc}", synced_by)
            return result
        logger.info(
            "Sync %s done: %s success, %s failed, %s added, %s skipped",
            category.name,
            result.success,
            result.failed,
            result.added,
            result.skipped,
        )
        return result

    async def _fail_category(self, result: CategoryRunResult, message: str, synced_by: str) -> None:
        """Mark the run failed, falling back to a bare status write if the summary can't be stored."""
        result.status = "failed"
        result.error = message
        summary = result.summary(synced_by=synced_by, synced_at=None)
        try:
            await self._call(self.categories.record_failure, result.category_id, summary)
        except Exception:
            logger.exception("Could not record failure of %s", result.category_name)
            try:
                await self._call(self.categories.set_status, result.category_id, "failed")
            except Exception:
                logger.exception("Could not set %s failed", result.category_name)

    # -- band --------------------------------------------------------------

    async def _sync_band(
        self,
        category: Category,
        band: PriceBand,
        *,
        limit: int,
        skip_existing: bool,
        candidates: list[CanonicalProduct] | None = None,
    ) -> BandResult:
        """Paginate every seed query and locale for one band.

        With ``candidates`` the normalized products are collected there
        instead of being written to the store.
        """
        result = BandResult(band.label, self.settings.max_errors)
        if skip_existing and candidates is None:
            stocked = await self._call(self.products.count_in_band, category.id, band)
            if stocked >= limit:
                logger.info("Band %s/%s already holds %s products", category.name, band.label, stocked)
                result.skipped = stocked
                result.stopped_by = "already_stocked"
                return result

        max_pages = self.settings.max_pages_per_band
        for seed in category.seed_queries:
            query = f"{seed} {band.query_hint}".strip()
            for locale in self.settings.locales:
                page = 1
                while True:
                    if self._stop_requested:
                        result.stopped_by = "cancelled"
                        return result
                    if result.success >= limit:
                        result.stopped_by = "item_cap"
                        return result
                    if result.pages >= max_pages:
                        result.stopped_by = "max_pages"
                        return result
                    try:
                        items = await self.retry.call(self._search_page, query, page, locale)
                    except TerminalExternalError:
                        raise
                    except ExternalError as exc:
                        logger.warning("Band %s/%s: %s", category.name, band.label, exc)
                        result.record_error(str(exc))
                        break
                    result.pages += 1
                    if not items:
                        break
                    context = NormalizationContext(query=query, band=band, locale=locale)
                    for raw in items:
                        if result.success >= limit:
                            break
                        await self._process_item(raw, category, context, result, skip_existing, candidates)
                    page += 1
        if result.stopped_by is None:
            result.stopped_by = "exhausted"
        return result

    async def _search_page(self, query: str, page: int, locale: str) -> list[dict[str, Any]]:
        await self.limiter.wait("page")
        async with self.limiter.slot():
            return await self.search.search_page(query, page, locale)

    async def _process_item(
        self,
        raw: dict[str, Any],
        category: Category,
        context: NormalizationContext,
        result: BandResult,
        skip_existing: bool,
        candidates: list[CanonicalProduct] | None,
    ) -> None:
        result.processed += 1
        try:
            product = self.normalizer.parse(raw, category, context)
        except NormalizationError as exc:
            result.fail(str(exc))
            return

        if candidates is not None:
            if any(seen.external_id == product.external_id for seen in candidates):
                result.skipped += 1
                return
            candidates.append(product)
            result.success += 1
            return

        try:
            outcome = await self._call(self.upserter.upsert, product, skip_existing=skip_existing)
        except PersistenceError as exc:
            logger.error("Store write failed: %s", exc)
            result.fail(str(exc))
            return
        if outcome.action == "inserted":
            result.success += 1
            result.added += 1
        elif outcome.action == "updated":
            result.success += 1
            result.updated += 1
        elif outcome.action == "skipped":
            result.skipped += 1
        else:
            result.fail(f"{outcome.external_id}: {outcome.reason}")
