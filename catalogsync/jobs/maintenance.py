"""Explicit housekeeping: old run summaries, inactive products, weekly stats."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from catalogsync.db.stores import CategoryStore, ProductStore

logger = logging.getLogger(__name__)

RESULTS_TTL_DAYS = 30
INACTIVE_TTL_DAYS = 60


def cleanup(
    categories: CategoryStore,
    products: ProductStore,
    now: datetime,
    *,
    results_ttl_days: int = RESULTS_TTL_DAYS,
    inactive_ttl_days: int = INACTIVE_TTL_DAYS,
) -> dict[str, int]:
    cleared = categories.clear_results(now - timedelta(days=results_ttl_days))
    removed = products.delete_inactive(now - timedelta(days=inactive_ttl_days))
    logger.info("Cleanup: cleared %s run summaries, removed %s inactive products", cleared, removed)
    return {"results_cleared": cleared, "products_removed": removed}


def product_stats(categories: CategoryStore, products: ProductStore, now: datetime) -> dict[str, Any]:
    stats = products.stats(now - timedelta(hours=24))
    stats["total_categories"] = categories.count(active_only=True)
    if stats["failed_syncs"]:
        logger.warning("%s products with sync failures", stats["failed_syncs"])
    logger.info("Product stats: %s", stats)
    return stats
