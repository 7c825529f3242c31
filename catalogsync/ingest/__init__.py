"""Ingestion helpers."""

from __future__ import annotations

import logging
import pathlib
from typing import Any, Mapping

import yaml

from catalogsync.ingest.errors import ConfigurationError
from catalogsync.ingest.models import FREQUENCIES, Category, PriceBand, PriceRange, SyncConfig

logger = logging.getLogger(__name__)

CATEGORIES_PATH = pathlib.Path(__file__).with_name("categories.yml")


def _category_from_config(item: Mapping[str, Any]) -> Category:
    if not item.get("name"):
        raise ConfigurationError(f"Category entry without a name: {item!r}")
    sync = item.get("sync") or {}
    frequency = sync.get("frequency", "daily")
    if frequency not in FREQUENCIES:
        raise ConfigurationError(f"Category {item['name']!r}: unknown frequency {frequency!r}")
    price_range = item.get("price_range")
    return Category(
        name=item["name"],
        title=item.get("title"),
        is_active=item.get("is_active", True),
        sort_order=item.get("sort_order", 0),
        sync_config=SyncConfig(
            enabled=sync.get("enabled", True),
            frequency=frequency,
            max_items_per_run=sync.get("max_items_per_run", 50),
            search_queries=list(sync.get("search_queries") or []),
        ),
        price_range=PriceRange(**price_range) if price_range else None,
        price_bands=[PriceBand.from_dict(band) for band in item.get("price_bands") or []],
    )


def load_categories(path: pathlib.Path | str | None = None, limit: int | None = None) -> list[Category]:
    data = yaml.safe_load(pathlib.Path(path or CATEGORIES_PATH).read_text()) or []
    categories = [_category_from_config(item) for item in data]
    if limit:
        return categories[:limit]
    return categories


def seed_categories(store, categories: list[Category]) -> int:
    """Create categories missing from the store; existing ones are left alone."""
    created = 0
    for category in categories:
        if store.get_by_name(category.name) is not None:
            continue
        store.save(category)
        created += 1
    logger.info("Seeded %s of %s categories", created, len(categories))
    return created
