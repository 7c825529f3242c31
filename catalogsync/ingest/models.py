"""Ingestion data models."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Mapping

SYNC_STATUSES = ("pending", "queued", "in_progress", "completed", "failed")
FREQUENCIES = ("hourly", "daily", "weekly", "manual")
QUALITY_TIERS = ("high", "medium", "low")
AVAILABILITY_STATUSES = ("in_stock", "out_of_stock", "limited_stock", "unknown")
ITEM_SYNC_STATUSES = ("pending", "success", "failed")

RawListingItem = Mapping[str, Any]


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]", "-", name.lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


@dataclass(slots=True, frozen=True)
class PriceBand:
    """Half-open price interval ``[min_price, max_price)``."""

    label: str
    min_price: float
    max_price: float
    query_hint: str = ""

    def contains(self, price: float) -> bool:
        return self.min_price <= price < self.max_price

    def as_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "min": self.min_price,
            "max": self.max_price,
            "query_hint": self.query_hint,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PriceBand":
        return cls(
            label=str(data["label"]),
            min_price=float(data["min"]),
            max_price=float(data["max"]),
            query_hint=str(data.get("query_hint") or data.get("query") or ""),
        )


@dataclass(slots=True)
class PriceRange:
    min: float = 500
    max: float = 100000
    step: float = 2000


@dataclass(slots=True)
class SyncConfig:
    enabled: bool = True
    frequency: str = "daily"
    max_items_per_run: int = 50
    search_queries: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Category:
    name: str
    id: int | None = None
    title: str | None = None
    slug: str | None = None
    is_active: bool = True
    sort_order: int = 0
    sync_config: SyncConfig = field(default_factory=SyncConfig)
    price_range: PriceRange | None = None
    price_bands: list[PriceBand] = field(default_factory=list)
    sync_status: str = "pending"
    last_sync_at: datetime | None = None
    last_sync_results: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if not self.slug:
            self.slug = slugify(self.name)
        if not self.title:
            self.title = self.name

    @property
    def seed_queries(self) -> list[str]:
        return list(self.sync_config.search_queries) or [self.name]


@dataclass(slots=True)
class CanonicalProduct:
    external_id: str
    category_id: int | None
    category_name: str
    title: str
    url: str
    price: float
    currency: str
    brand: str | None = None
    original_price: float | None = None
    discount_amount: float | None = None
    discount_percentage: int | None = None
    currency_converted: bool = False
    price_band: str | None = None
    rating_average: float = 0.0
    rating_count: int = 0
    images: list[dict[str, Any]] = field(default_factory=list)
    primary_image: str | None = None
    quality: str = "medium"
    availability: str = "unknown"
    delivery_info: str | None = None
    badges: dict[str, bool] = field(default_factory=dict)
    position: int | None = None
    is_active: bool = True
    scraped_at: datetime | None = None
    last_sync_at: datetime | None = None
    sync_status: str = "pending"
    error_message: str | None = None
    source_query: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class NormalizationContext:
    query: str = ""
    band: PriceBand | None = None
    locale: str | None = None
