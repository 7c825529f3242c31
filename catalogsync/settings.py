"""Runtime configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.environ.get(name)
    if not value:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


DEFAULT_LOCALES = ("110001", "400001", "560001")

DEFAULT_SCHEDULES = {
    "category-sweep": "0 * * * *",
    "stale-items": "0 */4 * * *",
    "daily-cleanup": "0 2 * * *",
    "weekly-report": "0 3 * * 0",
}


@dataclass
class SyncSettings:
    search_url: str = "https://api.scrapingdog.com/amazon/search"
    detail_url: str = "https://api.scrapingdog.com/amazon/product"
    api_key: str = ""
    marketplace_domain: str = "in"
    request_timeout: float = 60.0
    locales: tuple[str, ...] = DEFAULT_LOCALES

    max_pages_per_band: int = 5
    max_items_per_band: int = 40
    max_errors: int = 10

    page_interval: float = 2.0
    band_interval: float = 3.0
    category_interval: float = 3.0
    detail_interval: float = 1.0
    max_in_flight: int = 1

    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 20.0
    retry_jitter: float = 1.0

    freshness_hours: float = 6.0
    stale_sweep_limit: int = 50

    currency: str = "INR"
    convert_small_prices: bool = False
    conversion_threshold: float = 1000.0
    conversion_multiplier: float = 83.0
    min_title_length: int = 10

    batch_workers: int = 1
    worker_stagger: float = 5.0

    timezone: str = "Asia/Kolkata"
    schedules: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SCHEDULES))

    @classmethod
    def from_env(cls) -> "SyncSettings":
        schedules = dict(DEFAULT_SCHEDULES)
        for name in schedules:
            env_name = "SCHEDULE_" + name.upper().replace("-", "_")
            schedules[name] = os.environ.get(env_name, schedules[name])
        return cls(
            search_url=os.environ.get("SEARCH_API_URL", cls.search_url),
            detail_url=os.environ.get("DETAIL_API_URL", cls.detail_url),
            api_key=os.environ.get("SEARCH_API_KEY", ""),
            marketplace_domain=os.environ.get("MARKETPLACE_DOMAIN", cls.marketplace_domain),
            request_timeout=_env_float("REQUEST_TIMEOUT", cls.request_timeout),
            locales=_env_list("SEARCH_LOCALES", DEFAULT_LOCALES),
            max_pages_per_band=_env_int("MAX_PAGES_PER_BAND", cls.max_pages_per_band),
            max_items_per_band=_env_int("MAX_ITEMS_PER_BAND", cls.max_items_per_band),
            max_errors=_env_int("MAX_RUN_ERRORS", cls.max_errors),
            page_interval=_env_float("PAGE_INTERVAL", cls.page_interval),
            band_interval=_env_float("BAND_INTERVAL", cls.band_interval),
            category_interval=_env_float("CATEGORY_INTERVAL", cls.category_interval),
            detail_interval=_env_float("DETAIL_INTERVAL", cls.detail_interval),
            max_in_flight=_env_int("MAX_IN_FLIGHT", cls.max_in_flight),
            retry_attempts=_env_int("RETRY_ATTEMPTS", cls.retry_attempts),
            retry_base_delay=_env_float("RETRY_BASE_DELAY", cls.retry_base_delay),
            retry_max_delay=_env_float("RETRY_MAX_DELAY", cls.retry_max_delay),
            retry_jitter=_env_float("RETRY_JITTER", cls.retry_jitter),
            freshness_hours=_env_float("FRESHNESS_HOURS", cls.freshness_hours),
            stale_sweep_limit=_env_int("STALE_SWEEP_LIMIT", cls.stale_sweep_limit),
            currency=os.environ.get("CATALOG_CURRENCY", cls.currency),
            convert_small_prices=_env_bool("CONVERT_SMALL_PRICES", cls.convert_small_prices),
            conversion_threshold=_env_float("CONVERSION_THRESHOLD", cls.conversion_threshold),
            conversion_multiplier=_env_float("CONVERSION_MULTIPLIER", cls.conversion_multiplier),
            min_title_length=_env_int("MIN_TITLE_LENGTH", cls.min_title_length),
            batch_workers=_env_int("BATCH_WORKERS", cls.batch_workers),
            worker_stagger=_env_float("WORKER_STAGGER", cls.worker_stagger),
            timezone=os.environ.get("TIMEZONE", cls.timezone),
            schedules=schedules,
        )
