"""Run result containers for band, category and batch syncs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

DEFAULT_MAX_ERRORS = 10


def bounded(errors: Iterable[str], limit: int) -> list[str]:
    return list(errors)[:limit]


@dataclass(slots=True)
class BandResult:
    label: str
    max_errors: int = DEFAULT_MAX_ERRORS
    processed: int = 0
    success: int = 0
    failed: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    pages: int = 0
    errors: list[str] = field(default_factory=list)
    stopped_by: str | None = None

    def record_error(self, message: str) -> None:
        if len(self.errors) < self.max_errors:
            self.errors.append(message)

    def fail(self, message: str) -> None:
        self.failed += 1
        self.record_error(message)

    def as_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "processed": self.processed,
            "success": self.success,
            "failed": self.failed,
            "added": self.added,
            "updated": self.updated,
            "skipped": self.skipped,
            "pages": self.pages,
            "errors": list(self.errors),
            "stopped_by": self.stopped_by,
        }


@dataclass(slots=True)
class CategoryRunResult:
    category_id: int | None
    category_name: str
    max_errors: int = DEFAULT_MAX_ERRORS
    status: str = "pending"
    bands: list[BandResult] = field(default_factory=list)
    error: str | None = None
    cancelled: bool = False
    terminal: bool = False
    extra_errors: list[str] = field(default_factory=list)

    def _total(self, attr: str) -> int:
        return sum(getattr(band, attr) for band in self.bands)

    @property
    def processed(self) -> int:
        return self._total("processed")

    @property
    def success(self) -> int:
        return self._total("success")

    @property
    def failed(self) -> int:
        return self._total("failed")

    @property
    def added(self) -> int:
        return self._total("added")

    @property
    def updated(self) -> int:
        return self._total("updated")

    @property
    def skipped(self) -> int:
        return self._total("skipped")

    @property
    def errors(self) -> list[str]:
        collected = list(self.extra_errors)
        for band in self.bands:
            collected.extend(f"{band.label}: {message}" for message in band.errors)
        return bounded(collected, self.max_errors)

    def summary(self, *, synced_by: str, synced_at: str | None) -> dict[str, Any]:
        if self.status == "failed":
            return {
                "error": self.error,
                "success": self.success,
                "failed": self.failed,
                "errors": self.errors,
                "synced_by": synced_by,
                "synced_at": synced_at,
            }
        return {
            "success": self.success,
            "failed": self.failed,
            "added": self.added,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "synced_by": synced_by,
            "synced_at": synced_at,
        }

    def as_dict(self) -> dict[str, Any]:
        return {
            "category_id": self.category_id,
            "category": self.category_name,
            "status": self.status,
            "processed": self.processed,
            "success": self.success,
            "failed": self.failed,
            "added": self.added,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "error": self.error,
            "cancelled": self.cancelled,
            "bands": [band.as_dict() for band in self.bands],
        }


@dataclass(slots=True)
class BatchResult:
    max_errors: int = DEFAULT_MAX_ERRORS
    categories: list[CategoryRunResult] = field(default_factory=list)
    cancelled: bool = False
    aborted: str | None = None

    @property
    def categories_processed(self) -> int:
        return sum(1 for result in self.categories if result.status in {"completed", "failed"})

    @property
    def categories_failed(self) -> int:
        return sum(1 for result in self.categories if result.status == "failed")

    @property
    def processed(self) -> int:
        return sum(result.processed for result in self.categories)

    @property
    def success(self) -> int:
        return sum(result.success for result in self.categories)

    @property
    def failed(self) -> int:
        return sum(result.failed for result in self.categories)

    @property
    def added(self) -> int:
        return sum(result.added for result in self.categories)

    @property
    def skipped(self) -> int:
        return sum(result.skipped for result in self.categories)

    @property
    def errors(self) -> list[str]:
        collected: list[str] = []
        for result in self.categories:
            if result.error:
                collected.append(f"{result.category_name}: {result.error}")
            collected.extend(f"{result.category_name}: {message}" for message in result.errors)
        return bounded(collected, self.max_errors)

    def as_dict(self) -> dict[str, Any]:
        return {
            "categories_processed": self.categories_processed,
            "categories_failed": self.categories_failed,
            "processed": self.processed,
            "success": self.success,
            "failed": self.failed,
            "added": self.added,
            "skipped": self.skipped,
            "errors": self.errors,
            "cancelled": self.cancelled,
            "aborted": self.aborted,
            "summary": [result.as_dict() for result in self.categories],
        }


@dataclass(slots=True)
class RefreshResult:
    max_errors: int = DEFAULT_MAX_ERRORS
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    aborted: str | None = None

    def fail(self, message: str) -> None:
        self.failed += 1
        if len(self.errors) < self.max_errors:
            self.errors.append(message)

    def as_dict(self) -> dict[str, Any]:
        return {
            "updated": self.updated,
            "failed": self.failed,
            "errors": list(self.errors),
            "aborted": self.aborted,
        }
