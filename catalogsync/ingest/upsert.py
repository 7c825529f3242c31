"""Insert-or-merge of canonical products keyed by external identifier."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace

from sqlalchemy.exc import SQLAlchemyError

from catalogsync.db.stores import ProductStore
from catalogsync.ingest.errors import PersistenceError
from catalogsync.ingest.models import AVAILABILITY_STATUSES, QUALITY_TIERS, CanonicalProduct
from catalogsync.utils.dates import SystemClock

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class UpsertOutcome:
    action: str
    external_id: str
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.action in {"inserted", "updated"}


def validate_product(product: CanonicalProduct) -> str | None:
    """Return the first store-level validation failure, if any."""
    if not product.external_id:
        return "external identifier is required"
    if not product.title:
        return "title is required"
    if not product.url:
        return "url is required"
    if product.category_id is None:
        return "category is required"
    if product.price is None or product.price <= 0:
        return "price must be positive"
    if not product.currency:
        return "currency is required"
    if not 0 <= product.rating_average <= 5:
        return "rating must be between 0 and 5"
    if product.rating_count < 0:
        return "review count cannot be negative"
    if product.quality not in QUALITY_TIERS:
        return f"unknown quality tier {product.quality!r}"
    if product.availability not in AVAILABILITY_STATUSES:
        return f"unknown availability {product.availability!r}"
    return None


def merge(stored: CanonicalProduct, candidate: CanonicalProduct) -> CanonicalProduct:
    """Candidate fields overwrite the stored record."""
    values = {f.name: getattr(candidate, f.name) for f in fields(CanonicalProduct)}
    return replace(stored, **values)


class UpsertEngine:
    def __init__(self, store: ProductStore, *, clock=None) -> None:
        self.store = store
        self.clock = clock or SystemClock()

    def upsert(self, candidate: CanonicalProduct, *, skip_existing: bool = False) -> UpsertOutcome:
        """Insert a new product or merge into the stored one.

        Raises :class:`~catalogsync.ingest.errors.PersistenceError` when the
        store write itself fails.
        """
        try:
            existing = self.store.get(candidate.external_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{candidate.external_id}: lookup failed: {exc}") from exc
        if existing is not None and skip_existing:
            return UpsertOutcome("skipped", candidate.external_id, "already stored")

        now = self.clock.now()
        record = merge(existing, candidate) if existing is not None else replace(candidate)
        record.last_sync_at = now
        record.sync_status = "success"
        record.error_message = None
        if record.scraped_at is None:
            record.scraped_at = now

        reason = validate_product(record)
        if reason:
            logger.warning("Rejected %s: %s", candidate.external_id, reason)
            return UpsertOutcome("rejected", candidate.external_id, reason)

        if existing is None:
            self.store.insert(record)
            return UpsertOutcome("inserted", candidate.external_id)
        self.store.update(record)
        return UpsertOutcome("updated", candidate.external_id)
