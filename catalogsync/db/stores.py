"""Category and product persistence on SQLAlchemy Core."""

from __future__ import annotations

from dataclasses import fields
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from catalogsync.db.tables import categories, products
from catalogsync.ingest.errors import CategoryNotFoundError, ConfigurationError, PersistenceError
from catalogsync.ingest.models import (
    ITEM_SYNC_STATUSES,
    SYNC_STATUSES,
    CanonicalProduct,
    Category,
    PriceBand,
    PriceRange,
    SyncConfig,
)
from catalogsync.utils.dates import as_utc, utcnow

PRODUCT_FIELDS = tuple(f.name for f in fields(CanonicalProduct))
PRODUCT_DATETIME_FIELDS = ("scraped_at", "last_sync_at")


def _category_from_row(row: Mapping[str, Any]) -> Category:
    price_range = None
    if row["price_min"] is not None and row["price_max"] is not None:
        price_range = PriceRange(
            min=row["price_min"],
            max=row["price_max"],
            step=row["price_step"] or (row["price_max"] - row["price_min"]),
        )
    return Category(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        title=row["title"],
        is_active=bool(row["is_active"]),
        sort_order=row["sort_order"],
        sync_config=SyncConfig(
            enabled=bool(row["sync_enabled"]),
            frequency=row["sync_frequency"],
            max_items_per_run=row["max_items_per_run"],
            search_queries=list(row["search_queries"] or []),
        ),
        price_range=price_range,
        price_bands=[PriceBand.from_dict(item) for item in row["price_bands"] or []],
        sync_status=row["sync_status"],
        last_sync_at=as_utc(row["last_sync_at"]),
        last_sync_results=row["last_sync_results"],
    )


def _category_values(category: Category) -> dict[str, Any]:
    price_range = category.price_range
    return {
        "name": category.name,
        "slug": category.slug,
        "title": category.title,
        "is_active": category.is_active,
        "sort_order": category.sort_order,
        "sync_enabled": category.sync_config.enabled,
        "sync_frequency": category.sync_config.frequency,
        "max_items_per_run": category.sync_config.max_items_per_run,
        "search_queries": list(category.sync_config.search_queries),
        "price_min": price_range.min if price_range else None,
        "price_max": price_range.max if price_range else None,
        "price_step": price_range.step if price_range else None,
        "price_bands": [band.as_dict() for band in category.price_bands],
        "sync_status": category.sync_status,
        "last_sync_at": category.last_sync_at,
        "last_sync_results": category.last_sync_results,
    }


def _product_from_row(row: Mapping[str, Any]) -> CanonicalProduct:
    values = {name: row[name] for name in PRODUCT_FIELDS}
    for name in PRODUCT_DATETIME_FIELDS:
        values[name] = as_utc(values[name])
    values["images"] = list(values["images"] or [])
    values["badges"] = dict(values["badges"] or {})
    return CanonicalProduct(**values)


def _product_values(product: CanonicalProduct) -> dict[str, Any]:
    return {name: getattr(product, name) for name in PRODUCT_FIELDS}


def _check_status(status: str, allowed: Sequence[str]) -> None:
    if status not in allowed:
        raise ConfigurationError(f"Unknown sync status {status!r}")


class CategoryStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get(self, category_id: int) -> Category | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(categories).where(categories.c.id == category_id)
            ).mappings().first()
        return _category_from_row(row) if row else None

    def require(self, category_id: int) -> Category:
        category = self.get(category_id)
        if category is None:
            raise CategoryNotFoundError(f"Category {category_id} not found")
        return category

    def get_by_name(self, name: str) -> Category | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(categories).where(categories.c.name == name)
            ).mappings().first()
        return _category_from_row(row) if row else None

    def list_all(self) -> list[Category]:
        query = select(categories).order_by(categories.c.sort_order, categories.c.name)
        with self.engine.connect() as conn:
            return [_category_from_row(row) for row in conn.execute(query).mappings()]

    def list_active(self) -> list[Category]:
        return [category for category in self.list_all() if category.is_active]

    def save(self, category: Category) -> Category:
        """Insert or update an administrator-defined category."""
        values = _category_values(category)
        values["updated_at"] = utcnow()
        with self.engine.begin() as conn:
            if category.id is None:
                result = conn.execute(insert(categories).values(**values))
                category.id = int(result.inserted_primary_key[0])
            else:
                conn.execute(
                    update(categories).where(categories.c.id == category.id).values(**values)
                )
        return category

    def claim(self, category_id: int, *, expected: Sequence[str], new_status: str) -> bool:
        """Compare-and-set the status; False when another run holds the category."""
        _check_status(new_status, SYNC_STATUSES)
        with self.engine.begin() as conn:
            result = conn.execute(
                update(categories)
                .where(
                    and_(
                        categories.c.id == category_id,
                        categories.c.sync_status.in_(list(expected)),
                    )
                )
                .values(sync_status=new_status, updated_at=utcnow())
            )
            changed = result.rowcount
        return changed == 1

    def set_status(self, category_id: int, status: str) -> None:
        _check_status(status, SYNC_STATUSES)
        with self.engine.begin() as conn:
            conn.execute(
                update(categories)
                .where(categories.c.id == category_id)
                .values(sync_status=status, updated_at=utcnow())
            )

    def reset_status(self, category_ids: Iterable[int], *, from_status: str, to_status: str) -> int:
        ids = list(category_ids)
        if not ids:
            return 0
        with self.engine.begin() as conn:
            result = conn.execute(
                update(categories)
                .where(and_(categories.c.id.in_(ids), categories.c.sync_status == from_status))
                .values(sync_status=to_status, updated_at=utcnow())
            )
            changed = result.rowcount
        return changed

    def record_success(self, category_id: int, synced_at: datetime, summary: dict[str, Any]) -> None:
        with self.engine.begin() as conn:
            current = conn.execute(
                select(categories.c.last_sync_at).where(categories.c.id == category_id)
            ).scalar_one_or_none()
            previous = as_utc(current)
            last_sync_at = synced_at if previous is None or synced_at > previous else previous
            conn.execute(
                update(categories)
                .where(categories.c.id == category_id)
                .values(
                    sync_status="completed",
                    last_sync_at=last_sync_at,
                    last_sync_results=summary,
                    updated_at=utcnow(),
                )
            )

    def record_failure(self, category_id: int, summary: dict[str, Any]) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(categories)
                .where(categories.c.id == category_id)
                .values(sync_status="failed", last_sync_results=summary, updated_at=utcnow())
            )

    def clear_results(self, before: datetime) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(categories)
                .where(
                    and_(
                        categories.c.last_sync_results.is_not(None),
                        categories.c.updated_at < before,
                    )
                )
                .values(last_sync_results=None)
            )
            changed = result.rowcount
        return changed

    def count(self, *, active_only: bool = False) -> int:
        query = select(func.count()).select_from(categories)
        if active_only:
            query = query.where(categories.c.is_active.is_(True))
        with self.engine.connect() as conn:
            return int(conn.execute(query).scalar_one())


class ProductStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get(self, external_id: str) -> CanonicalProduct | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(products).where(products.c.external_id == external_id)
            ).mappings().first()
        return _product_from_row(row) if row else None

    def exists(self, external_id: str) -> bool:
        with self.engine.connect() as conn:
            found = conn.execute(
                select(products.c.id).where(products.c.external_id == external_id)
            ).first()
        return found is not None

    def insert(self, product: CanonicalProduct) -> None:
        now = utcnow()
        values = _product_values(product)
        values.update(created_at=now, updated_at=now)
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(products).values(**values))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{product.external_id}: insert failed: {exc}") from exc

    def update(self, product: CanonicalProduct) -> None:
        values = _product_values(product)
        values["updated_at"] = utcnow()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    update(products)
                    .where(products.c.external_id == product.external_id)
                    .values(**values)
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{product.external_id}: update failed: {exc}") from exc

    def mark_sync(
        self,
        external_id: str,
        *,
        status: str,
        at: datetime | None = None,
        error: str | None = None,
    ) -> None:
        _check_status(status, ITEM_SYNC_STATUSES)
        values: dict[str, Any] = {"sync_status": status, "error_message": error, "updated_at": utcnow()}
        if at is not None:
            values["last_sync_at"] = at
        with self.engine.begin() as conn:
            conn.execute(
                update(products).where(products.c.external_id == external_id).values(**values)
            )

    def count(self, *, category_id: int | None = None, **filters: Any) -> int:
        query = select(func.count()).select_from(products)
        if category_id is not None:
            query = query.where(products.c.category_id == category_id)
        for name, value in filters.items():
            query = query.where(products.c[name] == value)
        with self.engine.connect() as conn:
            return int(conn.execute(query).scalar_one())

    def count_in_band(self, category_id: int, band: PriceBand) -> int:
        query = (
            select(func.count())
            .select_from(products)
            .where(
                and_(
                    products.c.category_id == category_id,
                    products.c.price >= band.min_price,
                    products.c.price < band.max_price,
                    products.c.is_active.is_(True),
                )
            )
        )
        with self.engine.connect() as conn:
            return int(conn.execute(query).scalar_one())

    def find_stale(self, cutoff: datetime, limit: int) -> list[CanonicalProduct]:
        """Active products never synced or last synced before ``cutoff``, oldest first."""
        query = (
            select(products)
            .where(
                and_(
                    products.c.is_active.is_(True),
                    or_(products.c.last_sync_at.is_(None), products.c.last_sync_at < cutoff),
                )
            )
            .order_by(
                products.c.last_sync_at.is_(None).desc(),
                products.c.last_sync_at.asc(),
                products.c.id.asc(),
            )
            .limit(limit)
        )
        with self.engine.connect() as conn:
            return [_product_from_row(row) for row in conn.execute(query).mappings()]

    def delete_inactive(self, before: datetime) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(products).where(
                    and_(products.c.is_active.is_(False), products.c.updated_at < before)
                )
            )
            changed = result.rowcount
        return changed

    def stats(self, since: datetime) -> dict[str, Any]:
        with self.engine.connect() as conn:
            total = conn.execute(
                select(func.count()).select_from(products).where(products.c.is_active.is_(True))
            ).scalar_one()
            recent = conn.execute(
                select(func.count()).select_from(products).where(products.c.last_sync_at >= since)
            ).scalar_one()
            failed = conn.execute(
                select(func.count()).select_from(products).where(products.c.sync_status == "failed")
            ).scalar_one()
            average = conn.execute(
                select(func.avg(products.c.price)).where(products.c.is_active.is_(True))
            ).scalar_one()
            by_quality = {
                quality: count
                for quality, count in conn.execute(
                    select(products.c.quality, func.count()).group_by(products.c.quality)
                )
            }
        return {
            "total_products": int(total),
            "recently_synced": int(recent),
            "failed_syncs": int(failed),
            "average_price": round(float(average), 2) if average is not None else 0.0,
            "by_quality": by_quality,
            "high_quality": int(by_quality.get("high", 0)),
        }
