"""Table definitions for categories and products."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("slug", String(60), nullable=False, unique=True),
    Column("title", String(100), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("sort_order", Integer, nullable=False, default=0),
    Column("sync_enabled", Boolean, nullable=False, default=True),
    Column("sync_frequency", String(16), nullable=False, default="daily"),
    Column("max_items_per_run", Integer, nullable=False, default=50),
    Column("search_queries", JSON, nullable=False, default=list),
    Column("price_min", Float),
    Column("price_max", Float),
    Column("price_step", Float),
    Column("price_bands", JSON, nullable=False, default=list),
    Column("sync_status", String(16), nullable=False, default="pending"),
    Column("last_sync_at", DateTime(timezone=True)),
    Column("last_sync_results", JSON(none_as_null=True)),
    Column("updated_at", DateTime(timezone=True)),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("external_id", String(32), nullable=False, unique=True),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("category_name", String(50), nullable=False),
    Column("title", String(500), nullable=False),
    Column("brand", String(120)),
    Column("url", Text, nullable=False),
    Column("price", Float, nullable=False),
    Column("original_price", Float),
    Column("discount_amount", Float),
    Column("discount_percentage", Integer),
    Column("currency", String(8), nullable=False),
    Column("currency_converted", Boolean, nullable=False, default=False),
    Column("price_band", String(64)),
    Column("rating_average", Float, nullable=False, default=0.0),
    Column("rating_count", Integer, nullable=False, default=0),
    Column("images", JSON, nullable=False, default=list),
    Column("primary_image", Text),
    Column("quality", String(8), nullable=False, default="medium"),
    Column("availability", String(16), nullable=False, default="unknown"),
    Column("delivery_info", Text),
    Column("badges", JSON, nullable=False, default=dict),
    Column("position", Integer),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("scraped_at", DateTime(timezone=True)),
    Column("last_sync_at", DateTime(timezone=True)),
    Column("sync_status", String(16), nullable=False, default="pending"),
    Column("error_message", Text),
    Column("source_query", Text),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

Index("ix_products_category_price", products.c.category_id, products.c.price)
Index("ix_products_last_sync", products.c.last_sync_at)
Index("ix_products_sync_status", products.c.sync_status)
