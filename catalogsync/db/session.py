"""Database engine helpers."""

from __future__ import annotations

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool


DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/catalog"
MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}


def engine_for_url(url: str) -> Engine:
    """Create an engine usable from executor threads.

    An in-memory sqlite database exists per connection, so it is pinned to a
    single shared connection.
    """
    if url in MEMORY_URLS:
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)
    return create_engine(url, pool_pre_ping=True, future=True)


def create_engine_from_env() -> Engine:
    """Create an engine using the DATABASE_URL environment variable."""
    return engine_for_url(os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL))
