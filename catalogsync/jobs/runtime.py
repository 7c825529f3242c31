"""Wiring of stores, clients and jobs for the worker and the API."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy.engine import Engine

from catalogsync.db.session import create_engine_from_env
from catalogsync.db.stores import CategoryStore, ProductStore
from catalogsync.ingest.marketplace import USER_AGENT, DetailClient, SearchClient
from catalogsync.jobs.orchestrator import SyncOrchestrator
from catalogsync.jobs.scheduler import StalenessScheduler
from catalogsync.settings import SyncSettings


@dataclass(slots=True)
class Runtime:
    engine: Engine
    settings: SyncSettings
    categories: CategoryStore
    products: ProductStore
    session: httpx.AsyncClient
    orchestrator: SyncOrchestrator
    scheduler: StalenessScheduler

    async def close(self) -> None:
        await self.session.aclose()


def build_runtime(
    engine: Engine | None = None,
    settings: SyncSettings | None = None,
    *,
    session: httpx.AsyncClient | None = None,
    clock=None,
) -> Runtime:
    settings = settings or SyncSettings.from_env()
    engine = engine or create_engine_from_env()
    session = session or httpx.AsyncClient(
        timeout=settings.request_timeout, headers={"User-Agent": USER_AGENT}
    )
    categories = CategoryStore(engine)
    products = ProductStore(engine)
    orchestrator = SyncOrchestrator(
        categories=categories,
        products=products,
        search=SearchClient(settings, session=session),
        settings=settings,
        clock=clock,
    )
    scheduler = StalenessScheduler(orchestrator, DetailClient(settings, session=session))
    return Runtime(engine, settings, categories, products, session, orchestrator, scheduler)
