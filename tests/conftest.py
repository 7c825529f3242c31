from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from catalogsync.db.session import engine_for_url
from catalogsync.db.stores import CategoryStore, ProductStore
from catalogsync.db.tables import metadata
from catalogsync.ingest.errors import ItemNotFoundError
from catalogsync.ingest.models import Category, PriceBand, SyncConfig
from catalogsync.jobs.orchestrator import SyncOrchestrator
from catalogsync.jobs.scheduler import StalenessScheduler
from catalogsync.settings import SyncSettings
from catalogsync.utils.dates import FrozenClock
from catalogsync.utils.rate_limit import RateLimiter
from catalogsync.utils.retry import RetryPolicy

START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


async def no_sleep(_delay):
    return None


class ManualClock:
    """Monotonic clock for the rate limiter; sleeping advances it."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


def listing(asin, price, title=None, **extra):
    item = {
        "title": title or f"Acme Phone {asin} 128GB Midnight Black",
        "asin": asin,
        "price_string": f"₹{price:,}",
        "stars": 4.3,
        "total_reviews": "1,204",
        "image": f"https://m.media-amazon.com/images/I/{asin}.jpg",
        "url": f"/Acme-Phone/dp/{asin}",
    }
    item.update(extra)
    return item


class FakeSearchClient:
    """Serves canned pages keyed by query; unknown queries return no results."""

    def __init__(self, pages=None, errors=None):
        self.pages = pages or {}
        self.errors = errors or {}
        self.calls = []
        self.before_call = None

    async def search_page(self, query, page, locale):
        self.calls.append((query, page, locale))
        if self.before_call is not None:
            self.before_call(query, page, locale)
        error = self.errors.get(query)
        if error is not None:
            raise error
        pages = self.pages.get(query, [])
        if page > len(pages):
            return []
        return list(pages[page - 1])


class WriteFailingEngine:
    """Wraps an engine so reads go through and every write transaction fails."""

    def __init__(self, engine, reason="database is locked"):
        self._engine = engine
        self.reason = reason

    def connect(self):
        return self._engine.connect()

    def begin(self):
        raise OperationalError("write", {}, Exception(self.reason))


class FakeDetailClient:
    def __init__(self, payloads=None):
        self.payloads = payloads or {}
        self.calls = []

    async def fetch_detail(self, external_id):
        self.calls.append(external_id)
        payload = self.payloads.get(external_id)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            raise ItemNotFoundError(f"detail {external_id}: not found")
        return dict(payload)


@pytest.fixture()
def engine():
    engine = engine_for_url("sqlite://")
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def category_store(engine):
    return CategoryStore(engine)


@pytest.fixture()
def product_store(engine):
    return ProductStore(engine)


@pytest.fixture()
def clock():
    return FrozenClock(START)


@pytest.fixture()
def settings():
    return SyncSettings(
        api_key="test-key",
        locales=("110001",),
        page_interval=0,
        band_interval=0,
        category_interval=0,
        detail_interval=0,
        worker_stagger=0,
        retry_jitter=0,
    )


@pytest.fixture()
def search():
    return FakeSearchClient()


@pytest.fixture()
def detail():
    return FakeDetailClient()


@pytest.fixture()
def orchestrator(category_store, product_store, search, settings, clock):
    return SyncOrchestrator(
        categories=category_store,
        products=product_store,
        search=search,
        settings=settings,
        clock=clock,
        limiter=RateLimiter.from_settings(settings, sleep=no_sleep),
        retry=RetryPolicy.from_settings(settings, sleep=no_sleep),
        sleep=no_sleep,
    )


@pytest.fixture()
def scheduler(orchestrator, detail):
    return StalenessScheduler(orchestrator, detail)


@pytest.fixture()
def phones(category_store):
    category = Category(
        name="Phones",
        sync_config=SyncConfig(frequency="daily", max_items_per_run=100),
        price_bands=[
            PriceBand("under_5k", 0, 5000, "under 5000"),
            PriceBand("under_10k", 5000, 10000, "under 10000"),
        ],
    )
    return category_store.save(category)
