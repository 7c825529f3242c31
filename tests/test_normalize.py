import pytest

from catalogsync.ingest.errors import NormalizationError
from catalogsync.ingest.models import Category, NormalizationContext, PriceBand, PriceRange
from catalogsync.logic.normalize import (
    RecordNormalizer,
    extract_availability,
    extract_external_id,
    parse_count,
    parse_price_text,
)
from catalogsync.logic.quality import quality_tier, score_listing
from catalogsync.settings import SyncSettings

from conftest import START, listing


@pytest.fixture()
def category():
    return Category(name="Phones", id=7, price_range=PriceRange(0, 10000, 5000))


@pytest.fixture()
def normalizer(clock):
    return RecordNormalizer(SyncSettings(), clock=clock)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("₹4,399.00", 4399.0),
        ("Rs. 1,299", 1299.0),
        ("12,999", 12999.0),
        (899, 899.0),
        ("", None),
        ("N/A", None),
        (None, None),
    ],
)
def test_parse_price_text(text, expected):
    assert parse_price_text(text) == expected


def test_parse_price_text_comma_decimal():
    assert parse_price_text("1.299,50 €", decimal_separator=",") == 1299.5


def test_parse_count():
    assert parse_count("1,204 ratings") == 1204
    assert parse_count(None) == 0
    assert parse_count(-3) == 0


def test_external_id_from_url():
    assert extract_external_id({"url": "https://www.amazon.in/Some-Phone/dp/b0abc12345/ref=sr_1"}) == "B0ABC12345"
    assert extract_external_id({"link": "/gp/product/B0ABC12345?th=1"}) == "B0ABC12345"
    assert extract_external_id({"url": "https://example.com/item/42"}) is None


def test_availability_text():
    assert extract_availability({"availability": "Only 3 left in stock."}) == "limited_stock"
    assert extract_availability({"availability": "Currently unavailable."}) == "out_of_stock"
    assert extract_availability({"in_stock": True}) == "in_stock"
    assert extract_availability({}) == "unknown"


def test_normalize_listing(normalizer, category):
    raw = listing("B0PHONE001", 4399, is_best_seller=True, absolute_position=3)
    product = normalizer.normalize(raw, category, NormalizationContext(query="Phones under 5000"))

    assert product.external_id == "B0PHONE001"
    assert product.price == 4399.0
    assert product.currency == "INR"
    assert product.category_id == 7
    assert product.price_band == "0-5000"
    assert product.rating_average == 4.3
    assert product.rating_count == 1204
    assert product.badges["best_seller"] is True
    assert product.quality == "high"
    assert product.url == "https://www.amazon.in/Acme-Phone/dp/B0PHONE001"
    assert product.primary_image.endswith("B0PHONE001.jpg")
    assert product.brand == "Acme"
    assert product.position == 3
    assert product.scraped_at == START
    assert product.source_query == "Phones under 5000"


@pytest.mark.parametrize(
    "overrides",
    [
        {"price_string": "₹0"},
        {"price_string": None},
        {"title": "Phone"},
        {"asin": None, "url": "https://example.com/phone"},
    ],
)
def test_normalize_rejects_unusable_listings(normalizer, category, overrides):
    raw = listing("B0PHONE001", 4399)
    raw.update(overrides)
    assert normalizer.normalize(raw, category) is None
    with pytest.raises(NormalizationError):
        normalizer.parse(raw, category)


def test_out_of_band_price_is_rejected(normalizer, category):
    band = PriceBand("under_5k", 0, 5000, "under 5000")
    with pytest.raises(NormalizationError, match="outside band under_5k"):
        normalizer.parse(listing("B0PHONE002", 7000), category, NormalizationContext(band=band))


def test_discount_from_original_price(normalizer, category):
    product = normalizer.parse(listing("B0PHONE003", 3000, original_price="₹4,000"), category)
    assert product.original_price == 4000.0
    assert product.discount_amount == 1000.0
    assert product.discount_percentage == 25


def test_small_price_conversion_is_opt_in(clock, category):
    raw = listing("B0PHONE004", 45)
    plain = RecordNormalizer(SyncSettings(), clock=clock).parse(raw, category)
    assert plain.price == 45.0
    assert plain.currency_converted is False

    converting = RecordNormalizer(SyncSettings(convert_small_prices=True), clock=clock)
    converted = converting.parse(raw, category)
    assert converted.price == 45.0 * 83
    assert converted.currency_converted is True

    declared = converting.parse(dict(raw, currency="INR"), category)
    assert declared.price == 45.0


def test_quality_score_components():
    badges = {"best_seller": True, "marketplace_choice": True}
    assert score_listing(rating=4.5, reviews=2000, badges=badges, title="x" * 60) == 100
    assert score_listing(rating=0, reviews=0, badges={}, title="short") == 0
    assert quality_tier(70) == "high"
    assert quality_tier(69) == "medium"
    assert quality_tier(40) == "medium"
    assert quality_tier(39) == "low"
