import pytest

from catalogsync.ingest.errors import ConfigurationError
from catalogsync.ingest.models import Category, PriceBand, PriceRange
from catalogsync.logic.bands import band_for_price, bands_for_category, generate_bands, validate_bands


@pytest.mark.parametrize(
    "low,high,step",
    [(0, 10000, 5000), (500, 100000, 2000), (100, 1050, 300), (0.5, 3.25, 0.75)],
)
def test_generated_bands_cover_domain_exactly(low, high, step):
    bands = generate_bands(low, high, step)
    assert bands[0].min_price == low
    assert bands[-1].max_price == high
    for previous, current in zip(bands, bands[1:]):
        assert current.min_price == previous.max_price
    assert all(band.min_price < band.max_price for band in bands)


def test_last_band_is_clipped():
    bands = generate_bands(0, 2500, 1000)
    assert [(band.min_price, band.max_price) for band in bands] == [
        (0, 1000),
        (1000, 2000),
        (2000, 2500),
    ]
    assert bands[-1].label == "2000-2500"
    assert bands[-1].query_hint == "under 2500"


@pytest.mark.parametrize("low,high,step", [(10, 10, 5), (20, 10, 5), (0, 100, 0), (0, 100, -5)])
def test_invalid_domain_raises(low, high, step):
    with pytest.raises(ConfigurationError):
        generate_bands(low, high, step)


def test_explicit_bands_override_price_range():
    explicit = [PriceBand("cheap", 0, 100, "under 100"), PriceBand("dear", 100, 900, "under 900")]
    category = Category(name="Mugs", price_range=PriceRange(0, 1000, 10), price_bands=explicit)
    assert bands_for_category(category) == explicit


def test_price_range_used_without_explicit_bands():
    category = Category(name="Mugs", price_range=PriceRange(500, 4500, 2000))
    assert [band.label for band in bands_for_category(category)] == ["500-2500", "2500-4500"]


def test_category_without_bands_or_range():
    with pytest.raises(ConfigurationError):
        bands_for_category(Category(name="Empty"))


def test_validate_bands_rejects_gaps_and_duplicates():
    with pytest.raises(ConfigurationError):
        validate_bands([PriceBand("a", 0, 100), PriceBand("b", 150, 200)])
    with pytest.raises(ConfigurationError):
        validate_bands([PriceBand("a", 0, 100), PriceBand("a", 100, 200)])
    with pytest.raises(ConfigurationError):
        validate_bands([])


def test_band_for_price_is_half_open():
    bands = generate_bands(0, 10000, 5000)
    assert band_for_price(bands, 0).label == "0-5000"
    assert band_for_price(bands, 5000).label == "5000-10000"
    assert band_for_price(bands, 10000) is None
