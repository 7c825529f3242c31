"""Price band partitioning for category searches."""

from __future__ import annotations

from typing import Sequence

from catalogsync.ingest.errors import ConfigurationError
from catalogsync.ingest.models import Category, PriceBand


def _format_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def generate_bands(min_price: float, max_price: float, step: float) -> list[PriceBand]:
    """Split ``[min_price, max_price)`` into contiguous bands of width ``step``.

    The last band is clipped to ``max_price`` when the domain is not a whole
    multiple of ``step``.
    """
    if step <= 0:
        raise ConfigurationError(f"Band step must be positive, got {step}")
    if min_price >= max_price:
        raise ConfigurationError(f"Band minimum {min_price} must be below maximum {max_price}")
    bands: list[PriceBand] = []
    index = 0
    lower = min_price
    while lower < max_price:
        # multiply instead of accumulating so float steps do not drift
        upper = min(min_price + step * (index + 1), max_price)
        bands.append(
            PriceBand(
                label=f"{_format_amount(lower)}-{_format_amount(upper)}",
                min_price=lower,
                max_price=upper,
                query_hint=f"under {_format_amount(upper)}",
            )
        )
        index += 1
        lower = upper
    return bands


def validate_bands(bands: Sequence[PriceBand]) -> list[PriceBand]:
    """Check that an explicit band list is ordered, contiguous and non-empty."""
    if not bands:
        raise ConfigurationError("Band list is empty")
    labels = set()
    previous: PriceBand | None = None
    for band in bands:
        if band.min_price >= band.max_price:
            raise ConfigurationError(f"Band {band.label!r} has min >= max")
        if band.label in labels:
            raise ConfigurationError(f"Duplicate band label {band.label!r}")
        labels.add(band.label)
        if previous is not None and band.min_price != previous.max_price:
            raise ConfigurationError(
                f"Band {band.label!r} does not start where {previous.label!r} ends"
            )
        previous = band
    return list(bands)


def bands_for_category(category: Category) -> list[PriceBand]:
    """Explicit bands win over bands generated from the category price range."""
    if category.price_bands:
        return validate_bands(category.price_bands)
    if category.price_range is None:
        raise ConfigurationError(f"Category {category.name!r} has no price bands or price range")
    price_range = category.price_range
    return generate_bands(price_range.min, price_range.max, price_range.step)


def band_for_price(bands: Sequence[PriceBand], price: float) -> PriceBand | None:
    for band in bands:
        if band.contains(price):
            return band
    return None
