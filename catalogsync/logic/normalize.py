"""Map raw marketplace listings onto canonical products."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from catalogsync.ingest.errors import ConfigurationError, NormalizationError
from catalogsync.ingest.models import CanonicalProduct, Category, NormalizationContext, RawListingItem
from catalogsync.logic.bands import band_for_price, bands_for_category
from catalogsync.logic.quality import quality_tier, score_listing
from catalogsync.settings import SyncSettings
from catalogsync.utils.dates import SystemClock

logger = logging.getLogger(__name__)

EXTERNAL_ID_RE = re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE)
NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
NON_BRAND_WORDS = {"best", "new", "latest", "premium", "original", "genuine", "the"}
DEFAULT_BASE_URL = "https://www.amazon.in"

BADGE_FIELDS = {
    "best_seller": ("is_best_seller", "best_seller", "bestseller"),
    "marketplace_choice": ("is_amazon_choice", "amazon_choice", "is_marketplace_choice"),
    "prime": ("has_prime", "is_prime", "prime"),
    "limited_deal": ("limited_time_deal", "is_limited_deal", "deal"),
}


def parse_price_text(value: Any, decimal_separator: str = ".") -> float | None:
    """Strip everything except digits and the decimal separator.

    ``"₹4,399.00"`` becomes ``4399.0``. Returns ``None`` when nothing numeric
    is left or the remainder is not a number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value)
    cleaned = "".join(ch for ch in text if ch.isdigit() or ch == decimal_separator)
    # currency prefixes such as "Rs." leave a stray leading separator
    cleaned = cleaned.strip(decimal_separator)
    if not cleaned:
        return None
    if decimal_separator != ".":
        cleaned = cleaned.replace(decimal_separator, ".")
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    digits = re.sub(r"[^\d]", "", str(value))
    return int(digits) if digits else 0


def parse_rating(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        rating = float(value)
    else:
        match = NUMBER_RE.search(str(value))
        rating = float(match.group(0)) if match else 0.0
    return rating if 0.0 <= rating <= 5.0 else 0.0


def extract_external_id(raw: Mapping[str, Any]) -> str | None:
    for key in ("asin", "external_id", "id"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip().upper()
    for key in ("url", "optimized_url", "link"):
        url = raw.get(key)
        if not isinstance(url, str):
            continue
        match = EXTERNAL_ID_RE.search(url)
        if match:
            return match.group(1).upper()
    return None


def extract_brand(raw: Mapping[str, Any], title: str) -> str | None:
    brand = raw.get("brand")
    if isinstance(brand, str) and brand.strip():
        return brand.strip()
    for word in title.split()[:2]:
        candidate = re.sub(r"[^\w-]", "", word)
        if candidate and candidate.lower() not in NON_BRAND_WORDS:
            return candidate
    return None


def extract_images(raw: Mapping[str, Any], title: str) -> list[dict[str, Any]]:
    urls: list[str] = []
    for key in ("image", "images", "thumbnail", "main_image", "url_image"):
        value = raw.get(key)
        values = value if isinstance(value, list) else [value]
        for item in values:
            if isinstance(item, Mapping):
                item = item.get("url") or item.get("link")
            if isinstance(item, str) and item.startswith("http") and item not in urls:
                urls.append(item)
    return [
        {"url": url, "alt": title or "Product image", "is_primary": index == 0}
        for index, url in enumerate(urls)
    ]


def extract_availability(raw: Mapping[str, Any]) -> str:
    if isinstance(raw.get("in_stock"), bool):
        return "in_stock" if raw["in_stock"] else "out_of_stock"
    text = raw.get("availability") or raw.get("availability_status") or raw.get("stock")
    if isinstance(text, Mapping):
        text = text.get("status") or text.get("text")
    if not isinstance(text, str) or not text.strip():
        return "unknown"
    lowered = text.lower()
    if "out of stock" in lowered or "unavailable" in lowered:
        return "out_of_stock"
    if "only" in lowered and "left" in lowered:
        return "limited_stock"
    if "in stock" in lowered or "available" in lowered:
        return "in_stock"
    return "unknown"


def extract_badges(raw: Mapping[str, Any]) -> dict[str, bool]:
    return {
        badge: any(bool(raw.get(field)) for field in fields)
        for badge, fields in BADGE_FIELDS.items()
    }


class RecordNormalizer:
    """Turns raw search or detail payloads into :class:`CanonicalProduct`."""

    def __init__(
        self,
        settings: SyncSettings | None = None,
        *,
        clock=None,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        self.settings = settings or SyncSettings()
        self.clock = clock or SystemClock()
        self.base_url = base_url.rstrip("/")

    def normalize(
        self,
        raw: RawListingItem,
        category: Category,
        context: NormalizationContext | None = None,
    ) -> CanonicalProduct | None:
        """Return a canonical product or ``None`` when the listing is unusable."""
        try:
            return self.parse(raw, category, context)
        except NormalizationError as exc:
            logger.info("Skipping listing: %s", exc)
            return None

    def parse(
        self,
        raw: RawListingItem,
        category: Category,
        context: NormalizationContext | None = None,
    ) -> CanonicalProduct:
        """Like :meth:`normalize` but raises :class:`NormalizationError` with the reason."""
        context = context or NormalizationContext()
        if not isinstance(raw, Mapping):
            raise NormalizationError("Listing payload is not an object")

        title = str(raw.get("title") or raw.get("name") or "").strip()
        if len(title) < self.settings.min_title_length:
            raise NormalizationError(f"Title too short: {title!r}")

        external_id = extract_external_id(raw)
        if not external_id:
            raise NormalizationError(f"No external identifier for {title[:40]!r}")

        price, original_price = self._extract_prices(raw)
        if price is None or price <= 0:
            raise NormalizationError(f"{external_id}: missing or non-positive price")
        currency = self.settings.currency
        converted = False
        if self._should_convert(raw, price):
            logger.warning(
                "%s: price %s below %s, applying x%s conversion",
                external_id,
                price,
                self.settings.conversion_threshold,
                self.settings.conversion_multiplier,
            )
            price = self._convert(price)
            if original_price:
                original_price = self._convert(original_price)
            converted = True

        band = context.band
        if band is not None and not band.contains(price):
            raise NormalizationError(
                f"{external_id}: price {price:g} outside band {band.label} "
                f"[{band.min_price:g}, {band.max_price:g})"
            )
        band_label = band.label if band is not None else self._band_label(category, price)

        rating = parse_rating(self._rating_value(raw))
        reviews = parse_count(
            raw.get("total_reviews")
            or raw.get("reviews_count")
            or raw.get("ratings_total")
            or self._nested_review_count(raw)
        )
        badges = extract_badges(raw)
        images = extract_images(raw, title)
        score = score_listing(rating=rating, reviews=reviews, badges=badges, title=title)

        discount_amount = None
        discount_percentage = None
        if original_price and original_price > price:
            discount_amount = round(original_price - price, 2)
            discount_percentage = round((original_price - price) / original_price * 100)

        now = self.clock.now()
        return CanonicalProduct(
            external_id=external_id,
            category_id=category.id,
            category_name=category.name,
            title=title,
            url=self._listing_url(raw, external_id),
            price=price,
            currency=currency,
            brand=extract_brand(raw, title),
            original_price=original_price or price,
            discount_amount=discount_amount,
            discount_percentage=discount_percentage,
            currency_converted=converted,
            price_band=band_label,
            rating_average=rating,
            rating_count=reviews,
            images=images,
            primary_image=images[0]["url"] if images else None,
            quality=quality_tier(score),
            availability=extract_availability(raw),
            delivery_info=raw.get("number_of_people_bought") or raw.get("delivery"),
            badges=badges,
            position=_optional_int(raw.get("absolute_position") or raw.get("position")),
            scraped_at=now,
            source_query=context.query or None,
        )

    def _extract_prices(self, raw: Mapping[str, Any]) -> tuple[float | None, float | None]:
        current: Any = None
        original: Any = raw.get("original_price") or raw.get("list_price") or raw.get("previous_price")
        price = raw.get("price")
        if isinstance(price, Mapping):
            current = price.get("current") or price.get("value")
            original = original or price.get("original")
        elif price not in (None, ""):
            current = price
        if current in (None, ""):
            current = raw.get("price_string") or raw.get("extracted_price")
        if current in (None, ""):
            current = raw.get("price_upper") or raw.get("price_lower")
        return parse_price_text(current), parse_price_text(original)

    def _should_convert(self, raw: Mapping[str, Any], price: float) -> bool:
        if not self.settings.convert_small_prices:
            return False
        declared = raw.get("currency")
        if isinstance(declared, str) and declared.upper() == self.settings.currency.upper():
            return False
        return 0 < price < self.settings.conversion_threshold

    def _convert(self, amount: float) -> float:
        return float(round(amount * self.settings.conversion_multiplier))

    def _band_label(self, category: Category, price: float) -> str | None:
        try:
            bands = bands_for_category(category)
        except ConfigurationError:
            return None
        band = band_for_price(bands, price)
        return band.label if band else None

    def _listing_url(self, raw: Mapping[str, Any], external_id: str) -> str:
        for key in ("url", "optimized_url", "link"):
            url = raw.get(key)
            if isinstance(url, str) and url.strip():
                url = url.strip()
                if url.startswith("/"):
                    return f"{self.base_url}{url}"
                return url
        return f"{self.base_url}/dp/{external_id}"

    @staticmethod
    def _rating_value(raw: Mapping[str, Any]) -> Any:
        rating = raw.get("stars", raw.get("rating", raw.get("average_rating")))
        if isinstance(rating, Mapping):
            return rating.get("rating") or rating.get("average")
        return rating

    @staticmethod
    def _nested_review_count(raw: Mapping[str, Any]) -> Any:
        rating = raw.get("rating")
        if isinstance(rating, Mapping):
            return rating.get("reviews_count") or rating.get("count")
        return None


def _optional_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
