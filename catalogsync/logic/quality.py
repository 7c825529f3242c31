"""Quality tier scoring for normalized listings."""

from __future__ import annotations

from typing import Mapping

HIGH_THRESHOLD = 70
MEDIUM_THRESHOLD = 40

BADGE_POINTS = {
    "best_seller": 10,
    "marketplace_choice": 10,
}


def rating_volume_points(rating: float, reviews: int) -> int:
    """Rating level weighted by review volume, 0-40."""
    if rating >= 4.0 and reviews >= 100:
        return 40
    if rating >= 3.5 and reviews >= 50:
        return 30
    if rating >= 3.0:
        return 20
    return 0


def review_volume_points(reviews: int) -> int:
    """Review volume tier alone, 0-30."""
    if reviews >= 1000:
        return 30
    if reviews >= 100:
        return 20
    if reviews >= 10:
        return 10
    return 0


def badge_points(badges: Mapping[str, bool]) -> int:
    """Merchant badge presence, 0-20."""
    return sum(points for name, points in BADGE_POINTS.items() if badges.get(name))


def title_points(title: str | None) -> int:
    """Title length heuristic, 0-10."""
    length = len(title or "")
    if length >= 50:
        return 10
    if length >= 20:
        return 5
    return 0


def score_listing(
    *, rating: float, reviews: int, badges: Mapping[str, bool], title: str | None
) -> int:
    return (
        rating_volume_points(rating, reviews)
        + review_volume_points(reviews)
        + badge_points(badges)
        + title_points(title)
    )


def quality_tier(score: int) -> str:
    if score >= HIGH_THRESHOLD:
        return "high"
    if score >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"
