#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
review_catalog.py - read side of the scraped review data

Loads ukulele-reviews.json / other-data.json from a file path or an
http(s) URL and provides the filter/sort rules used by the viewer.
Loading never raises: unreachable or malformed data yields empty
collections and an error log line.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Final, List, Optional, Sequence, Tuple, Union

import pandas as pd
import requests

LOGGER = logging.getLogger("review_catalog")

PRICE_ORDER: Final[Tuple[str, ...]] = ("<50", "50-100", "100-200", "200-500", "500+")
SIZE_DISPLAY_ORDER: Final[Tuple[str, ...]] = ("soprano", "concert", "baritone", "tenor", "other")

TOP_RATED_THRESHOLD: Final[float] = 8.5
RECOMMENDED_THRESHOLD: Final[float] = 7.5

BADGE_TOP_RATED: Final[float] = 9.0
BADGE_RECOMMENDED: Final[float] = 8.0

HTTP_TIMEOUT_SECONDS: Final[float] = 10.0

Source = Union[str, Path]


@dataclass(frozen=True)
class FilterOptions:
    brands: List[str] = field(default_factory=list)
    sizes: List[str] = field(default_factory=list)
    price_ranges: List[str] = field(default_factory=list)
    last_updated: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brands": list(self.brands),
            "sizes": list(self.sizes),
            "priceRanges": list(self.price_ranges),
            "lastUpdated": self.last_updated,
        }


@dataclass(frozen=True)
class RatingBadge:
    text: str = ""
    css_class: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"text": self.text, "class": self.css_class}


def _is_url(source: Source) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


def _read_json(source: Source, timeout: float) -> Any:
    if _is_url(source):
        response = requests.get(source, timeout=timeout)
        response.raise_for_status()
        return response.json()
    return json.loads(Path(source).read_text(encoding="utf-8"))


def load_reviews_data(
    source: Source,
    timeout: float = HTTP_TIMEOUT_SECONDS,
) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """(reviews, metadata) from a reviews file; ([], {}) on any failure."""
    try:
        data = _read_json(source, timeout)
    except (requests.RequestException, OSError, ValueError) as e:
        LOGGER.error(f"Failed to load reviews data from {source}: {e}")
        return [], {}

    if not isinstance(data, dict):
        LOGGER.error(f"Reviews data from {source} is not an object")
        return [], {}

    reviews = data.get("data") or []
    metadata = data.get("metadata") or {}
    if not isinstance(reviews, list):
        reviews = []
    if not isinstance(metadata, dict):
        metadata = {}

    return [review for review in reviews if isinstance(review, dict)], metadata


def sort_sizes(sizes: Sequence[str]) -> List[str]:
    """Display order first, anything else alphabetically after it."""
    def key(size: str) -> Tuple[int, Any]:
        lowered = size.lower()
        if lowered in SIZE_DISPLAY_ORDER:
            return (0, SIZE_DISPLAY_ORDER.index(lowered))
        return (1, lowered)

    return sorted(sizes, key=key)


def sort_price_ranges(price_ranges: Sequence[str]) -> List[str]:
    def key(price_range: str) -> Tuple[int, Any]:
        if price_range in PRICE_ORDER:
            return (0, PRICE_ORDER.index(price_range))
        return (1, price_range.lower())

    return sorted(price_ranges, key=key)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def load_filter_options(source: Source, timeout: float = HTTP_TIMEOUT_SECONDS) -> FilterOptions:
    try:
        data = _read_json(source, timeout)
    except (requests.RequestException, OSError, ValueError) as e:
        LOGGER.error(f"Failed to load filter options from {source}: {e}")
        return FilterOptions()

    if not isinstance(data, dict):
        LOGGER.error(f"Filter options from {source} are not an object")
        return FilterOptions()

    last_updated = data.get("lastUpdated")
    return FilterOptions(
        brands=sorted(_string_list(data.get("brands"))),
        sizes=sort_sizes(_string_list(data.get("sizes"))),
        price_ranges=sort_price_ranges(_string_list(data.get("priceRanges"))),
        last_updated=last_updated if isinstance(last_updated, str) else None,
    )


def filter_reviews(
    reviews: Sequence[Dict[str, Any]],
    search: str = "",
    brand: str = "",
    size: str = "",
    price_range: str = "",
) -> List[Dict[str, Any]]:
    """Filter, then sort: price low to high, top rated, recommended, rating.

    Returns the original review dicts, not copies.
    """
    records = list(reviews)
    if not records:
        return []

    frame = pd.DataFrame(records)
    for column in ("brand", "model", "size", "priceRange", "rating"):
        if column not in frame.columns:
            frame[column] = None

    mask = pd.Series(True, index=frame.index)

    term = (search or "").strip().lower()
    if term:
        brand_lower = frame["brand"].fillna("").astype(str).str.lower()
        model_lower = frame["model"].fillna("").astype(str).str.lower()
        combined = brand_lower + " " + model_lower
        mask &= (
            brand_lower.str.contains(term, regex=False)
            | model_lower.str.contains(term, regex=False)
            | combined.str.contains(term, regex=False)
        )

    if brand:
        mask &= frame["brand"] == brand
    if size:
        mask &= frame["size"] == size
    if price_range:
        mask &= frame["priceRange"] == price_range

    filtered = frame.loc[mask].copy()
    if filtered.empty:
        return []

    ratings = pd.to_numeric(filtered["rating"], errors="coerce").fillna(0.0)
    price_rank = {value: index for index, value in enumerate(PRICE_ORDER)}

    # Unlisted price ranges rank before "<50"
    filtered["_price_rank"] = filtered["priceRange"].map(price_rank).fillna(-1)
    filtered["_top_rated"] = (ratings >= TOP_RATED_THRESHOLD).astype(int)
    filtered["_recommended"] = (ratings >= RECOMMENDED_THRESHOLD).astype(int)
    filtered["_rating"] = ratings

    ordered = filtered.sort_values(
        by=["_price_rank", "_top_rated", "_recommended", "_rating"],
        ascending=[True, False, False, False],
        kind="mergesort",
    )
    return [records[index] for index in ordered.index]


def get_rating_badge(rating: Optional[float]) -> RatingBadge:
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        return RatingBadge()
    if rating >= BADGE_TOP_RATED:
        return RatingBadge("Top Rated", "badge-top-rated")
    if rating >= BADGE_RECOMMENDED:
        return RatingBadge("Recommended", "badge-recommended")
    return RatingBadge()
