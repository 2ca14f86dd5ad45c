"""
Tests for loading, filtering and ordering review data for display.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from review_catalog import (
    FilterOptions,
    filter_reviews,
    get_rating_badge,
    load_filter_options,
    load_reviews_data,
    sort_price_ranges,
    sort_sizes,
)


def _review(brand, model, size, price_range, rating):
    return {
        "size": size,
        "brand": brand,
        "model": model,
        "priceRange": price_range,
        "url": f"https://www.gotaukulele.com/{brand.lower()}-{model.lower()}.html",
        "rating": rating,
        "reviewDate": None,
    }


@pytest.fixture
def reviews():
    return [
        _review("MARTIN", "S1", "soprano", "200-500", 9.0),
        _review("KALA", "KA-15S", "soprano", "<50", 7.0),
        _review("KALA", "KA-C", "concert", "<50", 8.6),
        _review("ENYA", "EUC-ms", "concert", "<50", 7.8),
        _review("MYSTERY", "X", "other", "unknown", 5.0),
        _review("FLIGHT", "NUS310", "soprano", "<50", None),
    ]


class TestFilterReviews:
    """Tests for filter_reviews."""

    def test_default_ordering(self, reviews):
        ordered = filter_reviews(reviews)

        assert [(r["brand"], r["model"]) for r in ordered] == [
            ("MYSTERY", "X"),
            ("KALA", "KA-C"),
            ("ENYA", "EUC-ms"),
            ("KALA", "KA-15S"),
            ("FLIGHT", "NUS310"),
            ("MARTIN", "S1"),
        ]

    def test_returns_original_dicts(self, reviews):
        assert all(any(item is original for original in reviews) for item in filter_reviews(reviews))

    def test_search_matches_brand_model_or_both(self, reviews):
        assert [r["model"] for r in filter_reviews(reviews, search="kala")] == ["KA-C", "KA-15S"]
        assert [r["brand"] for r in filter_reviews(reviews, search="euc")] == ["ENYA"]
        assert [r["model"] for r in filter_reviews(reviews, search="Kala KA-15")] == ["KA-15S"]

    def test_exact_field_filters(self, reviews):
        assert [r["model"] for r in filter_reviews(reviews, brand="KALA", size="concert")] == ["KA-C"]
        assert [r["brand"] for r in filter_reviews(reviews, price_range="200-500")] == ["MARTIN"]

    def test_no_match(self, reviews):
        assert filter_reviews(reviews, brand="OHANA") == []

    def test_empty_input(self):
        assert filter_reviews([]) == []

    def test_missing_columns_tolerated(self):
        records = [{"brand": "KALA", "url": "a"}, {"brand": "ENYA", "url": "b", "rating": 9}]

        assert [r["brand"] for r in filter_reviews(records)] == ["ENYA", "KALA"]


class TestRatingBadge:
    @pytest.mark.parametrize(
        "rating, text, css_class",
        [
            (9.5, "Top Rated", "badge-top-rated"),
            (9.0, "Top Rated", "badge-top-rated"),
            (8.0, "Recommended", "badge-recommended"),
            (7.9, "", ""),
            (None, "", ""),
            ("9", "", ""),
            (True, "", ""),
        ],
    )
    def test_badge(self, rating, text, css_class):
        badge = get_rating_badge(rating)

        assert (badge.text, badge.css_class) == (text, css_class)

    def test_to_dict(self):
        assert get_rating_badge(9.1).to_dict() == {"text": "Top Rated", "class": "badge-top-rated"}


class TestOrdering:
    def test_sort_sizes(self):
        assert sort_sizes(["Tenor", "Other", "Sopranino", "Soprano", "Baritone", "Concert"]) == [
            "Soprano", "Concert", "Baritone", "Tenor", "Other", "Sopranino"
        ]

    def test_sort_price_ranges(self):
        assert sort_price_ranges(["500+", "<50", "200-500", "odd", "50-100"]) == [
            "<50", "50-100", "200-500", "500+", "odd"
        ]


class TestLoading:
    """Tests for tolerant loading from files and URLs."""

    def test_load_reviews_from_file(self, tmp_path, reviews):
        path = tmp_path / "ukulele-reviews.json"
        path.write_text(json.dumps({"data": reviews, "metadata": {"scrapedAt": 1}}), encoding="utf-8")

        loaded, metadata = load_reviews_data(path)

        assert loaded == reviews
        assert metadata == {"scrapedAt": 1}

    @pytest.mark.parametrize(
        "content",
        ["not json", json.dumps([1, 2]), json.dumps({"data": "x", "metadata": []})],
    )
    def test_bad_reviews_file_yields_empty(self, tmp_path, content):
        path = tmp_path / "ukulele-reviews.json"
        path.write_text(content, encoding="utf-8")

        assert load_reviews_data(path) == ([], {})

    def test_missing_reviews_file_yields_empty(self, tmp_path):
        assert load_reviews_data(tmp_path / "absent.json") == ([], {})

    def test_non_object_review_entries_dropped(self, tmp_path, reviews):
        path = tmp_path / "ukulele-reviews.json"
        path.write_text(json.dumps({"data": [reviews[0], "junk", 3]}), encoding="utf-8")

        loaded, _ = load_reviews_data(path)

        assert loaded == [reviews[0]]

    def test_load_reviews_from_url(self, reviews):
        response = MagicMock()
        response.json.return_value = {"data": reviews, "metadata": {}}

        with patch("review_catalog.requests.get", return_value=response) as get:
            loaded, _ = load_reviews_data("https://example.com/data/ukulele-reviews.json", timeout=3)

        get.assert_called_once_with("https://example.com/data/ukulele-reviews.json", timeout=3)
        assert loaded == reviews

    def test_unreachable_url_yields_empty(self):
        with patch("review_catalog.requests.get", side_effect=requests.ConnectionError("down")):
            assert load_reviews_data("https://example.com/data/ukulele-reviews.json") == ([], {})

    def test_load_filter_options(self, tmp_path):
        path = tmp_path / "other-data.json"
        path.write_text(
            json.dumps(
                {
                    "lastUpdated": "2024-01-01T00:00:00.000Z",
                    "brands": ["MARTIN", "KALA", 7],
                    "sizes": ["Tenor", "Soprano"],
                    "priceRanges": ["500+", "<50"],
                }
            ),
            encoding="utf-8",
        )

        options = load_filter_options(path)

        assert options == FilterOptions(
            brands=["KALA", "MARTIN"],
            sizes=["Soprano", "Tenor"],
            price_ranges=["<50", "500+"],
            last_updated="2024-01-01T00:00:00.000Z",
        )

    def test_missing_filter_options_yield_empty(self, tmp_path):
        assert load_filter_options(tmp_path / "absent.json").to_dict() == {
            "brands": [],
            "sizes": [],
            "priceRanges": [],
            "lastUpdated": None,
        }
