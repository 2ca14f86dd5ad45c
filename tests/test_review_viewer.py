"""
Tests for the review viewer HTTP API.
"""

import pytest
from fastapi.testclient import TestClient

from review_viewer import create_app
from ukulele_reviews import (
    Constants,
    MetadataBuilder,
    build_reviews_document,
    generate_diff_report,
    write_json,
)


@pytest.fixture
def data_dir(tmp_path, sample_reviews):
    report = generate_diff_report(None, sample_reviews)
    write_json(
        tmp_path / Constants.REVIEWS_FILE,
        build_reviews_document(sample_reviews, Constants.SOURCE_URL, 1700000000000, report),
    )
    write_json(
        tmp_path / Constants.METADATA_FILE,
        MetadataBuilder.build(sample_reviews, last_updated="2024-01-01T00:00:00.000Z").to_dict(),
    )
    return tmp_path


@pytest.fixture
def client(data_dir):
    return TestClient(create_app(data_dir))


class TestViewerApi:
    def test_index_page(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "Ukulele Reviews" in response.text

    def test_health(self, client, data_dir):
        assert client.get("/health").json() == {"status": "ok", "data_dir": str(data_dir)}

    def test_all_reviews_sorted_with_badges(self, client):
        data = client.get("/api/reviews").json()

        assert data["total"] == 3
        assert data["scrapedAt"] == 1700000000000
        assert [review["brand"] for review in data["reviews"]] == ["KALA", "KIWAYA", "MARTIN"]
        assert data["reviews"][0]["badge"] == {"text": "Recommended", "class": "badge-recommended"}
        assert data["reviews"][2]["badge"] == {"text": "", "class": ""}

    def test_filter_by_price_range(self, client):
        data = client.get("/api/reviews", params={"priceRange": "<50"}).json()

        assert [review["brand"] for review in data["reviews"]] == ["KALA"]

    def test_search(self, client):
        data = client.get("/api/reviews", params={"search": "ktc"}).json()

        assert [review["model"] for review in data["reviews"]] == ["KTC-1"]

    def test_filters(self, client):
        data = client.get("/api/filters").json()

        assert data["brands"] == ["KALA", "KIWAYA", "MARTIN"]
        assert data["sizes"][:2] == ["Soprano", "Concert"]
        assert data["priceRanges"] == list(Constants.PRICE_RANGES)
        assert data["lastUpdated"] == "2024-01-01T00:00:00.000Z"

    def test_data_files_served(self, client):
        response = client.get(f"/data/{Constants.REVIEWS_FILE}")

        assert response.status_code == 200
        assert response.json()["metadata"]["total"] == 3

    def test_unknown_data_file_is_404(self, client):
        assert client.get("/data/scrape-cache.json").status_code == 404


class TestViewerWithoutData:
    def test_empty_results(self, tmp_path):
        client = TestClient(create_app(tmp_path / "missing"))

        assert client.get("/api/reviews").json() == {"total": 0, "scrapedAt": None, "reviews": []}
        assert client.get("/api/filters").json()["brands"] == []
        assert client.get(f"/data/{Constants.REVIEWS_FILE}").status_code == 404
