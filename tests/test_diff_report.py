"""
Tests for url-keyed diffing between two runs.
"""

from dataclasses import replace

from ukulele_reviews import DiffReport, UkuleleReview, generate_diff_report


NEW_REVIEW = UkuleleReview(
    size="tenor",
    brand="KAMOA",
    model="E3",
    price_range="100-200",
    url="https://www.gotaukulele.com/2023/01/kamoa-e3-tenor-review.html",
    rating=8.2,
    review_date="2023-01-01",
)


class TestGenerateDiffReport:
    """Tests for generate_diff_report."""

    def test_no_previous_marks_everything_new(self, sample_reviews):
        report = generate_diff_report(None, sample_reviews, timestamp="2024-01-01T00:00:00.000Z")

        assert report.new == sample_reviews
        assert report.updated == []
        assert report.removed == []
        assert report.total_previous == 0
        assert report.total_current == 3
        assert report.timestamp == "2024-01-01T00:00:00.000Z"

    def test_empty_previous_behaves_like_none(self, sample_reviews):
        report = generate_diff_report([], sample_reviews)

        assert len(report.new) == 3
        assert report.total_previous == 0

    def test_identical_runs_have_no_changes(self, sample_reviews):
        report = generate_diff_report(sample_reviews, list(sample_reviews))

        assert (report.new, report.updated, report.removed) == ([], [], [])
        assert report.net_change == 0

    def test_one_added(self, sample_reviews):
        report = generate_diff_report(sample_reviews, sample_reviews + [NEW_REVIEW])

        assert report.new == [NEW_REVIEW]
        assert report.removed == []
        assert report.net_change == 1

    def test_one_removed_reports_url(self, sample_reviews):
        report = generate_diff_report(sample_reviews, sample_reviews[:2])

        assert report.removed == [sample_reviews[2].url]
        assert report.new == []
        assert report.net_change == -1

    def test_changed_field_is_an_update(self, sample_reviews):
        changed = replace(sample_reviews[0], rating=9.0)

        report = generate_diff_report(sample_reviews, [changed] + sample_reviews[1:])

        assert len(report.updated) == 1
        update = report.updated[0]
        assert update.url == changed.url
        assert update.previous.rating == 8.0
        assert update.current.rating == 9.0
        assert report.new == []
        assert report.removed == []

    def test_rating_int_and_float_are_equal(self, sample_reviews):
        stored = [review.to_dict() for review in sample_reviews]
        stored[0]["rating"] = 8
        previous = [UkuleleReview.from_dict(item) for item in stored]

        report = generate_diff_report(previous, sample_reviews)

        assert report.updated == []

    def test_added_and_removed_together(self, sample_reviews):
        report = generate_diff_report(sample_reviews, [sample_reviews[0], NEW_REVIEW])

        assert report.new == [NEW_REVIEW]
        assert sorted(report.removed) == sorted([sample_reviews[1].url, sample_reviews[2].url])


class TestDiffReportSerialization:
    """Tests for DiffReport.to_dict."""

    def test_shape(self, sample_reviews):
        changed = replace(sample_reviews[1], price_range="500+")
        report = generate_diff_report(
            sample_reviews,
            [sample_reviews[0], changed, NEW_REVIEW],
            timestamp="2024-05-01T12:00:00.000Z",
        )

        data = report.to_dict()

        assert data["timestamp"] == "2024-05-01T12:00:00.000Z"
        assert data["changes"]["new"] == [NEW_REVIEW.to_dict()]
        assert data["changes"]["updated"] == [
            {
                "url": changed.url,
                "previous": sample_reviews[1].to_dict(),
                "current": changed.to_dict(),
            }
        ]
        assert data["changes"]["removed"] == [sample_reviews[2].url]
        assert data["summary"] == {"totalPrevious": 3, "totalCurrent": 3, "netChange": 0}

    def test_empty_report(self):
        data = DiffReport(timestamp="t").to_dict()

        assert data["changes"] == {"new": [], "updated": [], "removed": []}
        assert data["summary"]["netChange"] == 0
