"""
Pytest configuration and fixtures for the ukulele review scraper tests.
"""

from unittest.mock import MagicMock

import pytest

from ukulele_reviews import BrandCatalog, ScraperConfig, StructuredLogger, UkuleleReview


REVIEW_PAGE_HTML = """<!DOCTYPE html>
<html>
<head><title>Ukulele Reviews</title></head>
<body>
<div class="post-body">
<b><span>Ukuleles £0 - £50</span></b><br/>
<b><a href="https://www.gotaukulele.com/2021/03/kala-brand-ka-s-soprano-review.html">Kala Brand KA-S Soprano</a></b> - 8.5 out of 10 (Mar 2021)<br/>
<a href="https://www.gotaukulele.com/2019/06/enya-euc-ms-review.html">Enya EUC-ms</a> - 7/10 (2019)<br/>
<a href="https://www.gotaukulele.com/p/about.html">About this site</a><br/>
<a href="https://www.gotaukulele.com/2020/01/short.html">Uke</a> - 9 out of 10 (Jan 2020)<br/>
<a href="https://www.example.com/2020/01/elsewhere.html">Elsewhere Tenor Review</a> - 9 out of 10 (Jan 2020)<br/>
<a href="https://www.gotaukulele.com/2018/01/flight-nus310-soprano.html">Flight NUS310 Soprano</a> - a lovely little uke<br/>
<b><span>Ukuleles £200 - £500</span></b><br/>
<a href="https://www.gotaukulele.com/2022/11/martin-s1-ukulele-review.html">Martin S1 Ukulele</a> - 9.1 out of 10 (Nov 2022)<br/>
<a href="https://www.gotaukulele.com/2020/08/kiwaya-ktc-1-concert-review.html">Kiwaya KTC-1 Concert</a> - 8.8/10 (Aug 2020)<br/>
<a href="https://www.gotaukulele.com/2017/05/ohana-bk-35-baritone.html">Ohana BK-35 Baritone</a> - 8 out of 10 (unknown)<br/>
</div>
<div class="cloud-label-widget-content">
<span><a href="/search/label/Kala">Kala</a></span>
<span><a href="/search/label/Kala%20Brand">Kala Brand</a></span>
<span><a href="/search/label/Martin">Martin</a></span>
<span><a href="/search/label/Kiwaya">Kiwaya</a></span>
<span><a href="/search/label/Enya">Enya</a></span>
</div>
</body>
</html>
"""

EMPTY_PAGE_HTML = """<html><body>
<div class="post-body"><p>Nothing to see here.</p></div>
<div class="cloud-label-widget-content"><a href="/search/label/Kala">Kala</a></div>
</body></html>
"""

NO_HEADINGS_PAGE_HTML = """<html><body>
<div class="post-body">
<a href="https://www.gotaukulele.com/2021/03/kala-ka-15s-review.html">Kala KA-15S Soprano</a> - 8 out of 10 (Mar 2021)<br/>
</div>
</body></html>
"""

EXPECTED_URLS = [
    "https://www.gotaukulele.com/2021/03/kala-brand-ka-s-soprano-review.html",
    "https://www.gotaukulele.com/2019/06/enya-euc-ms-review.html",
    "https://www.gotaukulele.com/2022/11/martin-s1-ukulele-review.html",
    "https://www.gotaukulele.com/2020/08/kiwaya-ktc-1-concert-review.html",
    "https://www.gotaukulele.com/2017/05/ohana-bk-35-baritone.html",
]


@pytest.fixture
def logger():
    return StructuredLogger(name="ukulele_scraper.tests")


@pytest.fixture
def brand_catalog():
    return BrandCatalog.from_names(["Kala", "Kala Brand", "Martin", "Kiwaya", "Enya"])


@pytest.fixture
def sample_reviews():
    return [
        UkuleleReview(
            size="soprano",
            brand="KALA",
            model="KA-15S",
            price_range="<50",
            url="https://www.gotaukulele.com/2021/03/kala-ka-15s-review.html",
            rating=8.0,
            review_date="2021-03-01",
        ),
        UkuleleReview(
            size="concert",
            brand="KIWAYA",
            model="KTC-1",
            price_range="200-500",
            url="https://www.gotaukulele.com/2020/08/kiwaya-ktc-1-concert-review.html",
            rating=8.8,
            review_date="2020-08-01",
        ),
        UkuleleReview(
            size="tenor",
            brand="MARTIN",
            model="T1K",
            price_range="500+",
            url="https://www.gotaukulele.com/2019/02/martin-t1k-tenor-review.html",
            rating=None,
            review_date=None,
        ),
    ]


@pytest.fixture
def scraper_config(tmp_path):
    return ScraperConfig(output_dir=str(tmp_path / "data"))


@pytest.fixture
def http_client():
    """HttpClient stand-in serving the sample index page."""
    client = MagicMock()
    client.get.return_value = REVIEW_PAGE_HTML
    return client


@pytest.fixture
def review_page_html():
    return REVIEW_PAGE_HTML


@pytest.fixture
def empty_page_html():
    return EMPTY_PAGE_HTML


@pytest.fixture
def no_headings_page_html():
    return NO_HEADINGS_PAGE_HTML


@pytest.fixture
def expected_urls():
    return list(EXPECTED_URLS)
