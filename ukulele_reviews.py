#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
ukulele_reviews.py - Got A Ukulele review index scraper v1.0

━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
Architecture Decision Record (ADR)
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

ADR-001: Price bracket attribution by document position
=========================================
- Status: ACCEPTED
- Context: The index page groups reviews under bold price headings
           ("Ukuleles £0 - £50", ...). The heading is not an ancestor
           of the review links, only an earlier node in the document.
- Decision: Number every node of the content region in document order.
            Keep heading positions in a sorted list and bisect it: a link
            belongs to the nearest heading at or before its own position.
            A link above every heading falls back to the first heading.
- Consequences:
  + Attribution is independent of nesting depth
  + Testable without a live page

ADR-002: Single diff contract
=========================================
- Status: ACCEPTED
- Context: The scraper and the change detector both compare runs.
- Decision: One function, generate_diff_report(). `removed` holds bare
            URLs, `updated` holds same-URL records that are not equal.
- Consequences:
  + Both callers report identical results

ADR-003: All-or-nothing output
=========================================
- Status: ACCEPTED
- Decision: Fetch, extraction, the zero-review check and metadata
            validation all complete before the first write. Every write
            goes through a temp file and an atomic replace.
- Consequences:
  + A failed run leaves the previous output untouched

【Output files】
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
- ukulele-reviews.json : {data: [...], metadata: {sourceUrl, scrapedAt, total, diffReport}}
- other-data.json      : {lastUpdated, brands, sizes, priceRanges}

【Dependencies】
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
- requests: ^2.31.0
- beautifulsoup4: ^4.12.0
"""

from __future__ import annotations

import bisect
import hashlib
import json
import logging
import os
import re
import sys
import tempfile
import time
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import (
    Any,
    Dict,
    Final,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup, Comment, NavigableString, Tag

# ============================================================================
# Types / Protocols
# ============================================================================


class LoggerProtocol(Protocol):
    """Logger interface"""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


class ChangeTrackerProtocol(Protocol):
    """Per-URL change cache (see change_detector.py)"""

    def load_cache(self) -> Any: ...
    def save_cache(self) -> bool: ...
    def start_new_run(self) -> None: ...
    def is_new_or_updated(self, url: str, content_hash: Optional[str] = None) -> bool: ...
    def update_cache(self, url: str, content_hash: Optional[str] = None, title: Optional[str] = None, **extra: Any) -> None: ...
    def get_change_stats(self, current_urls: Sequence[str]) -> Any: ...


# ============================================================================
# Constants
# ============================================================================

class Constants:
    """Application constants"""

    SOURCE_URL: Final[str] = "https://www.gotaukulele.com/p/ukulele-reviews.html"
    SOURCE_DOMAIN: Final[str] = "gotaukulele.com"

    USER_AGENT: Final[str] = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )
    REQUEST_TIMEOUT_SECONDS: Final[float] = 10.0

    # Output
    DEFAULT_OUTPUT_DIR: Final[str] = "./public/data"
    REVIEWS_FILE: Final[str] = "ukulele-reviews.json"
    METADATA_FILE: Final[str] = "other-data.json"
    CACHE_FILE: Final[str] = "scrape-cache.json"

    # Selectors
    TAG_CLOUD_SELECTOR: Final[str] = ".cloud-label-widget-content a"
    CONTENT_SELECTORS: Final[Tuple[str, ...]] = (".post-body", "body")
    PRICE_HEADING_SELECTOR: Final[str] = "b > span"

    # Heading text on the index page -> price bracket
    PRICE_HEADINGS: Final[Tuple[Tuple[str, str], ...]] = (
        ("Ukuleles £0 - £50", "<50"),
        ("Ukuleles £50- £100", "50-100"),
        ("Ukuleles £100 - £200", "100-200"),
        ("Ukuleles £200 - £500", "200-500"),
        ("Ukuleles £500 plus", "500+"),
    )

    PRICE_RANGES: Final[Tuple[str, ...]] = ("<50", "50-100", "100-200", "200-500", "500+")
    UNKNOWN_PRICE_RANGE: Final[str] = "unknown"

    SIZES: Final[Tuple[str, ...]] = ("soprano", "sopranino", "concert", "tenor", "baritone", "other")
    METADATA_SIZES: Final[Tuple[str, ...]] = ("Soprano", "Concert", "Tenor", "Baritone", "Sopranino", "Other")
    OTHER_SIZE: Final[str] = "other"

    # Checked in this order, first hit wins
    SIZE_KEYWORDS: Final[Tuple[Tuple[str, Tuple[str, ...]], ...]] = (
        ("soprano", ("soprano",)),
        ("sopranino", ("sopranino",)),
        ("concert", ("concert",)),
        ("tenor", ("tenor",)),
        ("baritone", ("baritone", "bari ")),
    )
    MODEL_SIZE_WORDS: Final[Tuple[str, ...]] = ("sopranino", "soprano", "concert", "tenor", "baritone")

    # Titles whose size cannot be read from the text
    EDGE_CASE_SIZES: Final[Mapping[str, str]] = {
        "enya euc-ms": "concert",
    }

    MODEL_NOISE_WORDS: Final[Tuple[str, ...]] = (" ukuleles", " ukulele", " uke", " review")
    UNKNOWN_MODEL: Final[str] = "Unknown Model"
    UNKNOWN_BRAND: Final[str] = "UNKNOWN"

    # Link filtering
    INDEX_PAGE_MARKER: Final[str] = "/p/"
    MIN_LINK_TEXT_LENGTH: Final[int] = 5
    MAX_TRAILING_TEXT_LENGTH: Final[int] = 100
    TRAILING_TEXT_BOUNDARY_TAGS: Final[frozenset] = frozenset({"br", "p", "div"})

    TOP_BRANDS_REPORTED: Final[int] = 10
    LOG_FILE_MAX_BYTES: Final[int] = 10 * 1024 * 1024
    LOG_FILE_BACKUP_COUNT: Final[int] = 2


# ============================================================================
# Enums
# ============================================================================

class ScrapeExitCode(Enum):
    """Process exit codes"""
    SUCCESS = 0
    FAILURE = 2


# ============================================================================
# Configuration
# ============================================================================

_FALSE_VALUES: Final[frozenset] = frozenset({"0", "false", "no", "off"})
_LOG_LEVELS: Final[Tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class ScraperConfig:
    """Scraper configuration (validated)"""

    output_dir: str = Constants.DEFAULT_OUTPUT_DIR
    source_url: str = Constants.SOURCE_URL
    source_domain: str = Constants.SOURCE_DOMAIN
    request_timeout: float = Constants.REQUEST_TIMEOUT_SECONDS
    user_agent: str = Constants.USER_AGENT
    log_level: str = "INFO"
    log_file: Optional[str] = None
    track_changes: bool = True

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        errors: List[str] = []

        if not self.source_url.startswith(("http://", "https://")):
            errors.append("source_url must start with http:// or https://")

        if not self.source_domain:
            errors.append("source_domain must not be empty")

        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive")

        if not self.output_dir:
            errors.append("output_dir must not be empty")

        if self.log_level.upper() not in _LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(_LOG_LEVELS)}")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(errors))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> ScraperConfig:
        """Build the configuration from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            output_dir=env.get("UKULELE_OUTPUT_DIR", Constants.DEFAULT_OUTPUT_DIR),
            source_url=env.get("UKULELE_SOURCE_URL", Constants.SOURCE_URL),
            request_timeout=float(env.get("HTTP_TIMEOUT", Constants.REQUEST_TIMEOUT_SECONDS)),
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_file=env.get("LOG_FILE") or None,
            track_changes=env.get("UKULELE_TRACK_CHANGES", "true").strip().lower() not in _FALSE_VALUES,
        )

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level.upper(), logging.INFO)


# ============================================================================
# Data classes
# ============================================================================

def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"field '{key}' must be a string, got {type(value).__name__}")
    return value


@dataclass(frozen=True, slots=True)
class UkuleleReview:
    """One review record (keyed by url)"""
    size: str
    brand: str
    model: str
    price_range: str
    url: str
    rating: Optional[float] = None
    review_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size,
            "brand": self.brand,
            "model": self.model,
            "priceRange": self.price_range,
            "url": self.url,
            "rating": self.rating,
            "reviewDate": self.review_date,
        }

    @classmethod
    def from_dict(cls, data: Any) -> UkuleleReview:
        """Strict deserialization, raises ValueError on any shape problem."""
        if not isinstance(data, dict):
            raise ValueError(f"review must be an object, got {type(data).__name__}")

        rating = data.get("rating")
        if rating is not None:
            if isinstance(rating, bool) or not isinstance(rating, (int, float)):
                raise ValueError("field 'rating' must be a number or null")
            rating = float(rating)

        review_date = data.get("reviewDate")
        if review_date is not None and not isinstance(review_date, str):
            raise ValueError("field 'reviewDate' must be a string or null")

        return cls(
            size=_require_str(data, "size"),
            brand=_require_str(data, "brand"),
            model=_require_str(data, "model"),
            price_range=_require_str(data, "priceRange"),
            url=_require_str(data, "url"),
            rating=rating,
            review_date=review_date,
        )

    def content_hash(self) -> str:
        """md5 of the canonical JSON form"""
        payload = json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False)
        return hashlib.md5(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class PriceHeading:
    """Price section heading found in the content region"""
    position: int
    text: str
    price_range: str


@dataclass(frozen=True, slots=True)
class ReviewLink:
    """Qualifying review anchor with its trailing rating text parsed"""
    title: str
    url: str
    rating: float
    date_text: str
    price_range: str
    position: int


@dataclass(frozen=True)
class BrandCatalog:
    """Known brand names, uppercase, longest first."""
    names: Tuple[str, ...] = ()

    @classmethod
    def from_names(cls, names: Iterable[str]) -> BrandCatalog:
        unique = {name.strip().upper() for name in names if name and name.strip()}
        return cls(tuple(sorted(unique, key=lambda name: (-len(name), name))))

    def match(self, title: str) -> Optional[str]:
        title_upper = title.upper()
        for name in self.names:
            if name in title_upper:
                return name
        return None

    def __len__(self) -> int:
        return len(self.names)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)


@dataclass(frozen=True)
class ParsedPage:
    """Result of parsing one index page"""
    brand_catalog: BrandCatalog
    reviews: List[UkuleleReview]
    heading_count: int = 0


@dataclass(frozen=True)
class FilterMetadata:
    """Filter options written next to the review data"""
    last_updated: str
    brands: List[str]
    sizes: List[str]
    price_ranges: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastUpdated": self.last_updated,
            "brands": list(self.brands),
            "sizes": list(self.sizes),
            "priceRanges": list(self.price_ranges),
        }


@dataclass(frozen=True)
class ReviewUpdate:
    url: str
    previous: UkuleleReview
    current: UkuleleReview

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "previous": self.previous.to_dict(),
            "current": self.current.to_dict(),
        }


@dataclass
class DiffReport:
    """new / updated / removed between two runs, keyed by url"""
    timestamp: str
    new: List[UkuleleReview] = field(default_factory=list)
    updated: List[ReviewUpdate] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    total_previous: int = 0
    total_current: int = 0

    @property
    def net_change(self) -> int:
        return self.total_current - self.total_previous

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "changes": {
                "new": [review.to_dict() for review in self.new],
                "updated": [update.to_dict() for update in self.updated],
                "removed": list(self.removed),
            },
            "summary": {
                "totalPrevious": self.total_previous,
                "totalCurrent": self.total_current,
                "netChange": self.net_change,
            },
        }


@dataclass
class ScrapeResult:
    """Outcome of one successful run"""
    reviews: List[UkuleleReview]
    metadata: FilterMetadata
    diff_report: DiffReport
    source_url: str
    scraped_at: int
    correlation_id: str
    duration_seconds: float = 0.0
    new_brands: List[str] = field(default_factory=list)

    def to_output(self) -> Dict[str, Any]:
        return build_reviews_document(self.reviews, self.source_url, self.scraped_at, self.diff_report)


# ============================================================================
# Exceptions
# ============================================================================

class ScraperException(Exception):
    """Base scraper exception"""

    def __init__(self, message: str, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        super().__init__(f"[{self.correlation_id}] {message}")


class FetchError(ScraperException):
    """Network failure, timeout, non-2xx or non-HTML response"""
    pass


class NoReviewsFoundError(ScraperException):
    pass


class MetadataValidationError(ScraperException):
    """Size or price range outside the allow-list"""
    pass


class PersistenceError(ScraperException):
    pass


# ============================================================================
# Infrastructure: logging
# ============================================================================

class StructuredLogger:
    """Leveled logger that prefixes every line with the run's correlation id"""

    def __init__(
        self,
        name: str = "ukulele_scraper",
        level: int = logging.INFO,
        log_file: Optional[str] = None,
    ):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)
        self._correlation_id: Optional[str] = None

        if not self._logger.handlers:
            formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(level)
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

            if log_file:
                file_handler = RotatingFileHandler(
                    log_file,
                    maxBytes=Constants.LOG_FILE_MAX_BYTES,
                    backupCount=Constants.LOG_FILE_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setLevel(level)
                file_handler.setFormatter(formatter)
                self._logger.addHandler(file_handler)

    @property
    def correlation_id(self) -> Optional[str]:
        return self._correlation_id

    def set_correlation_id(self, correlation_id: str) -> None:
        self._correlation_id = correlation_id

    def _format_message(self, msg: str) -> str:
        if self._correlation_id:
            return f"[{self._correlation_id}] {msg}"
        return msg

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.debug(self._format_message(msg), *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.info(self._format_message(msg), *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.warning(self._format_message(msg), *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.error(self._format_message(msg), *args, **kwargs)


# ============================================================================
# Infrastructure: files
# ============================================================================

def utc_now_iso() -> str:
    """UTC timestamp in the same shape as JavaScript's toISOString()"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@contextmanager
def atomic_write(filepath: Path) -> Iterator[Path]:
    """Write to a temp file in the same directory, then replace the target."""
    temp_fd, temp_path = tempfile.mkstemp(
        dir=filepath.parent,
        prefix=f".{filepath.name}.",
        suffix=".tmp",
    )
    temp_filepath = Path(temp_path)

    try:
        os.close(temp_fd)
        yield temp_filepath
        temp_filepath.replace(filepath)
    except Exception:
        if temp_filepath.exists():
            temp_filepath.unlink()
        raise


def write_json(filepath: Path, data: Any) -> None:
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with atomic_write(filepath) as temp_path:
        temp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


# ============================================================================
# Infrastructure: HTTP client
# ============================================================================

class HttpClient:
    """Single GET with a fixed user agent and timeout. No retries."""

    def __init__(
        self,
        user_agent: str = Constants.USER_AGENT,
        timeout: float = Constants.REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._user_agent = user_agent
        self._timeout = timeout
        self._session = session or requests.Session()
        self._logger = logger or StructuredLogger()

    def get(self, url: str) -> str:
        headers = {
            "User-Agent": self._user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }

        self._logger.debug(f"Making request to: {url}")
        try:
            response = self._session.get(url, headers=headers, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            self._logger.error(f"Request failed for {url}: {e}")
            raise FetchError(f"Request failed for {url}: {e}") from e

        content_type = response.headers.get("Content-Type", "")
        if content_type and "html" not in content_type.lower():
            raise FetchError(f"Expected HTML from {url}, got '{content_type}'")

        if response.encoding is None:
            response.encoding = response.apparent_encoding

        self._logger.debug(f"Request successful: {url}")
        return response.text

    def close(self) -> None:
        self._session.close()


# ============================================================================
# Domain: field normalization
# ============================================================================

class ReviewFieldNormalizer:
    """Derives size, brand, model, date and price bracket from page text"""

    MONTHS: Final[Mapping[str, str]] = {
        "jan": "01", "feb": "02", "mar": "03", "apr": "04",
        "may": "05", "jun": "06", "jul": "07", "aug": "08",
        "sep": "09", "oct": "10", "nov": "11", "dec": "12",
    }

    MONTH_YEAR_PATTERN = re.compile(r"\b([a-z]{3})\s+(\d{4})", re.IGNORECASE)
    YEAR_PATTERN = re.compile(r"(\d{4})")
    CURRENCY_PATTERN = re.compile(r"[£$€]")
    NOISE_PATTERNS: Tuple[re.Pattern, ...] = tuple(
        re.compile(re.escape(word), re.IGNORECASE) for word in Constants.MODEL_NOISE_WORDS
    )

    @staticmethod
    def edge_case_size(title: str) -> Optional[str]:
        return Constants.EDGE_CASE_SIZES.get(title.lower().strip())

    @classmethod
    def extract_size(cls, title: str) -> str:
        edge_case = cls.edge_case_size(title)
        if edge_case:
            return edge_case

        lower_title = title.lower()
        for size, keywords in Constants.SIZE_KEYWORDS:
            if any(keyword in lower_title for keyword in keywords):
                return size

        return Constants.OTHER_SIZE

    @staticmethod
    def find_best_matching_brand(title: str, catalog: BrandCatalog) -> str:
        """Longest catalog brand contained in the title, else its first word."""
        brand = catalog.match(title)
        if brand:
            return brand

        words = title.split()
        return words[0].upper() if words else Constants.UNKNOWN_BRAND

    @classmethod
    def extract_brand_and_model(cls, title: str, catalog: BrandCatalog) -> Tuple[str, str]:
        brand = cls.find_best_matching_brand(title, catalog)

        clean_title = title
        for pattern in cls.NOISE_PATTERNS:
            clean_title = pattern.sub("", clean_title)
        clean_title = clean_title.strip()

        brand_prefix = re.compile(rf"^{re.escape(brand)}\s*", re.IGNORECASE)
        model = brand_prefix.sub("", clean_title).strip() or Constants.UNKNOWN_MODEL

        # Trailing size word is dropped only when something is left
        model_words = model.split()
        if len(model_words) > 1 and model_words[-1].lower() in Constants.MODEL_SIZE_WORDS:
            model = " ".join(model_words[:-1])

        return brand, model

    @classmethod
    def parse_review_date(cls, date_str: Optional[str]) -> Optional[str]:
        """'Mar 2021' -> '2021-03-01', '2019' -> '2019-01-01', else None"""
        if not date_str:
            return None

        clean_date = date_str.replace("(", "").replace(")", "").strip()

        for match in cls.MONTH_YEAR_PATTERN.finditer(clean_date):
            month = cls.MONTHS.get(match.group(1).lower())
            if month:
                return f"{match.group(2)}-{month}-01"

        year_match = cls.YEAR_PATTERN.search(clean_date)
        if year_match:
            return f"{year_match.group(1)}-01-01"

        return None

    @classmethod
    def map_price_range(cls, price_range_text: str) -> str:
        clean_text = cls.CURRENCY_PATTERN.sub("", price_range_text).lower().strip()

        if "500" in clean_text and ("plus" in clean_text or "+" in clean_text):
            return "500+"
        if "200 -" in clean_text or "200-" in clean_text:
            return "200-500"
        if "100 -" in clean_text or "100-" in clean_text:
            return "100-200"
        if "50-" in clean_text or "50 -" in clean_text:
            return "50-100"
        if "0 -" in clean_text or clean_text.startswith("0-"):
            return "<50"

        return Constants.UNKNOWN_PRICE_RANGE


# ============================================================================
# Domain: document positions / price headings
# ============================================================================

def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


class DocumentPositions:
    """Document-order number of every node below a root"""

    def __init__(self, root: Tag):
        self._positions: Dict[int, int] = {
            id(node): position for position, node in enumerate(root.descendants)
        }

    def of(self, node: Any) -> int:
        return self._positions[id(node)]

    def __len__(self) -> int:
        return len(self._positions)


class PriceHeadingIndex:
    """Price headings sorted by position, searched with bisect"""

    def __init__(self, headings: Iterable[PriceHeading] = ()):
        self._headings: List[PriceHeading] = sorted(headings, key=lambda heading: heading.position)
        self._positions: List[int] = [heading.position for heading in self._headings]

    def __len__(self) -> int:
        return len(self._headings)

    @property
    def headings(self) -> Tuple[PriceHeading, ...]:
        return tuple(self._headings)

    def heading_for(self, position: int) -> Optional[PriceHeading]:
        """Nearest heading at or before `position`; the first heading if none precedes."""
        if not self._headings:
            return None

        index = bisect.bisect_right(self._positions, position) - 1
        if index < 0:
            return self._headings[0]
        return self._headings[index]

    def price_range_for(self, position: int) -> str:
        heading = self.heading_for(position)
        return heading.price_range if heading else Constants.UNKNOWN_PRICE_RANGE


# ============================================================================
# Application: extractors
# ============================================================================

class BrandCatalogExtractor:
    """Reads brand names from the label tag cloud widget"""

    def __init__(self, logger: Optional[LoggerProtocol] = None):
        self._logger = logger or StructuredLogger()

    def extract(self, soup: BeautifulSoup) -> BrandCatalog:
        names = [link.get_text(strip=True) for link in soup.select(Constants.TAG_CLOUD_SELECTOR)]
        catalog = BrandCatalog.from_names(names)
        self._logger.info(f"Extracted {len(catalog)} brands from tag cloud")
        return catalog


class ReviewLinkExtractor:
    """Finds review anchors and the rating/date text that follows them

    Page structure (index page, main content):
        <b><span>Ukuleles £0 - £50</span></b><br/>
        <b><a href=".../kala-ka-s-review.html">Kala KA-S Soprano</a></b> - 8.5 out of 10 (Mar 2021)<br/>
        <a href=".../enya-review.html">Enya EUC-ms</a> - 7/10 (2019)<br/>

    An anchor qualifies when its href contains the source domain, does not
    point at a /p/ index page and its text is at least 5 characters long.
    Anchors without a rating/date suffix are skipped silently.
    """

    RATING_PATTERNS: Tuple[re.Pattern, ...] = (
        re.compile(r"(\d+(?:\.\d+)?)\s*(?:out\s*of\s*10|/10)\s*\(([^)]+)\)", re.IGNORECASE),
        re.compile(r"(\d+(?:\.\d+)?)\s*(?:out\s*10|/10)\s*\(([^)]+)\)", re.IGNORECASE),
    )

    def __init__(
        self,
        source_url: str = Constants.SOURCE_URL,
        source_domain: str = Constants.SOURCE_DOMAIN,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._source_url = source_url
        self._source_domain = source_domain
        self._logger = logger or StructuredLogger()

    def find_price_headings(self, content: Tag, positions: DocumentPositions) -> PriceHeadingIndex:
        titles = [title for title, _ in Constants.PRICE_HEADINGS]
        headings: List[PriceHeading] = []

        for span in content.select(Constants.PRICE_HEADING_SELECTOR):
            text = normalize_text(span.get_text())
            if not any(text.startswith(title) for title in titles):
                continue
            price_range = ReviewFieldNormalizer.map_price_range(text)
            self._logger.debug(f"Price heading '{text}' -> {price_range}")
            headings.append(PriceHeading(position=positions.of(span), text=text, price_range=price_range))

        self._logger.info(f"Found {len(headings)} price range headings")
        return PriceHeadingIndex(headings)

    def extract(
        self,
        content: Tag,
        headings: PriceHeadingIndex,
        positions: DocumentPositions,
    ) -> List[ReviewLink]:
        links: List[ReviewLink] = []

        for anchor in content.select(f'a[href*="{self._source_domain}"]'):
            href = (anchor.get("href") or "").strip()
            title = normalize_text(anchor.get_text())

            if not href or Constants.INDEX_PAGE_MARKER in href or len(title) < Constants.MIN_LINK_TEXT_LENGTH:
                continue

            match = self._match_rating(self._collect_trailing_text(anchor))
            if match is None:
                self._logger.debug(f"No rating found after link: {title}")
                continue

            position = positions.of(anchor)
            links.append(
                ReviewLink(
                    title=title,
                    url=href if href.startswith("http") else urljoin(self._source_url, href),
                    rating=float(match.group(1)),
                    date_text=match.group(2).strip(),
                    price_range=headings.price_range_for(position),
                    position=position,
                )
            )

        return links

    def _match_rating(self, text: str) -> Optional[re.Match]:
        text = text.strip()
        for pattern in self.RATING_PATTERNS:
            match = pattern.search(text)
            if match:
                return match
        return None

    def _collect_trailing_text(self, anchor: Tag) -> str:
        text = self._collect_sibling_text(anchor)

        # <b><a>Title</a></b> - 8 out of 10 (...): the text sits after the <b>
        parent = anchor.parent
        if not text.strip() and isinstance(parent, Tag) and parent.name == "b":
            text = self._collect_sibling_text(parent)

        return text

    @staticmethod
    def _collect_sibling_text(node: Tag) -> str:
        parts: List[str] = []
        length = 0

        for sibling in node.next_siblings:
            if length >= Constants.MAX_TRAILING_TEXT_LENGTH:
                break
            if isinstance(sibling, Comment):
                continue
            if isinstance(sibling, NavigableString):
                chunk = str(sibling)
            elif isinstance(sibling, Tag):
                if sibling.name in Constants.TRAILING_TEXT_BOUNDARY_TAGS:
                    break
                chunk = sibling.get_text()
            else:
                continue
            parts.append(chunk)
            length += len(chunk)

        return "".join(parts)


class UkuleleReviewParser:
    """Index page HTML -> brand catalog + review records"""

    def __init__(
        self,
        source_url: str = Constants.SOURCE_URL,
        source_domain: str = Constants.SOURCE_DOMAIN,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._logger = logger or StructuredLogger()
        self._brand_extractor = BrandCatalogExtractor(self._logger)
        self._link_extractor = ReviewLinkExtractor(source_url, source_domain, self._logger)

    def parse(self, html: str) -> ParsedPage:
        soup = BeautifulSoup(html, "html.parser")

        catalog = self._brand_extractor.extract(soup)

        content = self._select_content(soup)
        positions = DocumentPositions(content)
        headings = self._link_extractor.find_price_headings(content, positions)
        links = self._link_extractor.extract(content, headings, positions)
        self._logger.info(f"Found {len(links)} review links")

        reviews: List[UkuleleReview] = []
        seen_urls: set = set()
        for link in links:
            if link.url in seen_urls:
                self._logger.debug(f"Duplicate review link skipped: {link.url}")
                continue
            seen_urls.add(link.url)
            reviews.append(self._build_review(link, catalog))

        return ParsedPage(brand_catalog=catalog, reviews=reviews, heading_count=len(headings))

    @staticmethod
    def _select_content(soup: BeautifulSoup) -> Tag:
        for selector in Constants.CONTENT_SELECTORS:
            content = soup.select_one(selector)
            if content is not None:
                return content
        return soup

    @staticmethod
    def _build_review(link: ReviewLink, catalog: BrandCatalog) -> UkuleleReview:
        brand, model = ReviewFieldNormalizer.extract_brand_and_model(link.title, catalog)
        return UkuleleReview(
            size=ReviewFieldNormalizer.extract_size(link.title),
            brand=brand,
            model=model,
            price_range=link.price_range,
            url=link.url,
            rating=link.rating,
            review_date=ReviewFieldNormalizer.parse_review_date(link.date_text),
        )


# ============================================================================
# Domain: metadata / diff
# ============================================================================

class MetadataBuilder:
    """Recomputes filter metadata and enforces the size/price allow-lists"""

    @staticmethod
    def build(reviews: Sequence[UkuleleReview], last_updated: Optional[str] = None) -> FilterMetadata:
        unexpected_prices = sorted({r.price_range for r in reviews} - set(Constants.PRICE_RANGES))
        if unexpected_prices:
            raise MetadataValidationError(
                f"Unexpected price ranges found in reviews: {', '.join(unexpected_prices)}"
            )

        allowed_sizes = {size.lower() for size in Constants.METADATA_SIZES}
        unexpected_sizes = sorted({r.size for r in reviews} - allowed_sizes)
        if unexpected_sizes:
            raise MetadataValidationError(
                f"Unexpected sizes found in reviews: {', '.join(unexpected_sizes)}"
            )

        return FilterMetadata(
            last_updated=last_updated or utc_now_iso(),
            brands=list(dict.fromkeys(review.brand for review in reviews)),
            sizes=list(Constants.METADATA_SIZES),
            price_ranges=list(Constants.PRICE_RANGES),
        )


def generate_diff_report(
    previous: Optional[Sequence[UkuleleReview]],
    current: Sequence[UkuleleReview],
    timestamp: Optional[str] = None,
) -> DiffReport:
    """Compare two review lists by url."""
    report = DiffReport(
        timestamp=timestamp or utc_now_iso(),
        total_previous=len(previous) if previous else 0,
        total_current=len(current),
    )

    if not previous:
        report.new = list(current)
        return report

    previous_by_url: Dict[str, UkuleleReview] = {}
    for review in previous:
        previous_by_url.setdefault(review.url, review)
    current_urls = {review.url for review in current}

    for review in current:
        before = previous_by_url.get(review.url)
        if before is None:
            report.new.append(review)
        elif before != review:
            report.updated.append(ReviewUpdate(url=review.url, previous=before, current=review))

    report.removed = [url for url in previous_by_url if url not in current_urls]
    return report


def build_reviews_document(
    reviews: Sequence[UkuleleReview],
    source_url: str,
    scraped_at: int,
    diff_report: DiffReport,
) -> Dict[str, Any]:
    return {
        "data": [review.to_dict() for review in reviews],
        "metadata": {
            "sourceUrl": source_url,
            "scrapedAt": scraped_at,
            "total": len(reviews),
            "diffReport": diff_report.to_dict(),
        },
    }


def parse_reviews_document(document: Any) -> List[UkuleleReview]:
    """Validate a persisted reviews file; ValueError when the shape is wrong."""
    if not isinstance(document, dict):
        raise ValueError("reviews document must be an object")
    data = document.get("data")
    if not isinstance(data, list):
        raise ValueError("reviews document has no 'data' list")
    return [UkuleleReview.from_dict(item) for item in data]


# ============================================================================
# Infrastructure: persistence
# ============================================================================

class ReviewStore:
    """Reads and writes the JSON files in the output directory"""

    def __init__(self, output_dir: Path, logger: Optional[LoggerProtocol] = None):
        self._output_dir = Path(output_dir)
        self._logger = logger or StructuredLogger()

    @property
    def reviews_path(self) -> Path:
        return self._output_dir / Constants.REVIEWS_FILE

    @property
    def metadata_path(self) -> Path:
        return self._output_dir / Constants.METADATA_FILE

    def ensure_output_dir(self) -> None:
        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Error creating output directory {self._output_dir}: {e}") from e
        self._logger.info(f"Output directory ensured: {self._output_dir}")

    def load_previous_reviews(self) -> Optional[List[UkuleleReview]]:
        """Previous run's reviews, or None when absent or malformed."""
        if not self.reviews_path.exists():
            self._logger.info("No previous review data found")
            return None

        try:
            document = json.loads(self.reviews_path.read_text(encoding="utf-8"))
            reviews = parse_reviews_document(document)
        except (OSError, ValueError) as e:
            self._logger.warning(f"Could not load previous data: {e}")
            return None

        self._logger.info(f"Loaded previous data: {len(reviews)} reviews")
        return reviews

    def load_previous_brands(self) -> Optional[List[str]]:
        if not self.metadata_path.exists():
            return None

        try:
            document = json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self._logger.warning(f"Could not load previous brand metadata: {e}")
            return None

        brands = document.get("brands") if isinstance(document, dict) else None
        if not isinstance(brands, list) or not all(isinstance(brand, str) for brand in brands):
            self._logger.warning("Previous brand metadata has an unexpected shape")
            return None
        return brands

    def save_metadata(self, metadata: FilterMetadata) -> Path:
        self._write(self.metadata_path, metadata.to_dict())
        self._logger.info(f"Brand metadata saved to: {self.metadata_path}")
        return self.metadata_path

    def save_reviews(self, document: Dict[str, Any]) -> Path:
        self._write(self.reviews_path, document)
        self._logger.info(f"Reviews saved to: {self.reviews_path}")
        return self.reviews_path

    def save_output(self, metadata: FilterMetadata, document: Dict[str, Any]) -> None:
        """Write metadata then reviews; if the reviews write fails the old metadata is put back."""
        try:
            previous_metadata = self.metadata_path.read_bytes() if self.metadata_path.exists() else None
        except OSError as e:
            raise PersistenceError(f"Error reading {self.metadata_path}: {e}") from e

        self.save_metadata(metadata)
        try:
            self.save_reviews(document)
        except PersistenceError:
            self._restore(self.metadata_path, previous_metadata)
            raise

    def _restore(self, path: Path, content: Optional[bytes]) -> None:
        try:
            if content is None:
                path.unlink(missing_ok=True)
            else:
                with atomic_write(path) as temp_path:
                    temp_path.write_bytes(content)
        except OSError as e:
            self._logger.error(f"Could not restore {path}: {e}")
            return
        self._logger.warning(f"Restored previous {path.name}")

    def _write(self, path: Path, data: Any) -> None:
        try:
            write_json(path, data)
        except OSError as e:
            raise PersistenceError(f"Error writing {path}: {e}") from e


# ============================================================================
# Application: main scraper
# ============================================================================

class UkuleleReviewsScraper:
    """Got A Ukulele review index scraper

    One run: fetch the index page, extract and normalize every review,
    validate metadata, diff against the previous output, then write
    other-data.json and ukulele-reviews.json. Any failure before the
    writes aborts the run with nothing written.
    """

    def __init__(
        self,
        config: Optional[ScraperConfig] = None,
        http_client: Optional[HttpClient] = None,
        change_detector: Optional[ChangeTrackerProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._config = config or ScraperConfig()
        self._logger = logger or StructuredLogger(
            level=self._config.log_level_value,
            log_file=self._config.log_file,
        )
        self._http_client = http_client or HttpClient(
            user_agent=self._config.user_agent,
            timeout=self._config.request_timeout,
            logger=self._logger,
        )
        self._parser = UkuleleReviewParser(
            source_url=self._config.source_url,
            source_domain=self._config.source_domain,
            logger=self._logger,
        )
        self._store = ReviewStore(Path(self._config.output_dir), self._logger)
        self._change_detector = change_detector

    @property
    def store(self) -> ReviewStore:
        return self._store

    def extract_all_reviews(self) -> List[UkuleleReview]:
        self._logger.info("Fetching main reviews page...")
        html = self._http_client.get(self._config.source_url)
        page = self._parser.parse(html)
        self._logger.info(f"Successfully extracted {len(page.reviews)} ukulele reviews")
        return page.reviews

    def scrape(self) -> ScrapeResult:
        correlation_id = str(uuid.uuid4())[:8]
        if isinstance(self._logger, StructuredLogger):
            self._logger.set_correlation_id(correlation_id)

        start_time = time.time()

        try:
            self._logger.info("Starting ukulele reviews scraping...")

            reviews = self.extract_all_reviews()
            if not reviews:
                raise NoReviewsFoundError("No reviews found", correlation_id)

            metadata = MetadataBuilder.build(reviews)
            new_brands = self._report_new_brands(metadata.brands)

            previous = self._store.load_previous_reviews()
            diff_report = generate_diff_report(previous, reviews)

            result = ScrapeResult(
                reviews=reviews,
                metadata=metadata,
                diff_report=diff_report,
                source_url=self._config.source_url,
                scraped_at=int(time.time() * 1000),
                correlation_id=correlation_id,
                new_brands=new_brands,
            )

            self._store.ensure_output_dir()
            self._store.save_output(metadata, result.to_output())

            self._track_changes(reviews)

            result.duration_seconds = time.time() - start_time
            self._log_summary(result)
            return result

        except Exception as e:
            self._logger.error(f"Scraping failed: {e}", exc_info=True)
            raise

        finally:
            self._http_client.close()

    def _report_new_brands(self, brands: Sequence[str]) -> List[str]:
        previous_brands = self._store.load_previous_brands()
        if previous_brands is None:
            self._logger.info("No previous brand metadata found - all brands are new")
            return list(brands)

        known = set(previous_brands)
        new_brands = [brand for brand in brands if brand not in known]
        if new_brands:
            self._logger.info(f"🆕 NEW BRANDS DETECTED: {', '.join(new_brands)}")
        else:
            self._logger.info("No new brands detected")
        return new_brands

    def _track_changes(self, reviews: Sequence[UkuleleReview]) -> None:
        if self._change_detector is None:
            return

        detector = self._change_detector
        detector.load_cache()

        stats = detector.get_change_stats([review.url for review in reviews])
        changed = [
            review for review in reviews
            if detector.is_new_or_updated(review.url, review.content_hash())
        ]
        self._logger.info(
            f"Change detector: {stats.new_urls} new URLs, "
            f"{len(changed)} new or changed reviews, {stats.total_cached} cached"
        )

        detector.start_new_run()
        for review in reviews:
            detector.update_cache(
                review.url,
                content_hash=review.content_hash(),
                title=f"{review.brand} {review.model}",
            )
        detector.save_cache()

    def _log_summary(self, result: ScrapeResult) -> None:
        changes = result.diff_report
        self._logger.info("Scraping completed successfully!")
        self._logger.info(f"- Total reviews found: {len(result.reviews)}")
        self._logger.info(f"- New reviews: {len(changes.new)}")
        self._logger.info(f"- Updated reviews: {len(changes.updated)}")
        self._logger.info(f"- Removed reviews: {len(changes.removed)}")
        self._logger.info(f"- Output saved to: {self._store.reviews_path}")
        self._logger.info(f"- Time taken: {result.duration_seconds:.2f}s")

        brand_counts = Counter(review.brand for review in result.reviews)
        top_brands = ", ".join(
            f"{brand}({count})" for brand, count in brand_counts.most_common(Constants.TOP_BRANDS_REPORTED)
        )
        self._logger.info(f"Top brands found: {top_brands}")

        self._logger.info("Price range distribution:")
        for price_range, count in Counter(review.price_range for review in result.reviews).items():
            self._logger.info(f"  {price_range}: {count} reviews")


# ============================================================================
# Entry point
# ============================================================================

def main() -> int:
    try:
        config = ScraperConfig.from_env()
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return ScrapeExitCode.FAILURE.value

    logger = StructuredLogger(level=config.log_level_value, log_file=config.log_file)

    change_detector: Optional[ChangeTrackerProtocol] = None
    if config.track_changes:
        from change_detector import ChangeDetector

        change_detector = ChangeDetector(config.output_dir, logger=logger)

    scraper = UkuleleReviewsScraper(config=config, change_detector=change_detector, logger=logger)

    try:
        scraper.scrape()
    except ScraperException as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return ScrapeExitCode.FAILURE.value

    return ScrapeExitCode.SUCCESS.value


if __name__ == "__main__":
    sys.exit(main())
