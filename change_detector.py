#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
change_detector.py - per-URL change cache for review pages

Keeps scrape-cache.json in the output directory:

    {
      "lastRun": "2025-10-02T08:00:00.000Z",
      "urls": {
        "<md5(url)>": {"url": ..., "lastSeen": ..., "contentHash": ..., "title": ...}
      },
      "metadata": {"created": ..., "totalRuns": 3}
    }

The index page is always fetched whole; this cache only answers whether a
given review URL is new or has changed since it was last recorded.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ukulele_reviews import (
    Constants,
    DiffReport,
    LoggerProtocol,
    StructuredLogger,
    UkuleleReview,
    generate_diff_report,
    utc_now_iso,
    write_json,
)


# ============================================================================
# Data classes
# ============================================================================

@dataclass
class CacheEntry:
    url: str
    last_seen: str
    content_hash: Optional[str] = None
    title: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.extra,
            "url": self.url,
            "lastSeen": self.last_seen,
            "contentHash": self.content_hash,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: Any) -> CacheEntry:
        if not isinstance(data, dict):
            raise ValueError("cache entry must be an object")

        url = data.get("url")
        last_seen = data.get("lastSeen")
        if not isinstance(url, str) or not isinstance(last_seen, str):
            raise ValueError("cache entry needs string 'url' and 'lastSeen'")

        content_hash = data.get("contentHash")
        title = data.get("title")
        if content_hash is not None and not isinstance(content_hash, str):
            raise ValueError("'contentHash' must be a string or null")
        if title is not None and not isinstance(title, str):
            raise ValueError("'title' must be a string or null")

        extra = {
            key: value for key, value in data.items()
            if key not in ("url", "lastSeen", "contentHash", "title")
        }
        return cls(url=url, last_seen=last_seen, content_hash=content_hash, title=title, extra=extra)


@dataclass
class ScrapeCache:
    created: str
    last_run: Optional[str] = None
    total_runs: int = 0
    urls: Dict[str, CacheEntry] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> ScrapeCache:
        return cls(created=utc_now_iso())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastRun": self.last_run,
            "urls": {url_hash: entry.to_dict() for url_hash, entry in self.urls.items()},
            "metadata": {
                "created": self.created,
                "totalRuns": self.total_runs,
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> ScrapeCache:
        """Strict deserialization, raises ValueError on any shape problem."""
        if not isinstance(data, dict):
            raise ValueError("cache must be an object")

        last_run = data.get("lastRun")
        if last_run is not None and not isinstance(last_run, str):
            raise ValueError("'lastRun' must be a string or null")

        urls = data.get("urls")
        metadata = data.get("metadata")
        if not isinstance(urls, dict) or not isinstance(metadata, dict):
            raise ValueError("cache needs 'urls' and 'metadata' objects")

        created = metadata.get("created")
        total_runs = metadata.get("totalRuns")
        if not isinstance(created, str):
            raise ValueError("'metadata.created' must be a string")
        if isinstance(total_runs, bool) or not isinstance(total_runs, int) or total_runs < 0:
            raise ValueError("'metadata.totalRuns' must be a non-negative integer")

        return cls(
            created=created,
            last_run=last_run,
            total_runs=total_runs,
            urls={url_hash: CacheEntry.from_dict(entry) for url_hash, entry in urls.items()},
        )


@dataclass(frozen=True)
class ChangeStats:
    new_urls: int
    updated_urls: int
    unchanged_urls: int
    total_cached: int
    new_urls_list: List[str] = field(default_factory=list)


# ============================================================================
# Change detector
# ============================================================================

class ChangeDetector:
    """Tracks which review URLs have been seen and with what content"""

    def __init__(
        self,
        data_dir: str | Path = "./data",
        logger: Optional[LoggerProtocol] = None,
        cache_file: str = Constants.CACHE_FILE,
    ):
        self.data_dir = Path(data_dir)
        self.cache_file = self.data_dir / cache_file
        self._logger = logger or StructuredLogger()
        self._cache: Optional[ScrapeCache] = None

    @property
    def cache(self) -> Optional[ScrapeCache]:
        return self._cache

    @staticmethod
    def generate_hash(url: str) -> str:
        return hashlib.md5(url.encode("utf-8")).hexdigest()

    def load_cache(self) -> ScrapeCache:
        """Load the cache file; a missing or corrupt file starts a fresh cache."""
        if not self.cache_file.exists():
            self._logger.info(f"No scrape cache at {self.cache_file} - starting fresh")
            self._cache = ScrapeCache.empty()
            return self._cache

        try:
            data = json.loads(self.cache_file.read_text(encoding="utf-8"))
            self._cache = ScrapeCache.from_dict(data)
        except (OSError, ValueError) as e:
            self._logger.warning(f"Scrape cache unreadable ({e}) - starting fresh")
            self._cache = ScrapeCache.empty()

        return self._cache

    def save_cache(self) -> bool:
        if self._cache is None:
            return False

        try:
            write_json(self.cache_file, self._cache.to_dict())
        except OSError as e:
            self._logger.error(f"Error saving cache: {e}")
            return False

        self._logger.debug(f"Scrape cache saved: {self.cache_file}")
        return True

    def is_new_or_updated(self, url: str, content_hash: Optional[str] = None) -> bool:
        if self._cache is None:
            return True

        cached = self._cache.urls.get(self.generate_hash(url))
        if cached is None:
            return True

        # Without a content hash a known URL counts as unchanged
        if content_hash and cached.content_hash != content_hash:
            return True

        return False

    def update_cache(
        self,
        url: str,
        content_hash: Optional[str] = None,
        title: Optional[str] = None,
        **extra: Any,
    ) -> None:
        if self._cache is None:
            self.load_cache()

        self._cache.urls[self.generate_hash(url)] = CacheEntry(
            url=url,
            last_seen=utc_now_iso(),
            content_hash=content_hash,
            title=title,
            extra=extra,
        )

    def start_new_run(self) -> None:
        if self._cache is None:
            self._cache = ScrapeCache.empty()

        self._cache.last_run = utc_now_iso()
        self._cache.total_runs += 1

    def get_change_stats(self, current_urls: Sequence[str]) -> ChangeStats:
        if self._cache is None:
            return ChangeStats(
                new_urls=len(current_urls),
                updated_urls=0,
                unchanged_urls=0,
                total_cached=0,
                new_urls_list=list(current_urls),
            )

        cached_urls = {entry.url for entry in self._cache.urls.values()}
        new_urls = [url for url in current_urls if url not in cached_urls]

        return ChangeStats(
            new_urls=len(new_urls),
            updated_urls=0,
            unchanged_urls=len(current_urls) - len(new_urls),
            total_cached=len(cached_urls),
            new_urls_list=new_urls,
        )

    def get_urls_to_scrape(self, all_urls: Sequence[str], force_all: bool = False) -> List[str]:
        if self._cache is None or force_all:
            return list(all_urls)

        return [url for url in all_urls if self.is_new_or_updated(url)]

    def generate_diff_report(
        self,
        previous_data: Optional[Sequence[UkuleleReview]],
        current_data: Sequence[UkuleleReview],
    ) -> DiffReport:
        return generate_diff_report(previous_data, current_data)
