"""Shared data models for rss_crawler."""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


def feed_id_for_url(url: str) -> str:
    """Return the stable feed identifier derived from its URL."""
    return "feed/" + hashlib.md5(url.encode("utf-8")).hexdigest()[:20]


def article_id_for_url(url: str) -> str:
    """Return the stable article identifier derived from its URL."""
    return "article/" + hashlib.md5(url.encode("utf-8")).hexdigest()


@dataclass
class FeedSource:
    """Configured remote feed plus display metadata."""

    url: str
    name: str
    category: Optional[str] = None

    @property
    def feed_id(self) -> str:
        return feed_id_for_url(self.url)


@dataclass
class NormalizedItem:
    """Canonical per-article record, independent of the source dialect."""

    id: str
    title: str
    published_at: int
    updated_at: int
    summary: str = ""
    author: str = ""
    link: str = ""
    categories: List[str] = field(default_factory=list)
    origin_feed_id: str = ""
    origin_feed_title: str = ""
    origin_feed_url: str = ""


@dataclass
class ParsedFeed:
    """Result of normalizing a single feed document."""

    title: str
    description: str = ""
    link: str = ""
    items: List[NormalizedItem] = field(default_factory=list)


@dataclass
class FeedResponse:
    """Envelope returned to API and tool callers."""

    title: str
    id: str
    description: str
    generated_at: int
    items: List[NormalizedItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Article:
    """Scraped article stored in the local cache."""

    id: str
    url: str
    title: str = ""
    content: str = ""
    html: str = ""
    author: str = ""
    published_date: str = ""
    image_url: str = ""
    summary: str = ""
    fetched_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        if self.fetched_at is not None:
            payload["fetched_at"] = self.fetched_at.isoformat()
        return payload
