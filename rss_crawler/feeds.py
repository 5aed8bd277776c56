"""Feed fetching and normalization across RSS 2.0, Atom and RDF dialects."""

from __future__ import annotations

import calendar
import enum
import io
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import feedparser
import requests
from dateutil import parser as date_parser

from .models import NormalizedItem, ParsedFeed, feed_id_for_url

logger = logging.getLogger(__name__)

UNKNOWN_FEED_TITLE = "Unknown Feed"
USER_AGENT = "Mozilla/5.0 (compatible; RSSManager/1.0)"

# feedparser folds pubDate into "published" and dc:date into "updated".
PUBLISHED_FIELDS = ("published", "updated")

# Timezone abbreviations dateutil cannot resolve on its own.
TZINFOS = {
    "EST": timezone(timedelta(hours=-5)),
    "EDT": timezone(timedelta(hours=-4)),
    "CST": timezone(timedelta(hours=-6)),
    "CDT": timezone(timedelta(hours=-5)),
    "MST": timezone(timedelta(hours=-7)),
    "MDT": timezone(timedelta(hours=-6)),
    "PST": timezone(timedelta(hours=-8)),
    "PDT": timezone(timedelta(hours=-7)),
    "GMT": timezone.utc,
    "UTC": timezone.utc,
    "UT": timezone.utc,
    "Z": timezone.utc,
    "BST": timezone(timedelta(hours=1)),
    "JST": timezone(timedelta(hours=9)),
    "KST": timezone(timedelta(hours=9)),
}


class UnknownTimezoneError(ValueError):
    """A date names a timezone whose offset is not known."""


class Dialect(enum.Enum):
    """Feed format families recognised by the normalizer."""

    RSS2 = "rss2"
    ATOM = "atom"
    RDF_A = "rdf-a"
    RDF_B = "rdf-b"
    UNRECOGNIZED = "unrecognized"


# feedparser version strings for the RDF family; every other "rss*" version
# is the RSS 0.9x/2.0 channel format.
_RDF_VERSIONS = {"rss090": Dialect.RDF_A, "rss10": Dialect.RDF_B}


@dataclass
class FeedShape:
    """Feed-level metadata and raw entry nodes read from one dialect."""

    title: str
    description: str
    link: str
    entries: List[Any] = field(default_factory=list)


def detect_dialect(parsed: Mapping[str, Any]) -> Dialect:
    """Classify a parsed document by the version feedparser detected."""
    version = parsed.get("version") or ""
    if version in _RDF_VERSIONS:
        return _RDF_VERSIONS[version]
    if version.startswith("rss"):
        return Dialect.RSS2
    if version.startswith("atom"):
        return Dialect.ATOM
    return Dialect.UNRECOGNIZED


def _read_channel(parsed: Mapping[str, Any]) -> FeedShape:
    channel = parsed.get("feed") or {}
    return FeedShape(
        title=_text(channel.get("title")),
        description=_text(channel.get("subtitle")),
        link=_text(channel.get("link")),
        entries=list(parsed.get("entries") or []),
    )


def _read_atom(parsed: Mapping[str, Any]) -> FeedShape:
    feed = parsed.get("feed") or {}
    return FeedShape(
        title=_text(feed.get("title")),
        description=_text(feed.get("subtitle")),
        # Atom feeds often carry only rel="self"; fall back to any href.
        link=_link(feed),
        entries=list(parsed.get("entries") or []),
    )


_READERS: Dict[Dialect, Callable[[Mapping[str, Any]], FeedShape]] = {
    Dialect.RSS2: _read_channel,
    Dialect.ATOM: _read_atom,
    Dialect.RDF_A: _read_channel,
    Dialect.RDF_B: _read_channel,
}


def normalize_feed(
    parsed: Mapping[str, Any], feed_url: str, now: Optional[float] = None
) -> ParsedFeed:
    """Convert a feedparser result into normalized items.

    Unrecognised documents and documents without entries produce an empty
    ``ParsedFeed`` titled ``Unknown Feed`` rather than an error.
    """
    dialect = detect_dialect(parsed)
    reader = _READERS.get(dialect)
    if reader is None:
        logger.warning(
            "Unsupported feed format for %s (%s)",
            feed_url,
            parsed.get("bozo_exception") or "no feed version detected",
        )
        return ParsedFeed(title=UNKNOWN_FEED_TITLE)

    shape = reader(parsed)
    if not shape.entries:
        logger.warning("No entries found in %s feed %s", dialect.value, feed_url)
        return ParsedFeed(title=UNKNOWN_FEED_TITLE)

    if parsed.get("bozo"):
        logger.debug(
            "Feed %s is not well-formed, parsed leniently: %s",
            feed_url,
            parsed.get("bozo_exception"),
        )

    now_ts = int(time.time() if now is None else now)
    items = []
    for entry in shape.entries:
        if not isinstance(entry, Mapping):
            logger.debug("Skipping empty entry in feed %s", feed_url)
            continue
        items.append(
            normalize_entry(entry, feed_url, feed_title=shape.title, now=now_ts)
        )

    logger.debug(
        "Normalized %d %s entries from %s", len(items), dialect.value, feed_url
    )
    return ParsedFeed(
        title=shape.title,
        description=shape.description,
        link=shape.link,
        items=items,
    )


def normalize_entry(
    entry: Mapping[str, Any],
    feed_url: str,
    feed_title: str = "",
    now: Optional[float] = None,
) -> NormalizedItem:
    """Build a ``NormalizedItem`` from a single feedparser entry."""
    now_ts = int(time.time() if now is None else now)
    title = _text(entry.get("title"))

    published_at = now_ts
    for name in PUBLISHED_FIELDS:
        if _text(_field(entry, name)):
            stamp = _entry_timestamp(entry, name)
            if stamp is None:
                logger.debug(
                    "Unparseable date %r in feed %s", _field(entry, name), feed_url
                )
            else:
                published_at = stamp
            break

    updated_at = published_at
    if _text(_field(entry, "updated")):
        stamp = _entry_timestamp(entry, "updated")
        if stamp is not None:
            updated_at = stamp

    return NormalizedItem(
        id=_text(entry.get("id")) or f"{feed_url}/{title}",
        title=title,
        published_at=published_at,
        updated_at=updated_at,
        summary=_summary(entry),
        author=_author(entry),
        link=_link(entry),
        categories=_categories(entry.get("tags")),
        origin_feed_id=feed_id_for_url(feed_url),
        origin_feed_title=feed_title,
        origin_feed_url=feed_url,
    )


def _resolve_zone(name: Optional[str], offset: Optional[int]) -> Optional[tzinfo]:
    if offset is not None:
        return timezone(timedelta(seconds=offset))
    if name is None:
        return None
    zone = TZINFOS.get(name.upper())
    if zone is None:
        raise UnknownTimezoneError(name)
    return zone


def _parse_date(value: str) -> int:
    parsed = date_parser.parse(value, tzinfos=_resolve_zone)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def parse_timestamp(value: str) -> Optional[int]:
    """Parse an RFC 822 or ISO 8601 date string into Unix seconds.

    Returns None when the string cannot be parsed or names an unknown
    timezone. Naive values are taken as UTC.
    """
    try:
        return _parse_date(value)
    except (ValueError, OverflowError):
        return None


def _entry_timestamp(entry: Mapping[str, Any], name: str) -> Optional[int]:
    """Timestamp for a date field, preferring dateutil over feedparser.

    feedparser reads unknown zone names as UTC, so its parsed tuple is only
    used for formats dateutil does not understand.
    """
    value = _text(_field(entry, name))
    try:
        return _parse_date(value)
    except UnknownTimezoneError:
        return None
    except (ValueError, OverflowError):
        pass
    parsed = _field(entry, f"{name}_parsed")
    return calendar.timegm(parsed) if parsed else None


def _field(entry: Mapping[str, Any], name: str) -> Any:
    # Membership first: FeedParserDict maps a missing "updated" onto "published".
    return entry.get(name) if name in entry else None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _summary(entry: Mapping[str, Any]) -> str:
    summary = _text(entry.get("summary"))
    if summary:
        return summary
    for content in entry.get("content") or []:
        value = _text(content.get("value")) if isinstance(content, Mapping) else ""
        if value:
            return value
    return ""


def _author(entry: Mapping[str, Any]) -> str:
    author = _text(entry.get("author"))
    if author:
        return author
    detail = entry.get("author_detail")
    if isinstance(detail, Mapping):
        return _text(detail.get("name"))
    return ""


def _link(node: Mapping[str, Any]) -> str:
    link = _text(node.get("link"))
    if link:
        return link
    links = [item for item in node.get("links") or [] if isinstance(item, Mapping)]
    for candidate in links:
        if candidate.get("rel", "alternate") == "alternate" and candidate.get("href"):
            return _text(candidate["href"])
    for candidate in links:
        if candidate.get("href"):
            return _text(candidate["href"])
    return ""


def _categories(tags: Any) -> List[str]:
    categories: List[str] = []
    for tag in tags or []:
        if not isinstance(tag, Mapping):
            continue
        name = _text(tag.get("term")) or _text(tag.get("label"))
        if name and name not in categories:
            categories.append(name)
    return categories


def parse_feed_document(
    content: Union[bytes, str], feed_url: str, now: Optional[float] = None
) -> ParsedFeed:
    """Decode raw feed bytes with feedparser and normalize them."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    # A stream keeps feedparser from treating the payload as a URL or path.
    parsed = feedparser.parse(io.BytesIO(content))
    return normalize_feed(parsed, feed_url, now=now)


def fetch_feed_document(url: str, timeout: float = 30.0) -> bytes:
    """Download a feed document. Raises ``requests.RequestException``."""
    logger.info("Fetching feed %s", url)
    response = requests.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
    response.raise_for_status()
    return response.content


def fetch_feed(url: str, timeout: float = 30.0) -> ParsedFeed:
    """Fetch, decode and normalize a single remote feed."""
    parsed = parse_feed_document(fetch_feed_document(url, timeout=timeout), url)
    logger.info("Collected %d entries from feed %s", len(parsed.items), url)
    return parsed
