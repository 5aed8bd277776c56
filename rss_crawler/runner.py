"""Concurrent fetch, normalize and persist cycle across configured feeds."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
from typing import Callable, List

from sqlalchemy.orm import Session

from . import db
from .feeds import fetch_feed
from .formatter import sort_by_published
from .models import FeedSource, NormalizedItem

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 8
DEFAULT_TIMEOUT = 30.0

# SQLite takes one writer at a time and in-memory stores share one connection.
_write_lock = threading.Lock()


def _persist(
    session_factory: Callable[[], Session],
    source: FeedSource,
    items: List[NormalizedItem],
) -> None:
    with _write_lock, session_factory() as session:
        db.save_feed(session, source, items)


async def fetch_source(
    source: FeedSource,
    session_factory: Callable[[], Session],
    timeout: float = DEFAULT_TIMEOUT,
) -> List[NormalizedItem]:
    """Fetch one source, persist its items and return them.

    Any failure, including a timeout, is logged and yields no items.
    """
    try:
        parsed = await asyncio.wait_for(
            asyncio.to_thread(fetch_feed, source.url, timeout), timeout
        )
        if not parsed.items:
            logger.warning("No items found in feed: %s", source.url)
            return []

        title = source.name or parsed.title
        items = [
            dataclasses.replace(item, origin_feed_title=title) for item in parsed.items
        ]
        await asyncio.to_thread(_persist, session_factory, source, items)
        logger.info("Stored %d items for feed %s", len(items), source.url)
        return items
    except asyncio.TimeoutError:
        logger.warning("Timed out after %.1fs fetching feed %s", timeout, source.url)
        return []
    except Exception:
        logger.exception("Failed to process feed %s", source.url)
        return []


def _list_sources(session_factory: Callable[[], Session]) -> List[FeedSource]:
    with session_factory() as session:
        return db.list_feed_sources(session)


async def aggregate_feeds(
    session_factory: Callable[[], Session],
    limit: int,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: float = DEFAULT_TIMEOUT,
) -> List[NormalizedItem]:
    """Fetch every configured feed and return the newest ``limit`` items.

    All sources are persisted even when their items fall outside the
    returned page.
    """
    sources = await asyncio.to_thread(_list_sources, session_factory)

    if not sources:
        logger.info("No feeds configured; nothing to fetch")
        return []

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def bounded(source: FeedSource) -> List[NormalizedItem]:
        async with semaphore:
            return await fetch_source(source, session_factory, timeout)

    logger.info(
        "Fetching %d feeds with concurrency %d", len(sources), max(1, concurrency)
    )
    results = await asyncio.gather(
        *(bounded(source) for source in sources), return_exceptions=True
    )

    collected: List[NormalizedItem] = []
    for source, result in zip(sources, results):
        if isinstance(result, BaseException):
            logger.error("Feed task for %s ended with %r", source.url, result)
            continue
        collected.extend(result)

    ordered = sort_by_published(collected)
    logger.info(
        "Aggregated %d items from %d feeds; returning %d",
        len(collected),
        len(sources),
        min(limit, len(ordered)),
    )
    return ordered[:limit]
