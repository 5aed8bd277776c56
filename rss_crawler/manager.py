"""Feed manager facade shared by the HTTP and tool surfaces."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import db
from .articles import scrape_article
from .formatter import (
    error_response,
    format_feed_response,
    merge_keyword_matches,
    sort_by_published,
)
from .models import Article, FeedResponse, FeedSource, article_id_for_url
from .runner import DEFAULT_CONCURRENCY, DEFAULT_TIMEOUT, aggregate_feeds

logger = logging.getLogger(__name__)


class FeedManager:
    """Binds the store to the aggregation, query and article operations.

    Read operations never raise on storage errors; they log and return an
    empty result instead.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        concurrency: int = DEFAULT_CONCURRENCY,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        extractor: str = "trafilatura",
    ) -> None:
        self.session_factory = session_factory
        self.concurrency = concurrency
        self.fetch_timeout = fetch_timeout
        self.extractor = extractor

    # Feed sources

    def seed_feeds(self, feeds: Sequence[FeedSource]) -> int:
        """Add ``feeds`` when no feed is configured yet."""
        with self.session_factory() as session:
            if db.list_feed_sources(session):
                return 0
            for feed in feeds:
                db.upsert_feed_source(session, feed.url, feed.name, feed.category)
        logger.info("Initialized database with %d default feeds", len(feeds))
        return len(feeds)

    def add_feed(self, feed: FeedSource) -> bool:
        try:
            with self.session_factory() as session:
                db.upsert_feed_source(session, feed.url, feed.name, feed.category)
        except SQLAlchemyError:
            logger.exception("Error adding feed %s", feed.url)
            return False
        return True

    def remove_feed(self, url: str) -> bool:
        try:
            with self.session_factory() as session:
                return db.delete_feed_source(session, url)
        except SQLAlchemyError:
            logger.exception("Error removing feed %s", url)
            return False

    def list_feeds(self) -> List[FeedSource]:
        try:
            with self.session_factory() as session:
                return db.list_feed_sources(session)
        except SQLAlchemyError:
            logger.exception("Error listing feeds")
            return []

    # Keywords

    def add_keyword(self, keyword: str) -> bool:
        try:
            with self.session_factory() as session:
                return db.add_keyword(session, keyword)
        except SQLAlchemyError:
            logger.exception("Error adding keyword %r", keyword)
            return False

    def remove_keyword(self, keyword: str) -> bool:
        try:
            with self.session_factory() as session:
                return db.remove_keyword(session, keyword)
        except SQLAlchemyError:
            logger.exception("Error removing keyword %r", keyword)
            return False

    def list_keywords(self) -> List[str]:
        try:
            with self.session_factory() as session:
                return db.list_keywords(session)
        except SQLAlchemyError:
            logger.exception("Error listing keywords")
            return []

    # Feed items

    async def fetch_feeds(self, limit: int = 10) -> FeedResponse:
        """Fetch all feeds now and return the newest items."""
        try:
            items = await aggregate_feeds(
                self.session_factory,
                limit,
                concurrency=self.concurrency,
                timeout=self.fetch_timeout,
            )
        except SQLAlchemyError:
            logger.exception("Error fetching feeds")
            return error_response("Error fetching feeds")
        return format_feed_response(
            items,
            "RSS Manager Feeds",
            "feed/all",
            "Aggregated feeds from RSS Manager",
        )

    def get_latest_articles(self, limit: int = 10) -> FeedResponse:
        try:
            with self.session_factory() as session:
                items = db.query_items(session, limit=limit)
        except SQLAlchemyError:
            logger.exception("Error getting latest feeds")
            return error_response("Error getting latest feeds")
        return format_feed_response(
            items, "Latest RSS Feeds", "feed/latest", "Latest articles from RSS feeds"
        )

    def get_feeds_by_category(self, category: str, limit: int = 10) -> FeedResponse:
        try:
            with self.session_factory() as session:
                items = db.query_items(session, limit=limit, category=category)
        except SQLAlchemyError:
            logger.exception("Error getting feeds by category %s", category)
            return error_response(f"Error getting feeds for category: {category}")
        return format_feed_response(
            items,
            f"{category} Feeds",
            f"category/{category}",
            f"Feeds from the {category} category",
        )

    def search_feeds(self, query: str, limit: int = 10) -> FeedResponse:
        try:
            with self.session_factory() as session:
                items = db.query_items(session, limit=limit, search_text=query)
        except SQLAlchemyError:
            logger.exception("Error searching feeds for %s", query)
            return error_response(f"Error searching feeds for: {query}")
        return format_feed_response(
            items,
            f'Search Results for "{query}"',
            f"search/{query}",
            f'Search results for "{query}"',
        )

    def get_articles_by_keywords(self, limit: int = 10) -> FeedResponse:
        """Items matching any interest keyword, merged in keyword order."""
        try:
            with self.session_factory() as session:
                keywords = db.list_keywords(session)
                batches = (
                    db.query_items(session, limit=limit, search_text=keyword)
                    for keyword in keywords
                )
                items = sort_by_published(merge_keyword_matches(batches, limit))
        except SQLAlchemyError:
            logger.exception("Error getting articles by keywords")
            return error_response("Error getting articles by keywords")
        return format_feed_response(
            items,
            "Articles Matching Your Interests",
            "feed/interests",
            "Articles matching your interest keywords",
        )

    # Scraped articles

    async def fetch_article(self, url: str) -> Optional[Article]:
        """Return the cached article for ``url`` or scrape and cache it."""
        cached = await asyncio.to_thread(self._cached_article, url)
        if cached:
            logger.debug("Cache hit for %s", url)
            return cached

        scraped = await asyncio.to_thread(
            scrape_article, url, extractor=self.extractor
        )
        if scraped is None:
            logger.warning("Failed to scrape URL: %s", url)
            return None

        article = Article(
            id=article_id_for_url(url),
            url=url,
            title=scraped.title or "",
            content=scraped.markdown or "",
            html=scraped.html or "",
            author=scraped.author or "",
            published_date=scraped.published_date or "",
            image_url=scraped.image_url or "",
            summary=scraped.summary or "",
        )
        saved = await asyncio.to_thread(self._save_article, article)
        if saved is None:
            return None
        logger.info("Fetched and saved article: %s", url)
        return saved

    def _cached_article(self, url: str) -> Optional[Article]:
        try:
            with self.session_factory() as session:
                return db.get_article_by_url(session, url)
        except SQLAlchemyError:
            logger.exception("Error reading article cache for %s", url)
            return None

    def _save_article(self, article: Article) -> Optional[Article]:
        try:
            with self.session_factory() as session:
                return db.save_article(session, article)
        except SQLAlchemyError:
            logger.exception("Failed to save article to database: %s", article.url)
            return None

    def list_articles(self, limit: int = 10) -> List[Article]:
        try:
            with self.session_factory() as session:
                return db.list_articles(session, limit=limit)
        except SQLAlchemyError:
            logger.exception("Error getting articles")
            return []

    def search_articles(self, query: str, limit: int = 10) -> List[Article]:
        try:
            with self.session_factory() as session:
                return db.search_articles(session, query, limit=limit)
        except SQLAlchemyError:
            logger.exception("Error searching articles for %s", query)
            return []

    def prune_items(self, before: int) -> int:
        with self.session_factory() as session:
            return db.delete_old_items(session, before)
