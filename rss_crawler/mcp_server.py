"""FastMCP server exposing the feed manager as tools.

Feed tools return pretty-printed JSON envelopes; article tools return
markdown. Failed mutations raise ``ToolError`` so clients receive an error
result instead of a success message.

Blocking manager calls run through ``asyncio.to_thread``.
"""

import asyncio
import json
import logging
from dataclasses import asdict
from typing import Annotated, Any, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from .formatter import render_article, render_article_list
from .manager import FeedManager
from .models import FeedSource

logger = logging.getLogger(__name__)

SERVER_NAME = "RssFeedMCP"

Limit = Annotated[
    int, Field(ge=1, le=50, description="Number of articles to retrieve")
]
ArticleLimit = Annotated[
    int, Field(ge=1, description="Maximum number of articles to return (default: 10)")
]
Url = Annotated[str, Field(pattern=r"^https?://\S+$", description="Absolute http(s) URL")]
Keyword = Annotated[str, Field(min_length=1, description="Interest keyword")]


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def register_tools(mcp: FastMCP, manager: FeedManager) -> None:
    """Register the feed, keyword and article tools on ``mcp``."""

    @mcp.tool(name="fetchRssFeeds", description="Fetch articles from configured RSS feeds")
    async def fetch_rss_feeds(limit: Limit = 10) -> str:
        return _dump((await manager.fetch_feeds(limit)).to_dict())

    @mcp.tool(
        name="getLatestRssFeeds",
        description="Get the latest articles from configured RSS feeds",
    )
    async def get_latest_rss_feeds(limit: Limit = 10) -> str:
        feeds = await asyncio.to_thread(manager.get_latest_articles, limit)
        return _dump(feeds.to_dict())

    @mcp.tool(
        name="fetchRssFeedsByCategory",
        description="Fetch articles from configured RSS feeds by category",
    )
    async def fetch_rss_feeds_by_category(
        category: Annotated[str, Field(description="Category name to filter feeds by")],
        limit: Limit = 10,
    ) -> str:
        feeds = await asyncio.to_thread(manager.get_feeds_by_category, category, limit)
        return _dump(feeds.to_dict())

    @mcp.tool(
        name="searchRssFeeds", description="Search for articles in configured RSS feeds"
    )
    async def search_rss_feeds(
        query: Annotated[str, Field(min_length=1, description="Search query")],
        limit: Limit = 10,
    ) -> str:
        feeds = await asyncio.to_thread(manager.search_feeds, query, limit)
        return _dump(feeds.to_dict())

    @mcp.tool(name="listRssFeeds", description="Get a list of all configured RSS feeds")
    async def list_rss_feeds() -> str:
        feeds = await asyncio.to_thread(manager.list_feeds)
        return _dump([asdict(feed) for feed in feeds])

    @mcp.tool(name="addRssFeed", description="Add a new RSS feed to the database")
    async def add_rss_feed(
        url: Url,
        name: Annotated[str, Field(min_length=1, description="Name of the RSS feed")],
        category: Annotated[
            Optional[str], Field(description="Category of the RSS feed (optional)")
        ] = None,
    ) -> str:
        feed = FeedSource(url=url, name=name, category=category)
        if not await asyncio.to_thread(manager.add_feed, feed):
            raise ToolError(f"Failed to add RSS feed: {name} ({url}).")
        return f"Successfully added RSS feed: {name} ({url})"

    @mcp.tool(name="removeRssFeed", description="Remove an RSS feed from the database")
    async def remove_rss_feed(url: Url) -> str:
        if not await asyncio.to_thread(manager.remove_feed, url):
            raise ToolError(f"Failed to remove RSS feed: {url}. The feed may not exist.")
        return f"Successfully removed RSS feed: {url}"

    @mcp.tool(name="listKeywords", description="Get a list of all user interest keywords")
    async def list_keywords() -> str:
        return _dump(await asyncio.to_thread(manager.list_keywords))

    @mcp.tool(name="addKeyword", description="Add a new interest keyword to the database")
    async def add_keyword(keyword: Keyword) -> str:
        if not await asyncio.to_thread(manager.add_keyword, keyword):
            raise ToolError(
                f'Failed to add interest keyword: "{keyword}". '
                "The keyword may already exist."
            )
        return f'Successfully added interest keyword: "{keyword}"'

    @mcp.tool(
        name="removeKeyword", description="Remove an interest keyword from the database"
    )
    async def remove_keyword(keyword: Keyword) -> str:
        if not await asyncio.to_thread(manager.remove_keyword, keyword):
            raise ToolError(
                f'Failed to remove interest keyword: "{keyword}". '
                "The keyword may not exist."
            )
        return f'Successfully removed interest keyword: "{keyword}"'

    @mcp.tool(
        name="getArticlesByKeywords",
        description="Get articles matching user interest keywords",
    )
    async def get_articles_by_keywords(limit: Limit = 10) -> str:
        feeds = await asyncio.to_thread(manager.get_articles_by_keywords, limit)
        return _dump(feeds.to_dict())

    @mcp.tool(
        name="fetchArticle",
        description="Fetch an article from a specified URL and store it in the database",
    )
    async def fetch_article(url: Url) -> str:
        article = await manager.fetch_article(url)
        if article is None:
            raise ToolError("Failed to fetch article from the URL.")
        return render_article(article)

    @mcp.tool(name="getArticles", description="Get all articles from the database")
    async def get_articles(limit: ArticleLimit = 10) -> str:
        articles = await asyncio.to_thread(manager.list_articles, limit)
        if not articles:
            return "No articles found in the database."
        return render_article_list(articles, "Articles")

    @mcp.tool(name="searchArticles", description="Search articles in the database")
    async def search_articles(
        query: Annotated[str, Field(min_length=1, description="Search query")],
        limit: ArticleLimit = 10,
    ) -> str:
        articles = await asyncio.to_thread(manager.search_articles, query, limit)
        if not articles:
            return f'No articles found matching the query: "{query}"'
        return render_article_list(articles, f'Search Results for "{query}"')


def create_mcp_server(manager: FeedManager) -> FastMCP:
    """Build a FastMCP server bound to ``manager``."""
    mcp = FastMCP(SERVER_NAME)
    register_tools(mcp, manager)
    logger.debug("Registered MCP tools on %s", SERVER_NAME)
    return mcp
