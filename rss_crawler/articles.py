"""On-demand article scraping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from newspaper import Article, Config
from newspaper.article import ArticleException
import trafilatura

logger = logging.getLogger(__name__)


@dataclass
class ScrapedArticle:
    """Structured content retrieved from an article page."""

    title: Optional[str] = None
    markdown: Optional[str] = None
    html: Optional[str] = None
    author: Optional[str] = None
    published_date: Optional[str] = None
    image_url: Optional[str] = None
    summary: Optional[str] = None


def scrape_article(
    url: str, timeout: int = 20, extractor: str = "trafilatura"
) -> Optional[ScrapedArticle]:
    """Download and extract an article. Returns None when nothing usable was found."""
    logger.debug("Scraping article %s using %s", url, extractor)

    if extractor == "newspaper":
        scraped = _scrape_with_newspaper(url, timeout)
    else:
        scraped = _scrape_with_trafilatura(url)

    if scraped is None:
        return None
    if not scraped.markdown and not scraped.title:
        logger.info("Article contains no readable content: %s", url)
        return None
    return scraped


def _scrape_with_trafilatura(url: str) -> Optional[ScrapedArticle]:
    try:
        downloaded = trafilatura.fetch_url(url)
        if downloaded is None:
            logger.warning("Trafilatura failed to download content for %s", url)
            return None

        markdown = trafilatura.extract(
            downloaded, output_format="markdown", include_comments=False
        )
        metadata = trafilatura.extract_metadata(downloaded)
    except Exception as exc:
        logger.warning(
            "Unexpected error while processing article %s with trafilatura: %s",
            url,
            exc,
        )
        return None

    return ScrapedArticle(
        title=getattr(metadata, "title", None),
        markdown=markdown,
        html=downloaded,
        author=getattr(metadata, "author", None),
        published_date=getattr(metadata, "date", None),
        image_url=getattr(metadata, "image", None),
        summary=getattr(metadata, "description", None),
    )


def _scrape_with_newspaper(url: str, timeout: int) -> Optional[ScrapedArticle]:
    config = Config()
    config.fetch_images = True
    config.memoize_articles = False
    config.keep_article_html = True
    config.request_timeout = timeout

    article = Article(url=url, config=config)

    try:
        article.download()
        article.parse()
    except ArticleException as exc:
        logger.warning("Failed to process article %s: %s", url, exc)
        return None
    except Exception as exc:  # noqa: BLE001 - library internals raise broadly
        logger.warning("Unexpected error while processing article %s: %s", url, exc)
        return None

    published = article.publish_date
    return ScrapedArticle(
        title=(article.title or "").strip() or None,
        markdown=(article.text or "").strip() or None,
        html=getattr(article, "article_html", None) or None,
        author=", ".join(article.authors or []) or None,
        published_date=published.isoformat() if published else None,
        image_url=(article.top_image or "").strip() or None,
        summary=(article.meta_description or "").strip() or None,
    )
