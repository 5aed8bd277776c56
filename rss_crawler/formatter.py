"""Response shaping for feed items and cached articles."""

from __future__ import annotations

import re
import time
from typing import Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup

from .models import Article, FeedResponse, NormalizedItem


def format_feed_response(
    items: Sequence[NormalizedItem],
    title: str,
    feed_id: str,
    description: str,
    generated_at: Optional[int] = None,
) -> FeedResponse:
    """Wrap items in the standard response envelope."""
    return FeedResponse(
        title=title,
        id=feed_id,
        description=description,
        generated_at=int(time.time()) if generated_at is None else generated_at,
        items=list(items),
    )


def error_response(description: str) -> FeedResponse:
    return format_feed_response([], "Error", "error", description)


def sort_by_published(items: Iterable[NormalizedItem]) -> List[NormalizedItem]:
    """Newest first; equal timestamps keep their incoming order."""
    return sorted(items, key=lambda item: item.published_at, reverse=True)


def merge_keyword_matches(
    batches: Iterable[Sequence[NormalizedItem]], limit: int
) -> List[NormalizedItem]:
    """Merge per-keyword result lists, deduplicating by item id.

    The first occurrence of an id wins and consumption stops as soon as
    ``limit`` items are collected, so later keywords may never be queried when
    ``batches`` is lazy. The result is not a global top-K across keywords.
    """
    merged: List[NormalizedItem] = []
    seen = set()
    if limit <= 0:
        return merged

    for batch in batches:
        for item in batch:
            if item.id in seen:
                continue
            merged.append(item)
            seen.add(item.id)
            if len(merged) >= limit:
                return merged
    return merged


def _strip_html(raw_value: str) -> str:
    """Return text content extracted from HTML fragments."""
    soup = BeautifulSoup(raw_value, "html.parser")
    text = soup.get_text(separator=" ", strip=True)
    text = re.sub(r"\s+([.,;:!?])", r"\1", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def render_article_list(articles: Sequence[Article], heading: str) -> str:
    """Render cached articles as a markdown listing."""
    lines = [f"# {heading}", ""]
    for index, article in enumerate(articles, start=1):
        lines.append(f"## {index}. {article.title or 'Untitled Article'}")
        lines.append(f"- URL: {article.url}")
        if article.author:
            lines.append(f"- Author: {article.author}")
        if article.published_date:
            lines.append(f"- Published: {article.published_date}")
        summary = _strip_html(article.summary) if article.summary else ""
        if summary:
            lines.extend(["", summary, ""])
        lines.extend(["---", ""])
    return "\n".join(lines)


def render_article(article: Article) -> str:
    """Render a single article as markdown."""
    return f"# {article.title or 'Article'}\n\n{article.content}"
