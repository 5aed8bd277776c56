"""Database layer for feeds, items, interest keywords and scraped articles."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    Article,
    FeedSource,
    NormalizedItem,
    article_id_for_url,
    feed_id_for_url,
)

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class FeedModel(Base):
    """Configured feed source."""

    __tablename__ = "feeds"

    id = Column(String, primary_key=True)
    url = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    last_updated = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class ItemModel(Base):
    """Normalized feed item."""

    __tablename__ = "items"

    id = Column(String, primary_key=True)
    feed_id = Column(String, ForeignKey("feeds.id"), nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    link = Column(String, nullable=False, default="")
    summary = Column(Text, nullable=True)
    author = Column(String, nullable=True)
    published = Column(Integer, nullable=False, index=True)
    updated = Column(Integer, nullable=False)


class ItemCategoryModel(Base):
    """Ordered category labels attached to an item."""

    __tablename__ = "item_categories"

    item_id = Column(String, ForeignKey("items.id"), primary_key=True)
    category = Column(String, primary_key=True)
    position = Column(Integer, nullable=False, default=0)


class KeywordModel(Base):
    """Interest keyword used for keyword matching."""

    __tablename__ = "keywords"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class ArticleModel(Base):
    """Cached scraped article content."""

    __tablename__ = "articles"

    id = Column(String, primary_key=True)
    url = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=True)
    content = Column(Text, nullable=True)
    html = Column(Text, nullable=True)
    author = Column(String, nullable=True)
    published_date = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    summary = Column(Text, nullable=True)
    fetched_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


def init_engine(connection_string: str) -> Engine:
    """Initialize the database engine and create missing tables."""
    url = make_url(connection_string)
    kwargs = {}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    logger.info(
        "Initializing database connection: %s", url.render_as_string(hide_password=True)
    )
    engine = create_engine(url, **kwargs)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory for the given engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def _commit(session: Session) -> None:
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise


# Feeds


def _to_source(row: FeedModel) -> FeedSource:
    return FeedSource(url=row.url, name=row.name, category=row.category or None)


def list_feed_sources(session: Session) -> List[FeedSource]:
    """Return all configured feeds ordered by category and name."""
    stmt = select(FeedModel).order_by(FeedModel.category, FeedModel.name)
    return [_to_source(row) for row in session.execute(stmt).scalars()]


def get_feed_by_url(session: Session, url: str) -> Optional[FeedSource]:
    stmt = select(FeedModel).where(FeedModel.url == url)
    row = session.execute(stmt).scalar_one_or_none()
    return _to_source(row) if row else None


def upsert_feed_source(
    session: Session, url: str, name: str, category: Optional[str] = None
) -> None:
    """Insert or update a feed keyed by its URL."""
    _upsert_feed_row(session, url, name, category)
    _commit(session)


def _upsert_feed_row(
    session: Session, url: str, name: str, category: Optional[str]
) -> FeedModel:
    stmt = select(FeedModel).where(FeedModel.url == url)
    existing = session.execute(stmt).scalar_one_or_none()
    now = datetime.now(timezone.utc)
    if existing:
        existing.name = name
        existing.category = category or None
        existing.last_updated = now
        return existing

    row = FeedModel(
        id=feed_id_for_url(url),
        url=url,
        name=name,
        category=category or None,
        last_updated=now,
    )
    session.add(row)
    return row


def delete_feed_source(session: Session, url: str) -> bool:
    """Remove a feed and its stored items. Returns False if it did not exist."""
    stmt = select(FeedModel).where(FeedModel.url == url)
    existing = session.execute(stmt).scalar_one_or_none()
    if existing is None:
        return False

    item_ids = select(ItemModel.id).where(ItemModel.feed_id == existing.id)
    session.execute(
        delete(ItemCategoryModel).where(ItemCategoryModel.item_id.in_(item_ids))
    )
    session.execute(delete(ItemModel).where(ItemModel.feed_id == existing.id))
    session.delete(existing)
    _commit(session)
    return True


# Items


def save_feed(
    session: Session, source: FeedSource, items: Iterable[NormalizedItem]
) -> int:
    """Record a fetch of ``source`` and upsert its items in one commit."""
    feed = _upsert_feed_row(session, source.url, source.name, source.category)
    session.flush()
    count = _merge_items(session, feed.id, items)
    _commit(session)
    return count


def upsert_items(
    session: Session, feed_id: str, items: Iterable[NormalizedItem]
) -> int:
    """Insert or overwrite items keyed by item id."""
    count = _merge_items(session, feed_id, items)
    _commit(session)
    return count


def _merge_items(session: Session, feed_id: str, items: Iterable[NormalizedItem]) -> int:
    count = 0
    for item in items:
        session.merge(
            ItemModel(
                id=item.id,
                feed_id=feed_id,
                title=item.title or "Untitled",
                link=item.link,
                summary=item.summary,
                author=item.author,
                published=item.published_at,
                updated=item.updated_at,
            )
        )
        session.execute(
            delete(ItemCategoryModel).where(ItemCategoryModel.item_id == item.id)
        )
        for position, category in enumerate(dict.fromkeys(item.categories)):
            if category:
                session.add(
                    ItemCategoryModel(
                        item_id=item.id, category=category, position=position
                    )
                )
        # Same id may repeat within one batch; flush keeps merge consistent.
        session.flush()
        count += 1
    return count


def _item_categories(session: Session, item_ids: List[str]) -> Dict[str, List[str]]:
    if not item_ids:
        return {}
    stmt = (
        select(ItemCategoryModel)
        .where(ItemCategoryModel.item_id.in_(item_ids))
        .order_by(ItemCategoryModel.item_id, ItemCategoryModel.position)
    )
    categories: Dict[str, List[str]] = {}
    for row in session.execute(stmt).scalars():
        categories.setdefault(row.item_id, []).append(row.category)
    return categories


def query_items(
    session: Session,
    limit: int = 10,
    category: Optional[str] = None,
    search_text: Optional[str] = None,
) -> List[NormalizedItem]:
    """Return stored items, newest first, optionally filtered."""
    stmt = select(ItemModel, FeedModel.name, FeedModel.url).join(
        FeedModel, ItemModel.feed_id == FeedModel.id
    )
    if category is not None:
        stmt = stmt.where(FeedModel.category == category)
    if search_text:
        stmt = stmt.where(
            or_(
                ItemModel.title.contains(search_text, autoescape=True),
                ItemModel.summary.contains(search_text, autoescape=True),
            )
        )
    stmt = stmt.order_by(ItemModel.published.desc()).limit(limit)

    rows = session.execute(stmt).all()
    categories = _item_categories(session, [row[0].id for row in rows])
    return [
        NormalizedItem(
            id=item.id,
            title=item.title,
            published_at=item.published,
            updated_at=item.updated,
            summary=item.summary or "",
            author=item.author or "",
            link=item.link or "",
            categories=categories.get(item.id, []),
            origin_feed_id=item.feed_id,
            origin_feed_title=feed_name,
            origin_feed_url=feed_url,
        )
        for item, feed_name, feed_url in rows
    ]


def count_items(session: Session, feed_id: Optional[str] = None) -> int:
    stmt = select(func.count()).select_from(ItemModel)
    if feed_id is not None:
        stmt = stmt.where(ItemModel.feed_id == feed_id)
    return session.execute(stmt).scalar_one()


def delete_old_items(session: Session, before: int) -> int:
    """Delete items published before the given Unix timestamp."""
    old_ids = select(ItemModel.id).where(ItemModel.published < before)
    session.execute(
        delete(ItemCategoryModel).where(ItemCategoryModel.item_id.in_(old_ids))
    )
    result = session.execute(delete(ItemModel).where(ItemModel.published < before))
    _commit(session)
    logger.info("Deleted %d items published before %d", result.rowcount, before)
    return result.rowcount


# Keywords


def list_keywords(session: Session) -> List[str]:
    """Return interest keywords, newest first."""
    stmt = select(KeywordModel.keyword).order_by(KeywordModel.id.desc())
    return list(session.execute(stmt).scalars())


def add_keyword(session: Session, keyword: str) -> bool:
    keyword = keyword.strip()
    if not keyword:
        return False
    stmt = select(KeywordModel).where(KeywordModel.keyword == keyword)
    if session.execute(stmt).scalar_one_or_none():
        logger.info("Keyword %r already exists", keyword)
        return False
    session.add(KeywordModel(keyword=keyword))
    _commit(session)
    logger.info("Added keyword: %s", keyword)
    return True


def remove_keyword(session: Session, keyword: str) -> bool:
    result = session.execute(delete(KeywordModel).where(KeywordModel.keyword == keyword))
    _commit(session)
    if not result.rowcount:
        logger.info("Keyword %r not found", keyword)
        return False
    logger.info("Removed keyword: %s", keyword)
    return True


# Articles


def _to_article(row: ArticleModel) -> Article:
    return Article(
        id=row.id,
        url=row.url,
        title=row.title or "",
        content=row.content or "",
        html=row.html or "",
        author=row.author or "",
        published_date=row.published_date or "",
        image_url=row.image_url or "",
        summary=row.summary or "",
        fetched_at=row.fetched_at,
    )


def get_article_by_url(session: Session, url: str) -> Optional[Article]:
    """Retrieve an article from the cache."""
    stmt = select(ArticleModel).where(ArticleModel.url == url)
    row = session.execute(stmt).scalar_one_or_none()
    return _to_article(row) if row else None


def save_article(session: Session, article: Article) -> Article:
    """Insert or update an article keyed by its URL."""
    stmt = select(ArticleModel).where(ArticleModel.url == article.url)
    existing = session.execute(stmt).scalar_one_or_none()
    row = existing or ArticleModel(
        id=article.id or article_id_for_url(article.url), url=article.url
    )
    row.title = article.title or None
    row.content = article.content or None
    row.html = article.html or None
    row.author = article.author or None
    row.published_date = article.published_date or None
    row.image_url = article.image_url or None
    row.summary = article.summary or None
    row.fetched_at = datetime.now(timezone.utc)
    if existing is None:
        session.add(row)
    _commit(session)
    return _to_article(row)


def list_articles(session: Session, limit: int = 10) -> List[Article]:
    stmt = (
        select(ArticleModel)
        .order_by(ArticleModel.fetched_at.desc(), ArticleModel.id)
        .limit(limit)
    )
    return [_to_article(row) for row in session.execute(stmt).scalars()]


def search_articles(session: Session, query: str, limit: int = 10) -> List[Article]:
    stmt = (
        select(ArticleModel)
        .where(
            or_(
                ArticleModel.title.contains(query, autoescape=True),
                ArticleModel.content.contains(query, autoescape=True),
            )
        )
        .order_by(ArticleModel.fetched_at.desc(), ArticleModel.id)
        .limit(limit)
    )
    return [_to_article(row) for row in session.execute(stmt).scalars()]
