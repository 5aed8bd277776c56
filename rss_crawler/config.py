"""Configuration loading for the crawler."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional
from xml.etree import ElementTree as ET

from .models import FeedSource

logger = logging.getLogger(__name__)

DEFAULT_DB_DIR = Path.home() / ".mcp-rss-crawler"
DEFAULT_PORT = 5556

DEFAULT_FEEDS: List[FeedSource] = [
    FeedSource(
        "https://feeds.arstechnica.com/arstechnica/gadgets",
        "Ars Technica Gear & Gadgets",
        "Tech",
    ),
    FeedSource(
        "https://rss.nytimes.com/services/xml/rss/nyt/Technology.xml",
        "New York Times Technology",
        "Tech",
    ),
    FeedSource("https://feeds2.feedburner.com/businessinsider", "Business Insider", "Business"),
    FeedSource("https://assets.wor.jp/rss/rdf/nikkei/news.rdf", "Nikkei News", "Business"),
    FeedSource("https://media-innovation.jp/rss20/index.rdf", "media-innovation.jp", "Business"),
    FeedSource("https://hackernews.cc/feed", "HackerNews", "Business"),
    FeedSource("https://www.techmeme.com/index.xml", "Techmeme", "Business"),
    FeedSource("https://techcrunch.com/feed/", "TechCrunch", "Business"),
    FeedSource("https://www.theverge.com/rss/index.xml", "The Verge", "Business"),
    FeedSource(
        "https://kaden.watch.impress.co.jp/cda/rss/kaden.rdf", "家電 Watch", "Business"
    ),
    FeedSource(
        "https://akiba-pc.watch.impress.co.jp/cda/rss/akiba-pc.rdf",
        "AKIBA PC Hotline!",
        "Business",
    ),
    FeedSource("https://pc.watch.impress.co.jp/sublink/pc.rdf", "PC Watch", "Business"),
    FeedSource(
        "https://rss.itmedia.co.jp/rss/2.0/news_bursts.xml",
        "ITmedia News 速報 最新記事一覧",
        "Business",
    ),
    FeedSource(
        "https://rss.itmedia.co.jp/rss/1.0/topstory.xml",
        "ITmedia TOP STORIES 最新記事一覧",
        "Business",
    ),
]


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class DatabaseConfig:
    connection_string: Optional[str] = None


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT


@dataclass
class AppConfig:
    feeds_file: Optional[str] = None
    env_file: Optional[str] = None
    seed_default_feeds: bool = True
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    concurrency: int = 8
    fetch_timeout: float = 30.0
    extractor: str = "trafilatura"

    def initial_feeds(self) -> List[FeedSource]:
        """Feeds used to seed an empty database."""
        if self.feeds_file:
            return parse_feeds_config(self.feeds_file)
        if self.seed_default_feeds:
            return list(DEFAULT_FEEDS)
        return []


def parse_feeds_config(path: str) -> List[FeedSource]:
    """Parse an OPML file and return feed definitions."""
    logger.info("Loading feed configuration from %s", path)
    tree = ET.parse(path)
    root = tree.getroot()
    body = root.find("body")
    feeds: List[FeedSource] = []

    def walk(outline: ET.Element, current_category: Optional[str]) -> None:
        title = outline.attrib.get("title") or outline.attrib.get("text")
        feed_url = outline.attrib.get("xmlUrl")
        outline_type = outline.attrib.get("type")

        if outline_type == "rss" and feed_url:
            feeds.append(
                FeedSource(
                    url=feed_url,
                    name=title or feed_url,
                    category=current_category or title,
                )
            )
            logger.debug(
                "Registered feed '%s' (category='%s')", feed_url, feeds[-1].category
            )
            return

        next_category = title if title else current_category
        for child in outline.findall("outline"):
            walk(child, next_category)

    if body is None:
        raise ValueError("feeds file is missing the <body> section.")

    for outline in body.findall("outline"):
        walk(outline, outline.attrib.get("title") or outline.attrib.get("text"))

    logger.info("Loaded %d feed endpoints from configuration", len(feeds))
    return feeds


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def parse_env_config(path: str) -> Dict[str, str]:
    """Parse environment variables from XML."""
    env_vars: Dict[str, str] = {}
    if not path:
        return env_vars

    logger.info("Loading environment configuration from %s", path)
    tree = ET.parse(path)
    for var in tree.getroot().findall("variable"):
        name = var.attrib.get("name")
        value = var.text
        if name and value:
            env_vars[name] = value.strip()
    return env_vars


def _flag(text: Optional[str], default: bool) -> bool:
    if text is None:
        return default
    return text.strip().lower() == "true"


def parse_app_config(path: str) -> AppConfig:
    """Parse the main application configuration XML."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    root = ET.parse(config_path).getroot()
    config = AppConfig()

    feeds_text = root.findtext("feeds")
    if feeds_text and feeds_text.strip():
        config.feeds_file = _resolve_path(config_path, feeds_text.strip())

    env_text = root.findtext("env")
    if env_text and env_text.strip():
        config.env_file = _resolve_path(config_path, env_text.strip())

    config.seed_default_feeds = _flag(root.findtext("seed-default-feeds"), True)

    db_node = root.find("database")
    if db_node is not None:
        config.database.connection_string = db_node.findtext("connection-string")

    server_node = root.find("server")
    if server_node is not None:
        config.server.host = server_node.findtext("host", config.server.host)
        config.server.port = int(server_node.findtext("port", str(config.server.port)))

    log_node = root.find("logging")
    if log_node is not None:
        config.logging.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            config.logging.file = _resolve_path(config_path, log_file)

    config.concurrency = int(root.findtext("concurrency", str(config.concurrency)))
    if config.concurrency < 1:
        raise ValueError("<concurrency> must be at least 1.")
    config.fetch_timeout = float(
        root.findtext("fetch-timeout", str(config.fetch_timeout))
    )
    if config.fetch_timeout <= 0:
        raise ValueError("<fetch-timeout> must be positive.")

    config.extractor = root.findtext("extractor", config.extractor).strip()
    if config.extractor not in ("trafilatura", "newspaper"):
        raise ValueError(f"Unsupported extractor: {config.extractor}")

    return config


def apply_env_overrides(
    config: AppConfig, environ: Optional[Mapping[str, str]] = None
) -> AppConfig:
    """Fill in settings taken from the environment.

    ``DB_FILE``/``DB_DIR`` choose the SQLite location when no connection string
    is configured; ``PORT`` overrides the server port.
    """
    environ = os.environ if environ is None else environ

    if not config.database.connection_string:
        db_dir = Path(environ.get("DB_DIR") or DEFAULT_DB_DIR).expanduser()
        db_file = environ.get("DB_FILE") or str(db_dir / "feeds.db")
        config.database.connection_string = f"sqlite:///{db_file}"

    port = environ.get("PORT")
    if port:
        try:
            config.server.port = int(port)
        except ValueError:
            raise ValueError(f"PORT must be an integer, got {port!r}") from None

    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from ``path`` (if any), its env file and the environment."""
    config = parse_app_config(path) if path else AppConfig()
    if config.env_file:
        os.environ.update(parse_env_config(config.env_file))
    return apply_env_overrides(config)
