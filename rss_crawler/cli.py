"""Command-line interface for the rss_crawler application."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import pprint
import time
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy.engine import Engine

from . import db
from .config import AppConfig, load_config
from .manager import FeedManager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Aggregate RSS/Atom/RDF feeds and serve them over HTTP and MCP."
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the main configuration XML file (defaults apply when omitted).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API server.")
    serve.add_argument("--host", default=None, help="Bind address. Overrides config.")
    serve.add_argument("--port", type=int, default=None, help="Port. Overrides config.")

    commands.add_parser("mcp", help="Run the MCP tool server on stdio.")

    fetch = commands.add_parser(
        "fetch", help="Fetch all feeds once and print the newest items as JSON."
    )
    fetch.add_argument("--limit", type=int, default=10, help="Items to print (1-50).")

    prune = commands.add_parser("prune", help="Delete stored items older than N days.")
    prune.add_argument("--days", type=float, required=True, help="Age cutoff in days.")

    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    # stderr keeps stdout free for the stdio MCP transport.
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logger.debug(
            "Logger initialised with level %s and file output to %s",
            level_name.upper(),
            log_path,
        )
    else:
        logger.debug(
            "Logger initialised with console output at level %s", level_name.upper()
        )


def open_manager(config: AppConfig) -> Tuple[Engine, FeedManager]:
    """Open the store and return the engine with a seeded manager."""
    engine = db.init_engine(config.database.connection_string)
    manager = FeedManager(
        db.get_session_factory(engine),
        concurrency=config.concurrency,
        fetch_timeout=config.fetch_timeout,
        extractor=config.extractor,
    )
    manager.seed_feeds(config.initial_feeds())
    return engine, manager


def _serve(config: AppConfig, args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    host = args.host or config.server.host
    port = args.port or config.server.port
    logger.info("RSS Manager server is running at http://%s:%d", host, port)
    logger.info("MCP endpoint available at http://%s:%d/mcp", host, port)
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)
    return 0


def _run_mcp(config: AppConfig) -> int:
    from .mcp_server import create_mcp_server

    engine, manager = open_manager(config)
    try:
        logger.info("Starting RSS Manager MCP server on stdio")
        create_mcp_server(manager).run(transport="stdio")
    finally:
        engine.dispose()
    return 0


def _fetch(config: AppConfig, limit: int) -> int:
    if not 1 <= limit <= 50:
        raise ValueError("--limit must be between 1 and 50.")
    engine, manager = open_manager(config)
    try:
        response = asyncio.run(manager.fetch_feeds(limit))
    finally:
        engine.dispose()
    print(json.dumps(response.to_dict(), indent=2, ensure_ascii=False))
    return 0


def _prune(config: AppConfig, days: float) -> int:
    if days <= 0:
        raise ValueError("--days must be positive.")
    engine, manager = open_manager(config)
    try:
        removed = manager.prune_items(int(time.time() - days * 86400))
    finally:
        engine.dispose()
    print(f"Removed {removed} items older than {days:g} days.")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)

        log_level = args.log_level or config.logging.level
        log_file = args.log_file or config.logging.file
        configure_logging(log_level, log_file)

        config_dict = dataclasses.asdict(config)
        if config_dict["database"].get("connection_string"):
            config_dict["database"]["connection_string"] = "***MASKED***"
        logger.debug("Active Configuration:\n%s", pprint.pformat(config_dict))

        if args.command == "serve":
            return _serve(config, args)
        if args.command == "mcp":
            return _run_mcp(config)
        if args.command == "fetch":
            return _fetch(config, args.limit)
        return _prune(config, args.days)
    except ValueError as exc:
        parser.error(str(exc))
    except (RuntimeError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1
