"""FastAPI routes for the crawler."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Annotated, Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from . import db
from .config import AppConfig
from .manager import FeedManager

logger = logging.getLogger(__name__)

SERVICE_NAME = "mcp-rss-crawler"
MAX_LIMIT = 50

Limit = Annotated[
    int, Query(ge=1, le=MAX_LIMIT, description="Number of articles to retrieve")
]


class InvalidParams(ValueError):
    """Raised for malformed JSON-RPC parameters."""


class MethodNotFound(Exception):
    """Raised for JSON-RPC methods the endpoint does not serve."""


def _limit_param(params: Dict[str, Any]) -> int:
    limit = params.get("limit", 10)
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidParams("limit must be an integer")
    if not 1 <= limit <= MAX_LIMIT:
        raise InvalidParams(f"limit must be between 1 and {MAX_LIMIT}")
    return limit


def _string_param(params: Dict[str, Any], name: str) -> str:
    value = params.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidParams(f"{name} is required")
    return value


async def _dispatch(manager: FeedManager, method: str, params: Dict[str, Any]) -> Any:
    if method == "fetchRssFeeds":
        return (await manager.fetch_feeds(_limit_param(params))).to_dict()
    if method == "getLatestRssFeeds":
        limit = _limit_param(params)
        feeds = await asyncio.to_thread(manager.get_latest_articles, limit)
        return feeds.to_dict()
    if method == "fetchRssFeedsByCategory":
        category = _string_param(params, "category")
        limit = _limit_param(params)
        feeds = await asyncio.to_thread(manager.get_feeds_by_category, category, limit)
        return feeds.to_dict()
    if method == "searchRssFeeds":
        query = _string_param(params, "query")
        limit = _limit_param(params)
        feeds = await asyncio.to_thread(manager.search_feeds, query, limit)
        return feeds.to_dict()
    if method == "listRssFeeds":
        feeds = await asyncio.to_thread(manager.list_feeds)
        return [asdict(feed) for feed in feeds]
    if method == "getArticlesByKeywords":
        limit = _limit_param(params)
        feeds = await asyncio.to_thread(manager.get_articles_by_keywords, limit)
        return feeds.to_dict()
    raise MethodNotFound(method)


def create_app(config: AppConfig, manager: Optional[FeedManager] = None) -> FastAPI:
    """Build the application.

    Without an explicit ``manager`` the lifespan opens the configured database,
    seeds feeds into an empty store and disposes the engine on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        if manager is None:
            engine = db.init_engine(config.database.connection_string)
            app.state.manager = FeedManager(
                db.get_session_factory(engine),
                concurrency=config.concurrency,
                fetch_timeout=config.fetch_timeout,
                extractor=config.extractor,
            )
            app.state.manager.seed_feeds(config.initial_feeds())
        else:
            app.state.manager = manager
        try:
            yield
        finally:
            if engine is not None:
                engine.dispose()
                logger.info("Database connection closed")

    app = FastAPI(
        title="MCP RSS Crawler API",
        description="Aggregated RSS/Atom/RDF feeds with search and keyword matching",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/status")
    def status():
        return {"status": "ok", "service": SERVICE_NAME}

    @app.get("/api/feeds")
    def latest_feeds(request: Request, limit: Limit = 10):
        feeds = request.app.state.manager.get_latest_articles(limit)
        return {"status": "success", "count": len(feeds.items), "feeds": feeds.to_dict()}

    @app.get("/api/feeds/list")
    def list_feeds(request: Request):
        feeds = request.app.state.manager.list_feeds()
        return {
            "status": "success",
            "count": len(feeds),
            "feeds": [asdict(feed) for feed in feeds],
        }

    @app.get("/api/feeds/search")
    def search_feeds(
        request: Request, q: Optional[str] = None, limit: Limit = 10
    ):
        if not q or not q.strip():
            return JSONResponse(
                {"status": "error", "message": "Search query is required"},
                status_code=400,
            )
        feeds = request.app.state.manager.search_feeds(q, limit)
        return {
            "status": "success",
            "query": q,
            "count": len(feeds.items),
            "feeds": feeds.to_dict(),
        }

    @app.get("/api/feeds/category/{category}")
    def feeds_by_category(request: Request, category: str, limit: Limit = 10):
        feeds = request.app.state.manager.get_feeds_by_category(category, limit)
        return {
            "status": "success",
            "category": category,
            "count": len(feeds.items),
            "feeds": feeds.to_dict(),
        }

    @app.post("/mcp")
    async def mcp_endpoint(request: Request):
        request_id = None
        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse(
                {"id": None, "error": {"code": -32700, "message": "Parse error"}},
                status_code=400,
            )

        try:
            if not isinstance(payload, dict):
                raise InvalidParams("request body must be an object")
            request_id = payload.get("id")
            method = payload.get("method")
            params = payload.get("params") or {}
            if not isinstance(params, dict):
                raise InvalidParams("params must be an object")
            result = await _dispatch(request.app.state.manager, method, params)
        except InvalidParams as exc:
            return {
                "id": request_id,
                "error": {"code": -32602, "message": "Invalid params", "data": str(exc)},
            }
        except MethodNotFound:
            return {
                "id": request_id,
                "error": {"code": -32601, "message": "Method not found"},
            }
        except Exception as exc:
            logger.exception("Error processing MCP request")
            return JSONResponse(
                {
                    "id": request_id,
                    "error": {
                        "code": -32603,
                        "message": "Internal error",
                        "data": str(exc),
                    },
                },
                status_code=500,
            )
        return {"id": request_id, "result": result}

    return app
