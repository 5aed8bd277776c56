import asyncio
import threading
import time

from conftest import make_item
from rss_crawler import db, runner
from rss_crawler.models import ParsedFeed


def test_fetches_respect_concurrency_limit(monkeypatch, session_factory):
    with session_factory() as session:
        for n in range(6):
            db.upsert_feed_source(session, f"https://{n}.example.com/rss", f"Feed {n}")

    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def fake_fetch(url, timeout):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.05)
        with lock:
            state["active"] -= 1
        return ParsedFeed(title="x", items=[make_item(url, 1)])

    monkeypatch.setattr(runner, "fetch_feed", fake_fetch)

    items = asyncio.run(
        runner.aggregate_feeds(session_factory, limit=50, concurrency=2)
    )

    assert len(items) == 6
    assert 1 <= state["peak"] <= 2
