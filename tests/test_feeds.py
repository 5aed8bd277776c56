import time
from types import SimpleNamespace

import pytest
import requests

from conftest import ATOM_DOCUMENT, RDF_DOCUMENT, RSS2_DOCUMENT
from rss_crawler import feeds
from rss_crawler.feeds import Dialect, detect_dialect, normalize_entry
from rss_crawler.models import feed_id_for_url

NOW = 1_700_000_000
FEED_URL = "https://example.com/feed.xml"

SAME_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/"><channel>
<title>Feed</title><link>https://example.com/</link>
<item><title>Same</title><link>https://example.com/same</link>
<guid isPermaLink="false">same-id</guid>
<pubDate>Mon, 01 Jan 2024 00:00:00 GMT</pubDate>
<description>Body</description><dc:creator>Ann</dc:creator>
<category>Tech</category></item>
</channel></rss>
"""

SAME_ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"><title>Feed</title>
<entry><title>Same</title><id>same-id</id>
<link rel="alternate" href="https://example.com/same"/>
<published>2024-01-01T00:00:00Z</published>
<summary>Body</summary><author><name>Ann</name></author>
<category term="Tech"/></entry>
</feed>
"""

SAME_RDF = """<?xml version="1.0" encoding="UTF-8"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
 xmlns="http://purl.org/rss/1.0/" xmlns:dc="http://purl.org/dc/elements/1.1/">
<channel rdf:about="https://example.com/"><title>Feed</title>
<link>https://example.com/</link><description>d</description></channel>
<item rdf:about="same-id"><title>Same</title><link>https://example.com/same</link>
<description>Body</description><dc:date>2024-01-01T00:00:00Z</dc:date>
<dc:creator>Ann</dc:creator><dc:subject>Tech</dc:subject></item>
</rdf:RDF>
"""

RSS090_DOCUMENT = """<?xml version="1.0"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
 xmlns="http://my.netscape.com/rdf/simple/0.9/">
<channel><title>Old RDF</title><link>https://old.example.com/</link>
<description>Legacy</description></channel>
<item><title>One</title><link>https://old.example.com/1</link></item>
<item><title>Two</title><link>https://old.example.com/2</link></item>
</rdf:RDF>
"""


def _japanese_rdf(encoding):
    return f"""<?xml version="1.0" encoding="{encoding}"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
 xmlns="http://purl.org/rss/1.0/">
<channel rdf:about="https://kaden.example.jp/"><title>家電ニュース</title>
<link>https://kaden.example.jp/</link><description>最新記事</description></channel>
<item rdf:about="https://kaden.example.jp/1"><title>新製品</title>
<link>https://kaden.example.jp/1</link></item>
</rdf:RDF>
""".encode(encoding)


def _rss_with_pub_date(value):
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Dates</title>
<item><title>t</title><guid>d-1</guid><pubDate>{value}</pubDate></item>
</channel></rss>
"""


@pytest.mark.parametrize(
    "version, dialect",
    [
        ("rss20", Dialect.RSS2),
        ("rss091u", Dialect.RSS2),
        ("atom10", Dialect.ATOM),
        ("atom03", Dialect.ATOM),
        ("rss090", Dialect.RDF_A),
        ("rss10", Dialect.RDF_B),
        ("", Dialect.UNRECOGNIZED),
        ("cdf", Dialect.UNRECOGNIZED),
    ],
)
def test_detect_dialect(version, dialect):
    assert detect_dialect({"version": version}) is dialect


def test_parse_rss2_document():
    parsed = feeds.parse_feed_document(RSS2_DOCUMENT, FEED_URL, now=NOW)

    assert parsed.title == "Example RSS"
    assert parsed.description == "Example channel"
    assert parsed.link == "https://example.com/"
    assert [item.id for item in parsed.items] == ["guid-1", "guid-2"]

    first = parsed.items[0]
    assert first.title == "First"
    assert first.link == "https://example.com/first"
    assert first.published_at == 1704103200
    assert first.updated_at == first.published_at
    assert first.summary == "<p>First summary</p>"
    assert first.author == "Alice"
    assert first.categories == ["Tech", "AI"]
    assert first.origin_feed_id == feed_id_for_url(FEED_URL)
    assert first.origin_feed_title == "Example RSS"
    assert first.origin_feed_url == FEED_URL


def test_parse_atom_document():
    parsed = feeds.parse_feed_document(ATOM_DOCUMENT, FEED_URL, now=NOW)

    assert parsed.title == "Example Atom"
    assert parsed.description == "Atom subtitle"
    assert parsed.link == "https://atom.example.com/"
    (entry,) = parsed.items
    assert entry.id == "urn:uuid:1"
    assert entry.link == "https://atom.example.com/entry"
    assert entry.published_at == 1704268800
    assert entry.updated_at == 1704355200
    assert entry.summary == "Atom summary"
    assert entry.author == "Bob"
    assert entry.categories == ["Science"]


def test_parse_rdf_document():
    parsed = feeds.parse_feed_document(RDF_DOCUMENT, FEED_URL, now=NOW)

    assert parsed.title == "Example RDF"
    (item,) = parsed.items
    assert item.id == "https://rdf.example.com/1"
    assert item.title == "RDF Item"
    assert item.link == "https://rdf.example.com/1"
    assert item.published_at == 1704412800
    assert item.updated_at == 1704412800
    assert item.author == "Carol"


def test_parse_rss090_document():
    parsed = feeds.parse_feed_document(RSS090_DOCUMENT, FEED_URL, now=NOW)

    assert parsed.title == "Old RDF"
    assert [item.title for item in parsed.items] == ["One", "Two"]
    assert [item.published_at for item in parsed.items] == [NOW, NOW]


def test_same_entry_normalizes_identically_across_dialects():
    results = [
        feeds.parse_feed_document(document, FEED_URL, now=NOW).items
        for document in (SAME_RSS, SAME_ATOM, SAME_RDF)
    ]

    assert all(len(items) == 1 for items in results)
    expected = results[0][0]
    assert expected.id == "same-id"
    assert expected.published_at == 1704067200
    assert expected.categories == ["Tech"]
    assert all(items[0] == expected for items in results)


@pytest.mark.parametrize("encoding", ["shift_jis", "euc_jp"])
def test_multibyte_encoded_feed(encoding):
    parsed = feeds.parse_feed_document(_japanese_rdf(encoding), FEED_URL, now=NOW)

    assert parsed.title == "家電ニュース"
    assert [item.title for item in parsed.items] == ["新製品"]


def test_html_entities_in_feed():
    document = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Cartoons</title>
<item><title>Tom &amp; Jerry&nbsp;return</title><guid>tj</guid></item>
</channel></rss>
"""

    parsed = feeds.parse_feed_document(document, FEED_URL, now=NOW)

    assert [item.title for item in parsed.items] == ["Tom & Jerry\xa0return"]


def test_timezone_abbreviations_are_resolved():
    parsed = feeds.parse_feed_document(
        _rss_with_pub_date("Mon, 01 Jan 2024 19:00:00 JST"), FEED_URL, now=NOW
    )

    assert parsed.items[0].published_at == 1704103200


def test_unknown_timezone_is_treated_as_unparseable():
    parsed = feeds.parse_feed_document(
        _rss_with_pub_date("Mon, 01 Jan 2024 10:00:00 CET"), FEED_URL, now=NOW
    )

    assert parsed.items[0].published_at == NOW


def test_published_falls_back_to_updated():
    item = normalize_entry(
        {"title": "t", "updated": "2024-01-03T00:00:00Z"}, FEED_URL, now=NOW
    )

    assert item.published_at == 1704240000
    assert item.updated_at == 1704240000

    item = normalize_entry(
        {
            "published": "2024-01-02T00:00:00Z",
            "updated": "2024-01-03T00:00:00Z",
        },
        FEED_URL,
        now=NOW,
    )
    assert item.published_at == 1704153600
    assert item.updated_at == 1704240000


def test_feedparser_date_used_when_dateutil_cannot_read_format():
    item = normalize_entry(
        {"published": "lundi premier", "published_parsed": time.gmtime(1704103200)},
        FEED_URL,
        now=NOW,
    )

    assert item.published_at == 1704103200


def test_missing_or_invalid_dates_fall_back_to_now():
    assert normalize_entry({"title": "a"}, FEED_URL, now=NOW).published_at == NOW
    bad = normalize_entry({"published": "not a date"}, FEED_URL, now=NOW)
    assert bad.published_at == NOW
    assert bad.updated_at == NOW


def test_summary_falls_back_to_content():
    content = [{"type": "text/html", "value": "C"}]

    assert normalize_entry({"summary": "S", "content": content}, FEED_URL).summary == "S"
    assert normalize_entry({"content": content}, FEED_URL).summary == "C"
    assert normalize_entry({"summary": "", "content": content}, FEED_URL).summary == "C"
    assert normalize_entry({}, FEED_URL).summary == ""


def test_author_link_and_id_fallbacks():
    item = normalize_entry(
        {
            "title": "x",
            "author_detail": {"name": "Dana"},
            "links": [{"rel": "self", "href": "https://h/self"}],
        },
        FEED_URL,
    )

    assert item.author == "Dana"
    assert item.link == "https://h/self"
    assert item.id == f"{FEED_URL}/x"

    item = normalize_entry(
        {
            "links": [
                {"rel": "self", "href": "https://h/self"},
                {"rel": "alternate", "href": "https://h/page"},
            ]
        },
        FEED_URL,
    )
    assert item.link == "https://h/page"


def test_categories_use_term_or_label_and_drop_duplicates():
    item = normalize_entry(
        {
            "tags": [
                {"term": "A", "scheme": None, "label": None},
                {"term": None, "scheme": None, "label": "B"},
                {"term": "A", "scheme": "x", "label": None},
                {"term": "", "scheme": None, "label": None},
            ]
        },
        FEED_URL,
    )

    assert item.categories == ["A", "B"]


def test_normalization_is_deterministic():
    first = feeds.parse_feed_document(RSS2_DOCUMENT, FEED_URL, now=NOW)
    second = feeds.parse_feed_document(RSS2_DOCUMENT, FEED_URL, now=NOW)

    assert first == second


def test_unrecognized_or_empty_feed_yields_unknown_feed():
    parsed = feeds.parse_feed_document("<html><body>nope</body></html>", FEED_URL)
    assert parsed.title == "Unknown Feed"
    assert parsed.items == []

    parsed = feeds.parse_feed_document(
        '<rss version="2.0"><channel><title>Empty</title></channel></rss>', FEED_URL
    )
    assert parsed.title == "Unknown Feed"
    assert parsed.items == []


def test_parse_timestamp():
    assert feeds.parse_timestamp("Mon, 01 Jan 2024 05:00:00 EST") == 1704103200
    assert feeds.parse_timestamp("2024-01-01T19:00:00+09:00") == 1704103200
    assert feeds.parse_timestamp("2024-01-01 10:00:00") == 1704103200
    assert feeds.parse_timestamp("Mon, 01 Jan 2024 10:00:00 CEST") is None
    assert feeds.parse_timestamp("garbage") is None


def test_fetch_feed_uses_requests(monkeypatch):
    calls = {}

    def fake_get(url, timeout, headers):
        calls.update(url=url, timeout=timeout, headers=headers)
        return SimpleNamespace(
            content=RSS2_DOCUMENT.encode("utf-8"), raise_for_status=lambda: None
        )

    monkeypatch.setattr(feeds.requests, "get", fake_get)

    parsed = feeds.fetch_feed(FEED_URL, timeout=5)

    assert len(parsed.items) == 2
    assert calls["url"] == FEED_URL
    assert calls["timeout"] == 5
    assert calls["headers"]["User-Agent"] == feeds.USER_AGENT


def test_fetch_feed_propagates_http_errors(monkeypatch):
    def raise_error():
        raise requests.HTTPError("404")

    monkeypatch.setattr(
        feeds.requests,
        "get",
        lambda *args, **kwargs: SimpleNamespace(content=b"", raise_for_status=raise_error),
    )

    with pytest.raises(requests.HTTPError):
        feeds.fetch_feed(FEED_URL)
