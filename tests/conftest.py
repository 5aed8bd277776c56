import asyncio

import pytest

from rss_crawler import db
from rss_crawler.models import NormalizedItem


RSS2_DOCUMENT = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Example RSS</title>
    <description>Example channel</description>
    <link>https://example.com/</link>
    <item>
      <title>First</title>
      <link>https://example.com/first</link>
      <guid isPermaLink="false">guid-1</guid>
      <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
      <description>&lt;p&gt;First summary&lt;/p&gt;</description>
      <dc:creator>Alice</dc:creator>
      <category>Tech</category>
      <category>AI</category>
    </item>
    <item>
      <title>Second</title>
      <link>https://example.com/second</link>
      <guid>guid-2</guid>
      <pubDate>Tue, 02 Jan 2024 10:00:00 GMT</pubDate>
      <description>Second summary</description>
    </item>
  </channel>
</rss>
"""

ATOM_DOCUMENT = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Example Atom</title>
  <subtitle>Atom subtitle</subtitle>
  <link rel="alternate" href="https://atom.example.com/"/>
  <entry>
    <title>Atom Entry</title>
    <id>urn:uuid:1</id>
    <link rel="self" href="https://atom.example.com/self"/>
    <link rel="alternate" href="https://atom.example.com/entry"/>
    <published>2024-01-03T08:00:00Z</published>
    <updated>2024-01-04T08:00:00Z</updated>
    <summary>Atom summary</summary>
    <author><name>Bob</name></author>
    <category term="Science"/>
  </entry>
</feed>
"""

RDF_DOCUMENT = """<?xml version="1.0" encoding="UTF-8"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
         xmlns="http://purl.org/rss/1.0/"
         xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel rdf:about="https://rdf.example.com/">
    <title>Example RDF</title>
    <link>https://rdf.example.com/</link>
    <description>RDF channel</description>
  </channel>
  <item rdf:about="https://rdf.example.com/1">
    <title>RDF Item</title>
    <link>https://rdf.example.com/1</link>
    <description>RDF summary</description>
    <dc:date>2024-01-05T09:00:00+09:00</dc:date>
    <dc:creator>Carol</dc:creator>
  </item>
</rdf:RDF>
"""


def make_item(item_id, published_at, title="Title", summary="", **kwargs):
    return NormalizedItem(
        id=item_id,
        title=title,
        published_at=published_at,
        updated_at=published_at,
        summary=summary,
        **kwargs,
    )



def has_running_loop():
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True

@pytest.fixture
def engine():
    engine = db.init_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db.get_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()
