"""Shared test fixtures for feedwatch tests."""

import os
import tempfile
from datetime import datetime, timezone

import pytest

from feedwatch.database import SubscriptionStore
from feedwatch.delivery import DeliveryPipeline
from feedwatch.feed_parser import ParsedFeed
from feedwatch.models import Entry
from feedwatch.poller import Orchestrator


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <pubDate>Thu, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Thu, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""


def ts(seconds: int) -> datetime:
    """A UTC timestamp ``seconds`` after the epoch."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def make_entry(identity: str, published: int | None = None, title: str | None = None) -> Entry:
    return Entry(
        identity=identity,
        title=title or f"Entry {identity}",
        link=f"https://example.com/{identity}",
        summary=f"Summary of {identity}",
        published_at=ts(published) if published is not None else None,
    )


class FakeSource:
    """FeedSource stand-in serving canned entries or errors per URL."""

    def __init__(self):
        self.feeds: dict[str, list[Entry]] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []

    async def fetch(self, url: str) -> ParsedFeed:
        self.calls.append(url)
        if url in self.errors:
            raise self.errors[url]
        return ParsedFeed(
            title=f"Feed at {url}",
            description=None,
            site_link=None,
            entries=list(self.feeds.get(url, [])),
            warnings=[],
        )


class FakeNotifier:
    """Notifier stand-in recording every message it is asked to send."""

    def __init__(self):
        self.messages: list = []
        self.errors: list[tuple[str, str | None]] = []
        self.reject: set[str] = set()
        self.raise_on_error = False

    async def send(self, message) -> bool:
        text = getattr(message, "content", None) or getattr(message, "title", "")
        if any(marker in text for marker in self.reject):
            return False
        self.messages.append(message)
        return True

    async def send_error(self, error: str, context: str | None = None) -> bool:
        if self.raise_on_error:
            raise RuntimeError("error channel down")
        self.errors.append((error, context))
        return True


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def store(tmp_db_path):
    """A connected SubscriptionStore on a temporary database."""
    db = SubscriptionStore(tmp_db_path)
    db.connect()
    yield db
    db.close()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def orchestrator(store, source, notifier):
    """Orchestrator with fakes and no pacing delays."""
    pipeline = DeliveryPipeline(notifier, delay=0)
    return Orchestrator(store, source, pipeline, notifier, feed_delay=0)


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML
