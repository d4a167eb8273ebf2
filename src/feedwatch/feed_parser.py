"""RSS/Atom feed fetching and parsing using httpx and feedparser."""

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from time import struct_time
from urllib.parse import urlparse

import feedparser
import httpx

from feedwatch.models import Entry

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_MAX_ENTRIES = 20
USER_AGENT = "feedwatch/0.1"
ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml;q=0.9, */*;q=0.1"


@dataclass
class ParsedFeed:
    """Result of fetching and parsing an RSS/Atom feed."""

    title: str
    description: str | None
    site_link: str | None
    entries: list[Entry]
    warnings: list[str]


class FeedError(Exception):
    """Base class for feed fetch and parse failures."""


class FetchError(FeedError):
    """Raised when a feed cannot be retrieved."""


class ParseError(FeedError):
    """Raised when a response body is not a usable RSS or Atom feed."""


class FeedSource:
    """Fetches feed URLs over HTTP and turns them into ordered entries."""

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.max_entries = max_entries
        self._transport = transport

    async def fetch(self, url: str) -> ParsedFeed:
        """Fetch and parse an RSS or Atom feed from a URL.

        Args:
            url: The feed URL to fetch and parse.

        Returns:
            ParsedFeed with feed metadata and at most ``max_entries`` entries,
            newest first.

        Raises:
            FetchError: If the URL is invalid, unreachable, times out or
                answers with a non-success status.
            ParseError: If the body is not a valid feed.
        """
        validate_url(url)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT, "Accept": ACCEPT},
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException:
            raise FetchError(f"Timed out after {self.timeout:g}s fetching {url}")
        except httpx.HTTPError as e:
            raise FetchError(f"Could not reach URL: {e}") from e

        if response.status_code in (401, 403):
            raise FetchError(
                "Feed requires authentication. Ensure the URL is publicly accessible."
            )
        if response.status_code >= 400:
            raise FetchError(f"Could not reach URL: HTTP {response.status_code}")

        parsed = parse_feed(response.content, max_entries=self.max_entries)
        for warning in parsed.warnings:
            logger.debug("%s: %s", url, warning)
        return parsed


def parse_feed(content: bytes | str, max_entries: int = DEFAULT_MAX_ENTRIES) -> ParsedFeed:
    """Parse a feed document into a ParsedFeed.

    Raises:
        ParseError: If the document is empty or not an RSS/Atom feed.
    """
    if not content or not content.strip():
        raise ParseError("Feed response was empty")

    parsed = feedparser.parse(content)

    if not parsed.get("version") and not parsed.entries:
        raise ParseError("URL does not point to a valid RSS or Atom feed")

    warnings: list[str] = []
    if parsed.bozo:
        warnings.append(f"Feed has formatting issues: {parsed.bozo_exception}")

    entries = _extract_entries(parsed.entries, warnings)

    return ParsedFeed(
        title=parsed.feed.get("title") or "Untitled Feed",
        description=parsed.feed.get("description") or parsed.feed.get("subtitle"),
        site_link=parsed.feed.get("link"),
        entries=entries[:max_entries],
        warnings=warnings,
    )


def validate_url(url: str) -> None:
    """Validate that the URL is an absolute http(s) URL."""
    try:
        result = urlparse(url)
    except ValueError:
        raise FetchError("Invalid URL format")
    if not result.scheme or not result.netloc:
        raise FetchError("Invalid URL format")
    if result.scheme not in ("http", "https"):
        raise FetchError("Invalid URL format: only http and https are supported")


def entry_identity(entry: dict) -> str | None:
    """Explicit id/guid, else the link, else the title."""
    return (
        entry.get("id")
        or entry.get("guid")
        or entry.get("link")
        or entry.get("title")
    )


def _extract_entries(raw_entries: list, warnings: list[str]) -> list[Entry]:
    """Extract normalized entries from feedparser entries, newest first."""
    entries = []
    for raw in raw_entries:
        try:
            identity = entry_identity(raw)
            if not identity:
                warnings.append("Skipping entry with no identifier")
                continue

            entries.append(
                Entry(
                    identity=identity,
                    title=raw.get("title") or "Untitled",
                    link=raw.get("link"),
                    summary=raw.get("summary") or raw.get("description"),
                    published_at=_parse_date(raw),
                )
            )
        except (AttributeError, TypeError, ValueError) as e:
            warnings.append(f"Skipping malformed entry: {e}")
            continue

    # Stable sort keeps fetch order for equal timestamps
    entries.sort(
        key=lambda e: e.published_at or datetime.min.replace(tzinfo=timezone.utc),
        reverse=True,
    )
    return entries


def _parse_date(entry: dict) -> datetime | None:
    """Parse the publication date (UTC) from a feedparser entry."""
    for field in ("published_parsed", "updated_parsed", "created_parsed"):
        time_struct = entry.get(field)
        if isinstance(time_struct, struct_time):
            try:
                return datetime.fromtimestamp(calendar.timegm(time_struct), tz=timezone.utc)
            except (ValueError, OverflowError):
                continue
    return None
