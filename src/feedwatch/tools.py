"""Management tools for the feed watcher.

Every tool returns a JSON string with a ``status`` and, on failure, a
human-readable ``message``.
"""

import asyncio
import json
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from langchain_core.tools import tool

from feedwatch.database import StateError, SubscriptionStore
from feedwatch.feed_parser import FeedError, FeedSource, validate_url
from feedwatch.models import DedupStrategy, RunMode, Subscription, SubscriptionStatus
from feedwatch.poller import Orchestrator

logger = logging.getLogger(__name__)

TEST_SAMPLE_SIZE = 3


@dataclass
class ToolContext:
    """Collaborators shared by all tools."""

    store: SubscriptionStore
    source: FeedSource
    orchestrator: Orchestrator | None = None
    dedup_strategy: DedupStrategy = DedupStrategy.WATERMARK
    run_deadline: float | None = None
    loop: asyncio.AbstractEventLoop | None = None


# Module-level context, set during startup
_context: ToolContext | None = None


def set_context(context: ToolContext | None) -> None:
    """Set the context used by all tools."""
    global _context
    _context = context


def _get_context() -> ToolContext:
    """Get the tool context, raising if not set."""
    if _context is None:
        raise RuntimeError("Tool context not initialized. Call set_context() first.")
    return _context


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a coroutine on the main event loop when there is one.

    Tools are invoked from a worker thread; scheduling onto the main loop
    keeps every fetch and delivery on a single timeline.
    """
    loop = _get_context().loop
    if loop is not None and loop.is_running():
        return asyncio.run_coroutine_threadsafe(coro, loop).result()
    return asyncio.run(coro)


def _error(message: str, **extra: Any) -> str:
    return json.dumps({"status": "error", "message": message, **extra})


def _describe(sub: Subscription) -> dict:
    return {
        "id": sub.id,
        "name": sub.display_name,
        "title": sub.title,
        "url": sub.url,
        "status": sub.status.value,
    }


@tool
def add_feed(url: str, name: str = "") -> str:
    """Start watching an RSS or Atom feed.

    Args:
        url: The URL of the RSS or Atom feed.
        name: Optional custom display name for the feed.
    """
    ctx = _get_context()
    url = url.strip()
    custom_name = name.strip() or None

    try:
        validate_url(url)
        if ctx.store.find_by_url(url):
            return _error("This feed is already registered")
        parsed = _run(ctx.source.fetch(url))
        sub = ctx.store.add(url, parsed.title, custom_name, ctx.dedup_strategy)
    except FeedError as e:
        return _error(f"The feed could not be read: {e}")
    except ValueError as e:
        return _error(str(e))
    except StateError as e:
        logger.error("add_feed failed: %s", e)
        return _error("The feed could not be saved. Please try again later.")

    result = {"status": "added", "feed": _describe(sub)}
    if parsed.warnings:
        result["warnings"] = parsed.warnings
    return json.dumps(result)


@tool
def remove_feed(identifier: str) -> str:
    """Stop watching a feed and forget what was delivered from it.

    Args:
        identifier: The feed id (e.g. feed-001), URL or custom name.
    """
    ctx = _get_context()
    try:
        sub = ctx.store.find_by_identifier(identifier.strip())
        if sub is None:
            return _error(f"No feed found matching '{identifier}'")
        ctx.store.delete(sub.id)
    except StateError as e:
        logger.error("remove_feed failed: %s", e)
        return _error("The feed could not be removed. Please try again later.")

    return json.dumps({"status": "removed", "feed": _describe(sub)})


@tool
def remove_all_feeds() -> str:
    """Remove every watched feed and reset feed numbering."""
    ctx = _get_context()
    try:
        feeds = ctx.store.list_all()
        if not feeds:
            return _error("No feeds are registered")
        removed = ctx.store.delete_all()
    except StateError as e:
        logger.error("remove_all_feeds failed: %s", e)
        return _error("The feeds could not be removed. Please try again later.")

    return json.dumps({
        "status": "removed",
        "removed": removed,
        "feeds": [f"{f.id}: {f.display_name}" for f in feeds],
    })


@tool
def list_feeds() -> str:
    """List all watched feeds with their status and last check time."""
    ctx = _get_context()
    try:
        feeds = ctx.store.list_all()
    except StateError as e:
        logger.error("list_feeds failed: %s", e)
        return _error("The feed list is unavailable right now.")

    return json.dumps({
        "feeds": [
            {
                **_describe(feed),
                "added_at": feed.added_at.isoformat(),
                "last_checked_at": feed.last_checked_at.isoformat() if feed.last_checked_at else None,
            }
            for feed in feeds
        ],
        "total": len(feeds),
        "active": sum(1 for f in feeds if f.is_active),
        "paused": sum(1 for f in feeds if not f.is_active),
    })


def _set_status(identifier: str, status: SubscriptionStatus) -> str:
    ctx = _get_context()
    try:
        sub = ctx.store.find_by_identifier(identifier.strip())
        if sub is None:
            return _error(f"No feed found matching '{identifier}'")
        if sub.status is status:
            return _error(f"Feed {sub.id} is already {status.value}")
        ctx.store.set_status(sub.id, status)
    except StateError as e:
        logger.error("Status change failed: %s", e)
        return _error("The feed status could not be changed. Please try again later.")

    sub.status = status
    return json.dumps({"status": status.value, "feed": _describe(sub)})


@tool
def pause_feed(identifier: str) -> str:
    """Pause a feed so scheduled checks skip it.

    Args:
        identifier: The feed id (e.g. feed-001), URL or custom name.
    """
    return _set_status(identifier, SubscriptionStatus.PAUSED)


@tool
def resume_feed(identifier: str) -> str:
    """Resume a paused feed from the next check on.

    Args:
        identifier: The feed id (e.g. feed-001), URL or custom name.
    """
    return _set_status(identifier, SubscriptionStatus.ACTIVE)


@tool
def test_feed(url: str) -> str:
    """Fetch a feed once and report what it contains, without registering it.

    Args:
        url: The URL of the RSS or Atom feed to test.
    """
    ctx = _get_context()
    try:
        parsed = _run(ctx.source.fetch(url.strip()))
    except FeedError as e:
        return _error(f"The feed could not be read: {e}")

    if not parsed.entries:
        return _error("No entries could be read from this feed")

    return json.dumps({
        "status": "ok",
        "title": parsed.title,
        "entry_count": len(parsed.entries),
        "samples": [
            {
                "title": entry.title,
                "link": entry.link,
                "published_at": entry.published_at.isoformat() if entry.published_at else None,
            }
            for entry in parsed.entries[:TEST_SAMPLE_SIZE]
        ],
        "warnings": parsed.warnings,
    })


@tool
def run_check(full: bool = False) -> str:
    """Check feeds for new entries right now and post them.

    Args:
        full: If true, check every active feed. Otherwise only the first
            active feed is checked so the answer comes back quickly.
    """
    ctx = _get_context()
    if ctx.orchestrator is None:
        return _error("Feed checks are not available in this session")

    mode = RunMode.FULL if full else RunMode.QUICK
    try:
        stats = _run(ctx.orchestrator.run(mode, deadline=ctx.run_deadline))
    except Exception as e:
        logger.exception("run_check failed")
        return _error(f"The feed check failed: {e}")

    if stats.failed:
        return _error("The feed check failed; see the error channel for details")

    return json.dumps({
        "status": "completed",
        "mode": mode.value,
        "feeds_checked": stats.feeds_processed,
        "entries_delivered": stats.entries_delivered,
        "errors": [o.error for o in stats.outcomes if not o.ok],
        "timed_out": stats.timed_out,
    })


TOOLS = [
    add_feed,
    remove_feed,
    remove_all_feeds,
    list_feeds,
    pause_feed,
    resume_feed,
    test_feed,
    run_check,
]
