"""Tests for the management tools."""

import json

import pytest
from conftest import make_entry

from feedwatch import tools
from feedwatch.feed_parser import FetchError
from feedwatch.models import DedupStrategy, SubscriptionStatus


@pytest.fixture
def context(store, source, orchestrator):
    ctx = tools.ToolContext(store=store, source=source, orchestrator=orchestrator)
    tools.set_context(ctx)
    yield ctx
    tools.set_context(None)


def call(tool, **kwargs) -> dict:
    return json.loads(tool.invoke(kwargs))


def test_add_feed(context, source, store):
    result = call(tools.add_feed, url="https://a.example/feed", name="Alpha")

    assert result["status"] == "added"
    assert result["feed"]["id"] == "feed-001"
    assert result["feed"]["name"] == "Alpha"
    assert result["feed"]["title"] == "Feed at https://a.example/feed"
    assert store.get("feed-001").custom_name == "Alpha"


def test_add_feed_uses_configured_strategy(context, store):
    context.dedup_strategy = DedupStrategy.IDENTITY

    call(tools.add_feed, url="https://a.example/feed")

    assert store.get("feed-001").dedup_strategy is DedupStrategy.IDENTITY


def test_add_feed_rejects_duplicates(context):
    call(tools.add_feed, url="https://a.example/feed")

    result = call(tools.add_feed, url="https://a.example/feed")

    assert result["status"] == "error"
    assert "already registered" in result["message"]


def test_add_feed_rejects_invalid_url(context, source):
    result = call(tools.add_feed, url="not a url")

    assert result["status"] == "error"
    assert source.calls == []


def test_add_feed_reports_fetch_failure(context, source, store):
    source.errors["https://a.example/feed"] = FetchError("HTTP 404")

    result = call(tools.add_feed, url="https://a.example/feed")

    assert result == {"status": "error", "message": "The feed could not be read: HTTP 404"}
    assert store.list_all() == []


def test_remove_feed(context, store):
    call(tools.add_feed, url="https://a.example/feed", name="Alpha")

    result = call(tools.remove_feed, identifier="Alpha")

    assert result["status"] == "removed"
    assert store.list_all() == []


def test_remove_unknown_feed(context):
    result = call(tools.remove_feed, identifier="feed-404")

    assert result["status"] == "error"
    assert "feed-404" in result["message"]


def test_remove_all_feeds(context, store):
    call(tools.add_feed, url="https://a.example/feed")
    call(tools.add_feed, url="https://b.example/feed")

    result = call(tools.remove_all_feeds)

    assert result["removed"] == 2
    assert store.list_all() == []
    assert call(tools.remove_all_feeds)["status"] == "error"


def test_pause_and_resume(context, store):
    call(tools.add_feed, url="https://a.example/feed")

    assert call(tools.pause_feed, identifier="feed-001")["status"] == "paused"
    assert store.get("feed-001").status is SubscriptionStatus.PAUSED
    assert call(tools.pause_feed, identifier="feed-001")["status"] == "error"

    assert call(tools.resume_feed, identifier="feed-001")["status"] == "active"
    assert store.get("feed-001").status is SubscriptionStatus.ACTIVE


def test_list_feeds(context, store):
    call(tools.add_feed, url="https://a.example/feed")
    call(tools.add_feed, url="https://b.example/feed")
    call(tools.pause_feed, identifier="feed-002")

    result = call(tools.list_feeds)

    assert result["total"] == 2
    assert result["active"] == 1
    assert result["paused"] == 1
    assert [f["id"] for f in result["feeds"]] == ["feed-001", "feed-002"]


def test_test_feed_never_touches_state_or_notifier(context, source, store, notifier):
    url = "https://a.example/feed"
    source.feeds[url] = [make_entry(str(i), i) for i in range(5)]

    result = call(tools.test_feed, url=url)

    assert result["status"] == "ok"
    assert result["entry_count"] == 5
    assert len(result["samples"]) == 3
    assert store.list_all() == []
    assert notifier.messages == []
    assert notifier.errors == []


def test_test_feed_reports_empty_feed(context):
    result = call(tools.test_feed, url="https://empty.example/feed")

    assert result["status"] == "error"


def test_run_check_quick(context, source, notifier):
    call(tools.add_feed, url="https://a.example/feed")
    call(tools.add_feed, url="https://b.example/feed")
    source.feeds["https://a.example/feed"] = [make_entry("a", 100)]
    source.feeds["https://b.example/feed"] = [make_entry("b", 100)]

    result = call(tools.run_check)

    assert result["mode"] == "quick"
    assert result["feeds_checked"] == 1
    assert result["entries_delivered"] == 1


def test_run_check_full(context, source):
    call(tools.add_feed, url="https://a.example/feed")
    call(tools.add_feed, url="https://b.example/feed")
    source.feeds["https://a.example/feed"] = [make_entry("a", 100)]
    source.feeds["https://b.example/feed"] = [make_entry("b", 100)]

    result = call(tools.run_check, full=True)

    assert result["feeds_checked"] == 2
    assert result["entries_delivered"] == 2


def test_run_check_without_orchestrator(store, source):
    tools.set_context(tools.ToolContext(store=store, source=source))
    try:
        assert call(tools.run_check)["status"] == "error"
    finally:
        tools.set_context(None)


def test_tools_require_context():
    tools.set_context(None)

    with pytest.raises(RuntimeError):
        tools.list_feeds.invoke({})
