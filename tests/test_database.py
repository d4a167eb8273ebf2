"""Tests for the SQLite subscription store."""

import pytest
from conftest import ts

from feedwatch.database import StateError, SubscriptionStore
from feedwatch.models import (
    DedupStrategy,
    IdentitySet,
    SubscriptionStatus,
    Watermark,
)


def test_ids_are_sequential(store):
    first = store.add("https://a.example/feed", "A")
    second = store.add("https://b.example/feed", "B")

    assert first.id == "feed-001"
    assert second.id == "feed-002"
    assert [s.id for s in store.list_all()] == ["feed-001", "feed-002"]


def test_counter_survives_reconnect(tmp_db_path):
    db = SubscriptionStore(tmp_db_path)
    db.connect()
    db.add("https://a.example/feed", "A")
    db.close()

    db = SubscriptionStore(tmp_db_path)
    db.connect()
    try:
        assert db.add("https://b.example/feed", "B").id == "feed-002"
    finally:
        db.close()


def test_list_all_orders_numerically(store):
    for seq in (999, 1000):
        store.conn.execute(
            "INSERT INTO counters (name, value) VALUES ('subscriptions', ?) "
            "ON CONFLICT(name) DO UPDATE SET value = excluded.value",
            (seq - 1,),
        )
        store.add(f"https://{seq}.example/feed", str(seq))

    assert [s.id for s in store.list_all()] == ["feed-999", "feed-1000"]


def test_duplicate_url_rejected(store):
    store.add("https://a.example/feed", "A")

    with pytest.raises(ValueError, match="Already subscribed"):
        store.add("https://a.example/feed", "A again")


def test_find_by_identifier(store):
    sub = store.add("https://a.example/feed", "A", custom_name="alpha")

    assert store.find_by_identifier("feed-001").id == sub.id
    assert store.find_by_identifier("https://a.example/feed").id == sub.id
    assert store.find_by_identifier("alpha").id == sub.id
    assert store.find_by_identifier("missing") is None


def test_put_updates_existing_record(store):
    sub = store.add("https://a.example/feed", "A")
    sub.title = "Renamed"
    sub.last_checked_at = ts(500)

    store.put(sub)

    stored = store.get(sub.id)
    assert stored.title == "Renamed"
    assert stored.last_checked_at == ts(500)


def test_set_status(store):
    sub = store.add("https://a.example/feed", "A")

    assert store.set_status(sub.id, SubscriptionStatus.PAUSED)
    assert store.get(sub.id).status is SubscriptionStatus.PAUSED
    assert not store.set_status("feed-404", SubscriptionStatus.PAUSED)


def test_watermark_round_trip(store):
    sub = store.add("https://a.example/feed", "A")
    assert store.load_state(sub.id, DedupStrategy.WATERMARK) is None

    store.save_state(sub.id, Watermark(ts(200)))

    assert store.load_state(sub.id, DedupStrategy.WATERMARK) == Watermark(ts(200))


def test_identity_set_round_trip(store):
    sub = store.add("https://a.example/feed", "A", dedup_strategy=DedupStrategy.IDENTITY)

    store.save_state(sub.id, IdentitySet(("guid1", "guid2")))

    loaded = store.load_state(sub.id, DedupStrategy.IDENTITY)
    assert loaded.identities == ("guid1", "guid2")


def test_mismatched_state_shape_is_a_state_error(store):
    sub = store.add("https://a.example/feed", "A")
    store.save_state(sub.id, IdentitySet(("guid1",)))

    with pytest.raises(StateError):
        store.load_state(sub.id, DedupStrategy.WATERMARK)


def test_delete_cascades_to_state(store):
    sub = store.add("https://a.example/feed", "A")
    store.save_state(sub.id, Watermark(ts(200)))

    assert store.delete(sub.id)

    assert store.get(sub.id) is None
    row = store.conn.execute("SELECT COUNT(*) AS cnt FROM dedup_state").fetchone()
    assert row["cnt"] == 0


def test_delete_all_resets_counter(store):
    store.add("https://a.example/feed", "A")
    store.add("https://b.example/feed", "B")

    assert store.delete_all() == 2

    assert store.list_all() == []
    assert store.add("https://c.example/feed", "C").id == "feed-001"


def test_delete_all_is_atomic(store):
    store.add("https://a.example/feed", "A")
    store.add("https://b.example/feed", "B")
    store.conn.execute(
        """CREATE TRIGGER counters_locked BEFORE UPDATE ON counters
           BEGIN SELECT RAISE(ABORT, 'counter locked'); END"""
    )
    store.conn.commit()

    with pytest.raises(StateError):
        store.delete_all()

    assert [s.id for s in store.list_all()] == ["feed-001", "feed-002"]


def test_sqlite_errors_become_state_errors(store):
    store.conn.execute("DROP TABLE dedup_state")

    with pytest.raises(StateError):
        store.load_state("feed-001", DedupStrategy.WATERMARK)


def test_requires_connect(tmp_db_path):
    db = SubscriptionStore(tmp_db_path)

    with pytest.raises(RuntimeError):
        db.list_all()


def test_counter_retries_when_value_changes(store, monkeypatch):
    store.add("https://a.example/feed", "A")
    real_conn = store.conn

    class RacingConnection:
        """Bumps the counter once between the read and the compare-and-swap."""

        raced = False

        def execute(self, sql, params=()):
            if sql.startswith("UPDATE counters") and not self.raced:
                RacingConnection.raced = True
                real_conn.execute("UPDATE counters SET value = value + 1")
            return real_conn.execute(sql, params)

        def __getattr__(self, name):
            return getattr(real_conn, name)

    monkeypatch.setattr(store, "_conn", RacingConnection())

    seq, sub_id = store.next_id()

    assert (seq, sub_id) == (3, "feed-003")
