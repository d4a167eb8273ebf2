"""SQLite persistence for subscriptions and dedup state."""

import json
import logging
import sqlite3
from datetime import datetime

from feedwatch.models import (
    DedupState,
    DedupStrategy,
    IdentitySet,
    Subscription,
    SubscriptionStatus,
    Watermark,
    utcnow,
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_COUNTER = "subscriptions"
MAX_COUNTER_RETRIES = 5

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS subscriptions (
    id TEXT PRIMARY KEY,
    seq INTEGER NOT NULL,
    url TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    custom_name TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    dedup_strategy TEXT NOT NULL DEFAULT 'watermark',
    added_at TEXT NOT NULL,
    last_checked_at TEXT
);

CREATE TABLE IF NOT EXISTS dedup_state (
    subscription_id TEXT PRIMARY KEY
        REFERENCES subscriptions(id) ON DELETE CASCADE,
    strategy TEXT NOT NULL,
    watermark TEXT,
    identities TEXT
);

CREATE TABLE IF NOT EXISTS counters (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_subscriptions_seq ON subscriptions(seq);
"""


class StateError(Exception):
    """Raised when the store cannot be read or written."""


class SubscriptionStore:
    """SQLite store for subscriptions, the id counter and dedup state."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StateError(f"Could not open database {self.db_path}: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # --- Id counter ---

    def next_id(self) -> tuple[int, str]:
        """Advance the persisted subscription counter.

        The counter is updated with a compare-and-swap so that two writers
        never hand out the same number.

        Returns:
            Tuple of (sequence number, formatted id such as ``feed-007``).

        Raises:
            StateError: If the counter could not be advanced.
        """
        try:
            for _ in range(MAX_COUNTER_RETRIES):
                row = self.conn.execute(
                    "SELECT value FROM counters WHERE name = ?",
                    (SUBSCRIPTION_COUNTER,),
                ).fetchone()
                if row is None:
                    cursor = self.conn.execute(
                        "INSERT OR IGNORE INTO counters (name, value) VALUES (?, 1)",
                        (SUBSCRIPTION_COUNTER,),
                    )
                    next_value = 1
                else:
                    next_value = row["value"] + 1
                    cursor = self.conn.execute(
                        "UPDATE counters SET value = ? WHERE name = ? AND value = ?",
                        (next_value, SUBSCRIPTION_COUNTER, row["value"]),
                    )
                self.conn.commit()
                if cursor.rowcount == 1:
                    return next_value, format_subscription_id(next_value)
                logger.debug("Counter moved underneath us, retrying")
        except sqlite3.Error as e:
            raise StateError(f"Could not advance subscription counter: {e}") from e
        raise StateError("Could not allocate a subscription id")

    # --- Subscription operations ---

    def add(
        self,
        url: str,
        title: str,
        custom_name: str | None = None,
        dedup_strategy: DedupStrategy = DedupStrategy.WATERMARK,
    ) -> Subscription:
        """Register a new subscription with the next sequential id.

        Raises:
            ValueError: If already subscribed to this URL.
            StateError: If the store cannot be written.
        """
        if self.find_by_url(url):
            raise ValueError("Already subscribed to this feed")

        seq, sub_id = self.next_id()
        subscription = Subscription(
            id=sub_id,
            seq=seq,
            url=url,
            title=title,
            custom_name=custom_name,
            dedup_strategy=dedup_strategy,
        )
        self.put(subscription)
        logger.info("Subscription added: %s (%s)", sub_id, url)
        return subscription

    def get(self, sub_id: str) -> Subscription | None:
        """Look up a subscription by its id."""
        row = self._fetchone("SELECT * FROM subscriptions WHERE id = ?", (sub_id,))
        return _row_to_subscription(row) if row else None

    def put(self, subscription: Subscription) -> None:
        """Insert or replace a subscription record."""
        if subscription.id is None or subscription.seq is None:
            raise ValueError("Subscription has no id; use add() to create one")
        try:
            self.conn.execute(
                """INSERT INTO subscriptions (id, seq, url, title, custom_name, status,
                   dedup_strategy, added_at, last_checked_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       url = excluded.url,
                       title = excluded.title,
                       custom_name = excluded.custom_name,
                       status = excluded.status,
                       dedup_strategy = excluded.dedup_strategy,
                       last_checked_at = excluded.last_checked_at""",
                (
                    subscription.id,
                    subscription.seq,
                    subscription.url,
                    subscription.title,
                    subscription.custom_name,
                    subscription.status.value,
                    subscription.dedup_strategy.value,
                    _dt_to_str(subscription.added_at),
                    _dt_to_str(subscription.last_checked_at),
                ),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            raise ValueError("Already subscribed to this feed") from e
        except sqlite3.Error as e:
            raise StateError(f"Could not save subscription {subscription.id}: {e}") from e

    def delete(self, sub_id: str) -> bool:
        """Delete a subscription and its dedup state (cascade). Returns True if deleted."""
        cursor = self._execute("DELETE FROM subscriptions WHERE id = ?", (sub_id,))
        return cursor.rowcount > 0

    def delete_all(self) -> int:
        """Delete every subscription and reset the id counter. Returns count removed."""
        try:
            with self.conn:
                cursor = self.conn.execute("DELETE FROM subscriptions")
                self.conn.execute(
                    "UPDATE counters SET value = 0 WHERE name = ?", (SUBSCRIPTION_COUNTER,)
                )
        except sqlite3.Error as e:
            raise StateError(f"Could not remove subscriptions: {e}") from e
        return cursor.rowcount

    def list_all(self) -> list[Subscription]:
        """Return all subscriptions in id order."""
        rows = self._fetchall("SELECT * FROM subscriptions ORDER BY seq")
        return [_row_to_subscription(r) for r in rows]

    def find_by_url(self, url: str) -> Subscription | None:
        row = self._fetchone("SELECT * FROM subscriptions WHERE url = ?", (url,))
        return _row_to_subscription(row) if row else None

    def find_by_identifier(self, identifier: str) -> Subscription | None:
        """Find a subscription by id, URL or custom name."""
        row = self._fetchone(
            """SELECT * FROM subscriptions
               WHERE id = ? OR url = ? OR custom_name = ?
               ORDER BY (id = ?) DESC, seq LIMIT 1""",
            (identifier, identifier, identifier, identifier),
        )
        return _row_to_subscription(row) if row else None

    def set_status(self, sub_id: str, status: SubscriptionStatus) -> bool:
        """Change a subscription's status. Returns True if a row was updated."""
        cursor = self._execute(
            "UPDATE subscriptions SET status = ? WHERE id = ?",
            (status.value, sub_id),
        )
        if cursor.rowcount:
            logger.info("Subscription %s -> %s", sub_id, status.value)
        return cursor.rowcount > 0

    def touch_last_checked(self, sub_id: str, timestamp: datetime | None = None) -> None:
        """Update a subscription's last_checked_at timestamp."""
        self._execute(
            "UPDATE subscriptions SET last_checked_at = ? WHERE id = ?",
            (_dt_to_str(timestamp or utcnow()), sub_id),
        )

    # --- Dedup state ---

    def load_state(self, sub_id: str, strategy: DedupStrategy) -> DedupState | None:
        """Load the dedup state for a subscription, or None before the first check.

        Raises:
            StateError: If the state cannot be read or has a different shape
                than ``strategy``.
        """
        row = self._fetchone(
            "SELECT * FROM dedup_state WHERE subscription_id = ?", (sub_id,)
        )
        if row is None:
            return None
        if row["strategy"] != strategy.value:
            raise StateError(
                f"Stored {row['strategy']} state for {sub_id} does not match "
                f"its {strategy.value} strategy"
            )
        try:
            if strategy is DedupStrategy.WATERMARK:
                return Watermark(datetime.fromisoformat(row["watermark"]))
            return IdentitySet(tuple(json.loads(row["identities"] or "[]")))
        except (TypeError, ValueError) as e:
            raise StateError(f"Corrupt dedup state for {sub_id}: {e}") from e

    def save_state(self, sub_id: str, state: DedupState) -> None:
        """Persist the dedup state for a subscription."""
        if isinstance(state, Watermark):
            values = (DedupStrategy.WATERMARK.value, _dt_to_str(state.last_seen_published_at), None)
        else:
            values = (DedupStrategy.IDENTITY.value, None, json.dumps(list(state.identities)))
        self._execute(
            """INSERT INTO dedup_state (subscription_id, strategy, watermark, identities)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(subscription_id) DO UPDATE SET
                   strategy = excluded.strategy,
                   watermark = excluded.watermark,
                   identities = excluded.identities""",
            (sub_id, *values),
        )

    def clear_state(self, sub_id: str | None = None) -> None:
        """Forget dedup state for one subscription, or for all of them."""
        if sub_id is None:
            self._execute("DELETE FROM dedup_state")
        else:
            self._execute("DELETE FROM dedup_state WHERE subscription_id = ?", (sub_id,))

    # --- Helpers ---

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            cursor = self.conn.execute(sql, params)
            self.conn.commit()
            return cursor
        except sqlite3.Error as e:
            raise StateError(str(e)) from e

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        try:
            return self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StateError(str(e)) from e

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StateError(str(e)) from e


# --- Helper functions ---


def format_subscription_id(seq: int) -> str:
    return f"feed-{seq:03d}"


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _row_to_subscription(row: sqlite3.Row) -> Subscription:
    """Convert a database row to a Subscription dataclass."""
    return Subscription(
        id=row["id"],
        seq=row["seq"],
        url=row["url"],
        title=row["title"],
        custom_name=row["custom_name"],
        status=SubscriptionStatus(row["status"]),
        dedup_strategy=DedupStrategy(row["dedup_strategy"]),
        added_at=_str_to_dt(row["added_at"]) or utcnow(),
        last_checked_at=_str_to_dt(row["last_checked_at"]),
    )
