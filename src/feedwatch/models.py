"""Data models for the feed watch engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

IDENTITY_CAPACITY = 1000

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class DedupStrategy(str, Enum):
    """How a feed decides which fetched entries are new."""

    WATERMARK = "watermark"
    IDENTITY = "identity"


class RunMode(str, Enum):
    FULL = "full"
    QUICK = "quick"


@dataclass
class Subscription:
    """Represents a watched RSS/Atom source."""

    url: str
    title: str
    custom_name: str | None = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    dedup_strategy: DedupStrategy = DedupStrategy.WATERMARK
    added_at: datetime = field(default_factory=utcnow)
    last_checked_at: datetime | None = None
    id: str | None = None
    seq: int | None = None

    @property
    def display_name(self) -> str:
        return self.custom_name or self.title

    @property
    def is_active(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE


@dataclass(frozen=True)
class Entry:
    """A single entry from a fetched feed."""

    identity: str
    title: str
    link: str | None = None
    summary: str | None = None
    published_at: datetime | None = None


@dataclass(frozen=True)
class Watermark:
    """Latest publication timestamp already accounted for."""

    last_seen_published_at: datetime = EPOCH


@dataclass(frozen=True)
class IdentitySet:
    """Bounded, ordered record of delivered entry identities (oldest first)."""

    identities: tuple[str, ...] = ()
    capacity: int = IDENTITY_CAPACITY

    def __post_init__(self) -> None:
        if len(self.identities) > self.capacity:
            object.__setattr__(
                self, "identities", tuple(self.identities[-self.capacity:])
            )

    def __contains__(self, identity: object) -> bool:
        return identity in self.identities

    def __len__(self) -> int:
        return len(self.identities)

    def extend(self, identities: list[str]) -> "IdentitySet":
        """Return a new set with ``identities`` appended, oldest evicted first."""
        merged = list(self.identities)
        seen = set(merged)
        for identity in identities:
            if identity not in seen:
                merged.append(identity)
                seen.add(identity)
        return IdentitySet(tuple(merged[-self.capacity:]), self.capacity)


DedupState = Watermark | IdentitySet


@dataclass
class FeedOutcome:
    """Result of checking one subscription during a run."""

    subscription_id: str
    fetched: int = 0
    new: int = 0
    delivered: int = 0
    failed_deliveries: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunStatistics:
    """Aggregate counts for one run over the active subscriptions."""

    mode: RunMode = RunMode.FULL
    feeds_processed: int = 0
    entries_delivered: int = 0
    errors: int = 0
    alerted: bool = False
    timed_out: bool = False
    failed: bool = False
    outcomes: list[FeedOutcome] = field(default_factory=list)

    def record(self, outcome: FeedOutcome) -> None:
        self.outcomes.append(outcome)
        self.feeds_processed += 1
        self.entries_delivered += outcome.delivered
        if not outcome.ok:
            self.errors += 1

    def summary(self) -> str:
        text = (
            f"{self.mode.value} run: {self.feeds_processed} feeds checked, "
            f"{self.entries_delivered} entries delivered, {self.errors} errors"
        )
        if self.timed_out:
            text += " (deadline reached)"
        if self.failed:
            text += " (run failed)"
        return text
