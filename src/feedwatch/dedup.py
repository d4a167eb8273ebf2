"""Decide which fetched entries are new for a feed."""

from dataclasses import dataclass
from datetime import datetime

from feedwatch.models import (
    EPOCH,
    DedupState,
    DedupStrategy,
    Entry,
    IdentitySet,
    Watermark,
)


@dataclass(frozen=True)
class DedupDecision:
    """New entries in delivery order and the state to persist afterwards."""

    new_entries: list[Entry]
    state: DedupState


def oldest_first(entries: list[Entry]) -> list[Entry]:
    """Sort entries for delivery; undated entries go first, ties keep fetch order."""
    return sorted(entries, key=lambda e: e.published_at or EPOCH)


class WatermarkPolicy:
    """An entry is new iff it was published after the stored watermark.

    The advanced watermark is the newest timestamp among *all* fetched
    entries, so a backdated entry that was seen once never resurfaces and an
    unchanged feed leaves the watermark where it is.
    """

    strategy = DedupStrategy.WATERMARK

    def initial_state(self) -> Watermark:
        return Watermark(EPOCH)

    def select(self, entries: list[Entry], state: DedupState | None) -> DedupDecision:
        current = state if isinstance(state, Watermark) else self.initial_state()
        last_seen = current.last_seen_published_at

        dated = [e for e in entries if e.published_at is not None]
        new_entries = [e for e in dated if e.published_at > last_seen]

        latest: datetime = max((e.published_at for e in dated), default=last_seen)
        return DedupDecision(
            new_entries=oldest_first(new_entries),
            state=Watermark(max(latest, last_seen)),
        )

    def record_delivered(self, state: DedupState | None, delivered: list[Entry]) -> DedupState | None:
        """Watermark covering the delivered prefix, for an interrupted delivery."""
        if not delivered:
            return None
        current = state if isinstance(state, Watermark) else self.initial_state()
        newest = max(e.published_at or EPOCH for e in delivered)
        return Watermark(max(newest, current.last_seen_published_at))


class IdentityPolicy:
    """An entry is new iff its identity has not been delivered before."""

    strategy = DedupStrategy.IDENTITY

    def initial_state(self) -> IdentitySet:
        return IdentitySet()

    def select(self, entries: list[Entry], state: DedupState | None) -> DedupDecision:
        current = state if isinstance(state, IdentitySet) else self.initial_state()

        new_entries = []
        seen_now: set[str] = set()
        for entry in entries:
            if entry.identity in current or entry.identity in seen_now:
                continue
            seen_now.add(entry.identity)
            new_entries.append(entry)

        ordered = oldest_first(new_entries)
        return DedupDecision(
            new_entries=ordered,
            state=current.extend([e.identity for e in ordered]),
        )

    def record_delivered(self, state: DedupState | None, delivered: list[Entry]) -> DedupState | None:
        if not delivered:
            return None
        current = state if isinstance(state, IdentitySet) else self.initial_state()
        return current.extend([e.identity for e in delivered])


DedupPolicy = WatermarkPolicy | IdentityPolicy

_POLICIES: dict[DedupStrategy, DedupPolicy] = {
    DedupStrategy.WATERMARK: WatermarkPolicy(),
    DedupStrategy.IDENTITY: IdentityPolicy(),
}


def policy_for(strategy: DedupStrategy) -> DedupPolicy:
    return _POLICIES[strategy]
