"""Run orchestration and the background polling loop."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from feedwatch.database import StateError, SubscriptionStore
from feedwatch.dedup import DedupPolicy, policy_for
from feedwatch.delivery import DeliveryPipeline
from feedwatch.feed_parser import FeedError, FeedSource
from feedwatch.models import (
    DedupState,
    Entry,
    FeedOutcome,
    RunMode,
    RunStatistics,
    Subscription,
    utcnow,
)
from feedwatch.notifier import Notifier

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 900  # 15 minutes
DEFAULT_FEED_DELAY = 2.0
DEFAULT_FAILURE_ALERT_THRESHOLD = 3


class Orchestrator:
    """Checks active subscriptions one at a time and relays their new entries."""

    def __init__(
        self,
        store: SubscriptionStore,
        source: FeedSource,
        pipeline: DeliveryPipeline,
        notifier: Notifier,
        feed_delay: float = DEFAULT_FEED_DELAY,
        failure_alert_threshold: int = DEFAULT_FAILURE_ALERT_THRESHOLD,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.source = source
        self.pipeline = pipeline
        self.notifier = notifier
        self.feed_delay = feed_delay
        self.failure_alert_threshold = failure_alert_threshold
        self._sleep = sleep

    async def run(
        self, mode: RunMode = RunMode.FULL, deadline: float | None = None
    ) -> RunStatistics:
        """Run one pass over the active subscriptions.

        Args:
            mode: ``FULL`` checks every active feed, ``QUICK`` only the first.
            deadline: Optional time budget in seconds. When it runs out the
                remaining feeds are skipped; state already written stays.

        Returns:
            RunStatistics for the pass. Never raises for feed-level problems.
        """
        stats = RunStatistics(mode=mode)
        logger.info("Feed check started (%s)", mode.value)

        try:
            async with asyncio.timeout(deadline):
                await self._run_feeds(mode, stats)
        except TimeoutError:
            stats.timed_out = True
            logger.warning("Feed check exceeded its %ss deadline, remaining feeds skipped", deadline)
        except Exception as e:
            stats.failed = True
            logger.exception("Feed check failed: %s", e)
            await self._alert(str(e) or type(e).__name__, "Feed check run failed")

        logger.info("Feed check complete - %s", stats.summary())
        return stats

    async def _run_feeds(self, mode: RunMode, stats: RunStatistics) -> None:
        subscriptions = self.store.list_all()
        active = [s for s in subscriptions if s.is_active]
        logger.info("Active feeds: %d/%d", len(active), len(subscriptions))

        if mode is RunMode.QUICK:
            active = active[:1]

        consecutive_failures = 0
        for subscription in active:
            outcome = await self._process(subscription)
            stats.record(outcome)

            if outcome.ok:
                consecutive_failures = 0
            else:
                consecutive_failures += 1
                if consecutive_failures >= self.failure_alert_threshold and not stats.alerted:
                    stats.alerted = True
                    await self._alert(
                        f"{consecutive_failures} feeds failed in a row",
                        _failure_details(stats),
                    )

            if mode is RunMode.FULL and self.feed_delay > 0:
                await self._sleep(self.feed_delay)

    async def _process(self, subscription: Subscription) -> FeedOutcome:
        """Check one feed, turning any failure into an unsuccessful outcome."""
        try:
            return await self.check_feed(subscription)
        except (FeedError, StateError) as e:
            logger.warning("Feed %s (%s) error: %s", subscription.id, subscription.display_name, e)
            return FeedOutcome(subscription.id, error=str(e))
        except Exception as e:
            logger.exception("Feed %s (%s) unexpected error", subscription.id, subscription.display_name)
            return FeedOutcome(subscription.id, error=f"Unexpected error: {e}")

    async def check_feed(self, subscription: Subscription) -> FeedOutcome:
        """Fetch one feed, deliver its new entries and write its state back.

        Raises:
            FetchError, ParseError: The feed could not be retrieved; nothing
                was written.
        """
        policy = policy_for(subscription.dedup_strategy)
        parsed = await self.source.fetch(subscription.url)
        outcome = FeedOutcome(subscription.id, fetched=len(parsed.entries))

        if not parsed.entries:
            logger.info("%s: no entries found", subscription.id)
            self.store.touch_last_checked(subscription.id, utcnow())
            return outcome

        state = self._load_state(subscription)
        decision = policy.select(parsed.entries, state)
        outcome.new = len(decision.new_entries)

        if decision.new_entries:
            logger.info("%s: %d new entries", subscription.id, outcome.new)
            delivered: list[Entry] = []
            try:
                report = await self.pipeline.deliver(
                    subscription, decision.new_entries, on_delivered=delivered.append
                )
            except asyncio.CancelledError:
                self._save_partial(subscription, policy, state, delivered)
                raise
            outcome.delivered = len(report.delivered)
            outcome.failed_deliveries = len(report.failed)

        try:
            if decision.state != state:
                self.store.save_state(subscription.id, decision.state)
            self.store.touch_last_checked(subscription.id, utcnow())
        except StateError as e:
            logger.error("%s: could not save state: %s", subscription.id, e)
            outcome.error = f"Could not save state: {e}"

        return outcome

    def _load_state(self, subscription: Subscription) -> DedupState | None:
        try:
            return self.store.load_state(subscription.id, subscription.dedup_strategy)
        except StateError as e:
            logger.warning(
                "%s: could not read dedup state, treating as first check: %s",
                subscription.id,
                e,
            )
            return None

    def _save_partial(
        self,
        subscription: Subscription,
        policy: DedupPolicy,
        state: DedupState | None,
        delivered: list[Entry],
    ) -> None:
        partial = policy.record_delivered(state, delivered)
        if partial is None:
            return
        try:
            self.store.save_state(subscription.id, partial)
            logger.info("%s: interrupted, recorded %d delivered entries", subscription.id, len(delivered))
        except StateError as e:
            logger.error("%s: could not record partial progress: %s", subscription.id, e)

    async def _alert(self, error: str, context: str | None = None) -> None:
        try:
            await self.notifier.send_error(error, context)
        except Exception:
            logger.exception("Could not send error alert")


def _failure_details(stats: RunStatistics) -> str:
    return "\n".join(
        f"{o.subscription_id}: {o.error}" for o in stats.outcomes if not o.ok
    )


async def start_polling(
    orchestrator: Orchestrator,
    interval: int = DEFAULT_POLL_INTERVAL,
    deadline: float | None = None,
) -> None:
    """Run a full feed check every ``interval`` seconds, indefinitely."""
    logger.info("Poller started (interval: %ds)", interval)

    while True:
        try:
            stats = await orchestrator.run(RunMode.FULL, deadline=deadline)
            if stats.entries_delivered > 0:
                logger.info("Poll cycle complete: %d new entries", stats.entries_delivered)
        except Exception as e:
            logger.error("Poll cycle failed: %s", e)

        await asyncio.sleep(interval)
