"""Paced, in-order delivery of a feed's new entries."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from feedwatch.models import Entry, Subscription
from feedwatch.notifier import DeliveryError, MessageStyle, Notifier, build_message

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_DELAY = 1.0  # seconds between posts, downstream rate limit


@dataclass
class DeliveryReport:
    """Which entries reached the channel and which did not."""

    delivered: list[Entry] = field(default_factory=list)
    failed: list[Entry] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)


class DeliveryPipeline:
    """Sends entries to a Notifier one at a time, oldest first.

    Each entry gets exactly one attempt. A failure is logged and the next
    entry is still attempted; failed entries are not queued for a retry.
    Consecutive attempts are spaced at least ``delay`` seconds apart.
    """

    def __init__(
        self,
        notifier: Notifier,
        delay: float = DEFAULT_DELIVERY_DELAY,
        style: MessageStyle = MessageStyle.TEXT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.notifier = notifier
        self.delay = delay
        self.style = style
        self._sleep = sleep
        self._clock = clock

    async def deliver(
        self,
        subscription: Subscription,
        entries: list[Entry],
        on_delivered: Callable[[Entry], None] | None = None,
    ) -> DeliveryReport:
        """Deliver ``entries`` in the given order.

        Args:
            subscription: The feed the entries belong to.
            entries: New entries, already in delivery order.
            on_delivered: Called with each entry right after a successful post.

        Returns:
            DeliveryReport listing delivered and failed entries.
        """
        report = DeliveryReport()
        last_attempt: float | None = None

        for entry in entries:
            if last_attempt is not None:
                await self._pace(last_attempt)

            message = build_message(subscription, entry, self.style)
            reason = "notifier rejected the message"
            try:
                ok = await self.notifier.send(message)
            except DeliveryError as e:
                ok = False
                reason = str(e)
            last_attempt = self._clock()

            if ok:
                report.delivered.append(entry)
                logger.debug("%s: delivered '%s'", subscription.id, entry.title)
                if on_delivered is not None:
                    on_delivered(entry)
            else:
                report.failed.append(entry)
                logger.warning(
                    "%s: could not deliver '%s': %s", subscription.id, entry.title, reason
                )

        return report

    async def _pace(self, last_attempt: float) -> None:
        remaining = self.delay - (self._clock() - last_attempt)
        if remaining > 0:
            await self._sleep(remaining)
