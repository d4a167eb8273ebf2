"""Message rendering and delivery to a Discord-compatible webhook."""

import html
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

import httpx

from feedwatch.models import Entry, Subscription, utcnow

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TIMEOUT = 10.0
SUMMARY_LIMIT = 300
CARD_COLOR = 0x1F8B4C
ERROR_COLOR = 0xE74C3C

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


class DeliveryError(Exception):
    """Raised when the downstream channel rejects or times out a message."""


class MessageStyle(str, Enum):
    TEXT = "text"
    CARD = "card"


@dataclass(frozen=True)
class TextMessage:
    """A plain text line."""

    content: str

    def to_payload(self) -> dict:
        return {"content": self.content}


@dataclass(frozen=True)
class CardMessage:
    """A structured card (rendered as a webhook embed)."""

    title: str
    link: str | None = None
    summary: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    footer: str | None = None
    color: int = CARD_COLOR

    def to_payload(self) -> dict:
        embed = {
            "title": self.title[:256],
            "description": self.summary,
            "color": self.color,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.link:
            embed["url"] = self.link
        if self.footer:
            embed["footer"] = {"text": self.footer}
        return {"embeds": [embed]}


Message = TextMessage | CardMessage


class Notifier(Protocol):
    async def send(self, message: Message) -> bool: ...

    async def send_error(self, error: str, context: str | None = None) -> bool: ...


def plain_text(text: str | None, limit: int = SUMMARY_LIMIT) -> str:
    """Strip markup and collapse whitespace, truncating to ``limit`` characters."""
    if not text:
        return ""
    cleaned = _SPACE_RE.sub(" ", html.unescape(_TAG_RE.sub("", text))).strip()
    if len(cleaned) > limit:
        cleaned = cleaned[: limit - 1].rstrip() + "…"
    return cleaned


def build_message(
    subscription: Subscription, entry: Entry, style: MessageStyle = MessageStyle.TEXT
) -> Message:
    """Render an entry of ``subscription`` as a message in the given style."""
    if style is MessageStyle.CARD:
        return CardMessage(
            title=entry.title,
            link=entry.link,
            summary=plain_text(entry.summary) or "See the link for details.",
            timestamp=entry.published_at or utcnow(),
            footer=subscription.display_name,
        )

    lines = [subscription.display_name, entry.title]
    if entry.published_at:
        lines.append(entry.published_at.strftime("%Y-%m-%d %H:%M"))
    if entry.link:
        lines.append(entry.link)
    return TextMessage("\n".join(lines))


class WebhookNotifier:
    """Posts messages to a webhook URL; failures are logged and reported as False."""

    def __init__(
        self,
        webhook_url: str,
        error_webhook_url: str | None = None,
        timeout: float = DEFAULT_WEBHOOK_TIMEOUT,
        username: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url
        self.error_webhook_url = error_webhook_url or webhook_url
        self.timeout = timeout
        self.username = username
        self._transport = transport

    async def send(self, message: Message) -> bool:
        """Post a message to the delivery channel. Returns True on success."""
        try:
            await self._post(self.webhook_url, message.to_payload())
        except DeliveryError as e:
            logger.warning("Webhook delivery failed: %s", e)
            return False
        return True

    async def send_error(self, error: str, context: str | None = None) -> bool:
        """Post a system error alert to the error channel."""
        description = f"**Error**: {error}"
        if context:
            description += f"\n**Context**: {context}"
        alert = CardMessage(
            title="System error",
            summary=description,
            footer="feedwatch error notification",
            color=ERROR_COLOR,
        )
        try:
            await self._post(self.error_webhook_url, alert.to_payload())
        except DeliveryError as e:
            logger.error("Could not send error alert: %s", e)
            return False
        return True

    async def _post(self, url: str, payload: dict) -> None:
        if self.username:
            payload = {**payload, "username": self.username}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook request failed: {e!r}") from e

        if response.is_error:
            raise DeliveryError(
                f"Webhook error: {response.status_code} {response.reason_phrase}"
            )
