"""Environment-driven settings."""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from feedwatch.delivery import DEFAULT_DELIVERY_DELAY
from feedwatch.feed_parser import DEFAULT_FETCH_TIMEOUT, DEFAULT_MAX_ENTRIES
from feedwatch.models import DedupStrategy
from feedwatch.notifier import MessageStyle
from feedwatch.poller import (
    DEFAULT_FAILURE_ALERT_THRESHOLD,
    DEFAULT_FEED_DELAY,
    DEFAULT_POLL_INTERVAL,
)

DEFAULT_DB_PATH = "feedwatch.db"
CHECKPOINT_DB_PATH = "feedwatch_checkpoints.db"
DEFAULT_RUN_DEADLINE = 600.0
DEFAULT_AGENT_MODEL = "claude-sonnet-4-5-20250929"


@dataclass
class Settings:
    """Runtime configuration, normally read from ``RSS_*`` environment variables."""

    db_path: str = DEFAULT_DB_PATH
    checkpoint_path: str = CHECKPOINT_DB_PATH
    webhook_url: str | None = None
    error_webhook_url: str | None = None
    poll_interval: int = DEFAULT_POLL_INTERVAL
    run_deadline: float | None = DEFAULT_RUN_DEADLINE
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    max_entries: int = DEFAULT_MAX_ENTRIES
    delivery_delay: float = DEFAULT_DELIVERY_DELAY
    feed_delay: float = DEFAULT_FEED_DELAY
    failure_alert_threshold: int = DEFAULT_FAILURE_ALERT_THRESHOLD
    dedup_strategy: DedupStrategy = DedupStrategy.WATERMARK
    message_style: MessageStyle = MessageStyle.TEXT
    agent_model: str = DEFAULT_AGENT_MODEL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from the environment.

        Raises:
            ValueError: If a variable holds a value of the wrong kind.
        """
        env = os.environ if environ is None else environ

        deadline = _number(env, "RSS_RUN_DEADLINE", DEFAULT_RUN_DEADLINE, float)

        return cls(
            db_path=env.get("RSS_DB_PATH", DEFAULT_DB_PATH),
            checkpoint_path=env.get("RSS_CHECKPOINT_PATH", CHECKPOINT_DB_PATH),
            webhook_url=env.get("RSS_WEBHOOK_URL") or None,
            error_webhook_url=env.get("RSS_ERROR_WEBHOOK_URL") or None,
            poll_interval=_number(env, "RSS_POLL_INTERVAL", DEFAULT_POLL_INTERVAL, int),
            run_deadline=deadline if deadline > 0 else None,
            fetch_timeout=_number(env, "RSS_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT, float),
            max_entries=_number(env, "RSS_MAX_ENTRIES", DEFAULT_MAX_ENTRIES, int),
            delivery_delay=_number(env, "RSS_DELIVERY_DELAY", DEFAULT_DELIVERY_DELAY, float),
            feed_delay=_number(env, "RSS_FEED_DELAY", DEFAULT_FEED_DELAY, float),
            failure_alert_threshold=_number(
                env, "RSS_FAILURE_ALERT_THRESHOLD", DEFAULT_FAILURE_ALERT_THRESHOLD, int
            ),
            dedup_strategy=_choice(env, "RSS_DEDUP_STRATEGY", DedupStrategy.WATERMARK),
            message_style=_choice(env, "RSS_MESSAGE_STYLE", MessageStyle.TEXT),
            agent_model=env.get("RSS_AGENT_MODEL", DEFAULT_AGENT_MODEL),
        )


def _number(env: Mapping[str, str], name: str, default, kind):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = kind(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _choice(env: Mapping[str, str], name: str, default):
    raw = env.get(name)
    if not raw:
        return default
    enum_type = type(default)
    try:
        return enum_type(raw.strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValueError(f"{name} must be one of {allowed}, got {raw!r}")
