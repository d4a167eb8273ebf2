"""Entry point for the feed watcher: python -m feedwatch"""

import argparse
import asyncio
import logging
import sys
import uuid

from langchain_core.messages import HumanMessage

from feedwatch.agent import create_agent
from feedwatch.config import Settings
from feedwatch.database import StateError, SubscriptionStore
from feedwatch.delivery import DeliveryPipeline
from feedwatch.feed_parser import FeedSource
from feedwatch.models import RunMode
from feedwatch.notifier import WebhookNotifier
from feedwatch.poller import Orchestrator, start_polling
from feedwatch.tools import ToolContext, set_context

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("langchain").setLevel(logging.WARNING)

logger = logging.getLogger("feedwatch")


def build_orchestrator(settings: Settings, store: SubscriptionStore) -> Orchestrator:
    """Wire the fetch, delivery and notification collaborators together."""
    notifier = WebhookNotifier(
        settings.webhook_url,
        error_webhook_url=settings.error_webhook_url,
    )
    pipeline = DeliveryPipeline(
        notifier,
        delay=settings.delivery_delay,
        style=settings.message_style,
    )
    source = FeedSource(timeout=settings.fetch_timeout, max_entries=settings.max_entries)
    return Orchestrator(
        store,
        source,
        pipeline,
        notifier,
        feed_delay=settings.feed_delay,
        failure_alert_threshold=settings.failure_alert_threshold,
    )


async def chat_loop(agent, config: dict) -> None:
    """Run the interactive chat loop."""
    print("Feed watcher ready! Type your message (Ctrl+C to quit).\n")

    while True:
        try:
            user_input = await asyncio.to_thread(input, "You: ")
        except EOFError:
            break

        if not user_input.strip():
            continue

        try:
            response = await asyncio.to_thread(
                agent.invoke,
                {"messages": [HumanMessage(content=user_input)]},
                config,
            )
            last_message = response["messages"][-1]
            print(f"\nAgent: {last_message.content}\n")
        except Exception as e:
            error_msg = str(e)
            if "tool_use" in error_msg and "tool_result" in error_msg:
                # Corrupted checkpoint, start a fresh thread
                config["configurable"]["thread_id"] = uuid.uuid4().hex
                print("\nAgent: Sorry, I had an issue with my memory. Let me start fresh. Please try again.\n")
            else:
                print(f"\nAgent: Sorry, I encountered an error: {error_msg}\n")


async def run_once(orchestrator: Orchestrator, settings: Settings) -> int:
    """Single full check, for use from cron or another scheduler."""
    stats = await orchestrator.run(RunMode.FULL, deadline=settings.run_deadline)
    print(stats.summary())
    return 1 if stats.failed else 0


async def main(argv: list[str] | None = None) -> int:
    """Initialize and run the feed watcher."""
    parser = argparse.ArgumentParser(prog="feedwatch", description=__doc__)
    parser.add_argument(
        "--once",
        action="store_true",
        help="run one full check and exit instead of starting the chat console",
    )
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if not settings.webhook_url:
        print("Configuration error: RSS_WEBHOOK_URL is not set", file=sys.stderr)
        return 2

    store = SubscriptionStore(settings.db_path)
    try:
        store.connect()
    except StateError as e:
        print(f"Storage error: {e}", file=sys.stderr)
        return 2

    orchestrator = build_orchestrator(settings, store)

    if args.once:
        try:
            return await run_once(orchestrator, settings)
        finally:
            store.close()

    set_context(
        ToolContext(
            store=store,
            source=orchestrator.source,
            orchestrator=orchestrator,
            dedup_strategy=settings.dedup_strategy,
            run_deadline=settings.run_deadline,
            loop=asyncio.get_running_loop(),
        )
    )

    agent = create_agent(
        checkpoint_db_path=settings.checkpoint_path,
        model_name=settings.agent_model,
    )

    # Each session gets a fresh thread to avoid corrupted checkpoint issues
    config = {"configurable": {"thread_id": uuid.uuid4().hex}}

    poller_task = asyncio.create_task(
        start_polling(orchestrator, settings.poll_interval, settings.run_deadline)
    )

    try:
        await chat_loop(agent, config)
    except KeyboardInterrupt:
        print("\nGoodbye!")
    finally:
        poller_task.cancel()
        try:
            await poller_task
        except asyncio.CancelledError:
            pass
        set_context(None)
        store.close()
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
