"""LangGraph agent that lets an operator manage watched feeds in chat."""

import logging
import sqlite3
from typing import Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import SystemMessage, ToolMessage
from langgraph.checkpoint.sqlite import SqliteSaver
from langgraph.graph import END, START, MessagesState, StateGraph

from feedwatch.config import CHECKPOINT_DB_PATH, DEFAULT_AGENT_MODEL
from feedwatch.tools import TOOLS

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are the operator console of a feed watcher that relays new RSS and Atom entries to a chat channel.

You help the operator:
- Register feeds to watch (add_feed), optionally with a custom display name
- Remove one feed (remove_feed) or every feed (remove_all_feeds)
- Pause and resume feeds (pause_feed, resume_feed)
- See which feeds are registered and when they were last checked (list_feeds)
- Try a feed URL without registering it (test_feed)
- Trigger a check for new entries right now (run_check)

Feeds can be referred to by id (such as feed-001), URL or custom name.
run_check checks only the first active feed unless the operator asks for a full check; pass full=true then.
Only call remove_all_feeds when the operator has clearly asked to remove everything.
If they give you a website URL rather than a feed URL, try common feed paths like /feed, /rss or /atom.xml with test_feed first.
When a tool reports an error, explain the message plainly and suggest what to try next.
Be concise."""


def run_tool_calls(tool_calls: list[dict], tools_by_name: dict) -> list[ToolMessage]:
    """Invoke each requested tool, reporting failures back to the model."""
    results = []
    for call in tool_calls:
        tool = tools_by_name.get(call["name"])
        if tool is None:
            content, status = f"Unknown tool: {call['name']}", "error"
        else:
            try:
                content, status = str(tool.invoke(call["args"])), "success"
            except Exception as e:
                logger.exception("Tool %s failed", call["name"])
                content, status = f"Tool {call['name']} failed: {e}", "error"
        results.append(ToolMessage(content=content, tool_call_id=call["id"], status=status))
    return results


def create_agent(
    checkpoint_db_path: str = CHECKPOINT_DB_PATH,
    tools: list | None = None,
    model_name: str = DEFAULT_AGENT_MODEL,
):
    """Create and compile the LangGraph agent.

    Args:
        checkpoint_db_path: Path to SQLite database for LangGraph checkpointing.
        tools: Tools to bind to the agent. If None, uses the management TOOLS.
        model_name: Anthropic model used for the conversation.

    Returns:
        Compiled LangGraph agent.
    """
    tools = TOOLS if tools is None else tools
    tools_by_name = {t.name: t for t in tools}
    model = ChatAnthropic(model=model_name, temperature=0)
    if tools:
        model = model.bind_tools(tools)

    def call_model(state: MessagesState):
        response = model.invoke([SystemMessage(content=SYSTEM_PROMPT), *state["messages"]])
        return {"messages": [response]}

    def call_tools(state: MessagesState):
        return {"messages": run_tool_calls(state["messages"][-1].tool_calls, tools_by_name)}

    def route(state: MessagesState) -> Literal["tools", "__end__"]:
        return "tools" if state["messages"][-1].tool_calls else END

    graph = StateGraph(MessagesState)
    graph.add_node("model", call_model)
    graph.add_node("tools", call_tools)
    graph.add_edge(START, "model")
    graph.add_conditional_edges("model", route, ["tools", END])
    graph.add_edge("tools", "model")

    conn = sqlite3.connect(checkpoint_db_path, check_same_thread=False)
    return graph.compile(checkpointer=SqliteSaver(conn))
