"""LangGraph-based support agents.

Architecture:
  Every agent in the registry (``src/services/agents.py``) compiles to the
  same two-node StateGraph, differing only in system prompt and tool set:

    1. **chatbot** — Claude with the agent's tools bound.  Decides whether
                     to answer directly or call a lookup tool.
    2. **tools**   — executes the requested tool calls (order, invoice,
                     FAQ or conversation-history queries).

  Routing:
    chatbot → (tool calls and step budget left?) → tools → chatbot (loop)
            → (otherwise)                          → END

  The graph is stateless between requests: the client sends its history
  each time and only the last ``MAX_CONTEXT_MESSAGES`` are forwarded.
  ``MAX_AGENT_STEPS`` caps the number of model calls per request.

Errors:
  Provider retries are disabled so quota errors surface on the first
  attempt; they are translated into ``QuotaExceededError`` (with the
  provider's retry hint when available) so the API can answer 429.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Annotated, Any, NoReturn

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
)
from langchain_core.tools import BaseTool
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from langgraph.prebuilt import ToolNode
from typing_extensions import TypedDict

from src.config import (
    ANTHROPIC_API_KEY,
    MAX_AGENT_STEPS,
    MAX_CONTEXT_MESSAGES,
    MODEL_MAX_TOKENS,
    MODEL_NAME,
    MODEL_TEMPERATURE,
)
from src.prompts import get_system_prompt
from src.services.agents import AGENTS, DEFAULT_AGENT_ID, get_agent
from src.services.metrics import metrics
from src.services.quota import QuotaExceededError, map_quota_error
from src.tools.billing import check_refund_status, get_invoice_details
from src.tools.orders import check_delivery_status, get_order_details
from src.tools.support import search_conversation_history, search_products

logger = logging.getLogger(__name__)


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``steps`` counts chatbot invocations for this request; each chatbot
    call contributes 1 through the ``operator.add`` reducer.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    steps: Annotated[int, operator.add]


# ── Tools ────────────────────────────────────────────────────────────

ALL_TOOLS: list[BaseTool] = [
    get_order_details,
    check_delivery_status,
    get_invoice_details,
    check_refund_status,
    search_products,
    search_conversation_history,
]
TOOLS_BY_NAME: dict[str, BaseTool] = {t.name: t for t in ALL_TOOLS}


def tools_for(agent_id: str) -> list[BaseTool]:
    """Return the tool objects the given agent may call."""
    info = get_agent(agent_id)
    if info is None:
        raise KeyError(f"Unknown agent: {agent_id}")
    return [TOOLS_BY_NAME[name] for name in info.tools]


# ── Error mapping ────────────────────────────────────────────────────


def _reraise_mapped(exc: Exception) -> NoReturn:
    """Raise ``QuotaExceededError`` for quota failures, else re-raise *exc*."""
    if isinstance(exc, QuotaExceededError):
        raise exc
    quota_error = map_quota_error(exc)
    if quota_error is not None:
        raise quota_error from exc
    raise exc


# ── LLM builder ──────────────────────────────────────────────────────


def _build_llm(tools: list[BaseTool]):
    """Build the Claude client with *tools* bound and retries disabled."""
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=MODEL_TEMPERATURE,
        max_tokens=MODEL_MAX_TOKENS,
        max_retries=0,
    )
    return llm.bind_tools(tools)


# ── Node: chatbot ────────────────────────────────────────────────────


def _make_chatbot_node(agent_id: str, tools: list[BaseTool]):
    """Create the chatbot node for *agent_id*.

    System messages sent by the client are folded into the agent's own
    system prompt; the provider only accepts one leading system block.
    """
    llm_with_tools = _build_llm(tools)
    prompt = get_system_prompt(agent_id)

    def chatbot_node(state: AgentState) -> dict:
        extra = [m.content for m in state["messages"] if isinstance(m, SystemMessage)]
        system = SystemMessage(content="\n\n".join([prompt, *extra]))
        conversation = [m for m in state["messages"] if not isinstance(m, SystemMessage)]

        logger.debug(
            "chatbot[%s] step %d — %d messages",
            agent_id, state.get("steps", 0) + 1, len(conversation),
        )
        with metrics.track("anthropic", f"chatbot:{agent_id}"):
            try:
                response = llm_with_tools.invoke([system] + conversation)
            except Exception as exc:
                _reraise_mapped(exc)
        return {"messages": [response], "steps": 1}

    return chatbot_node


# ── Conditional edge ─────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Route to tools while the model asks for them and the step budget lasts."""
    last_message = state["messages"][-1]
    if not getattr(last_message, "tool_calls", None):
        return END
    if state.get("steps", 0) >= MAX_AGENT_STEPS:
        logger.info("Step budget (%d) exhausted with pending tool calls", MAX_AGENT_STEPS)
        return END
    return "tools"


# ── Graph assembly ───────────────────────────────────────────────────


def create_support_agent(agent_id: str = DEFAULT_AGENT_ID):
    """Build and compile the LangGraph agent for *agent_id*.

    Returns a compiled graph that can be invoked with:
        graph.invoke({"messages": [HumanMessage(content="...")], "steps": 0})
    """
    tools = tools_for(agent_id)
    graph = StateGraph(AgentState)

    graph.add_node("chatbot", _make_chatbot_node(agent_id, tools))
    graph.add_node("tools", ToolNode(tools))

    graph.set_entry_point("chatbot")
    graph.add_conditional_edges("chatbot", should_use_tools, {"tools": "tools", END: END})
    graph.add_edge("tools", "chatbot")

    compiled = graph.compile()
    logger.debug("Agent %s compiled — model: %s, tools: %d", agent_id, MODEL_NAME, len(tools))
    return compiled


def create_all_agents() -> dict[str, Any]:
    """Compile one graph per registry entry, keyed by agent id."""
    return {info.id: create_support_agent(info.id) for info in AGENTS}


# ── Message conversion ──────────────────────────────────────────────

_MESSAGE_TYPES: dict[str, type[BaseMessage]] = {
    "user": HumanMessage,
    "assistant": AIMessage,
    "system": SystemMessage,
}


def to_langchain_messages(
    messages: Iterable[Any],
    limit: int = MAX_CONTEXT_MESSAGES,
) -> list[BaseMessage]:
    """Convert ``{"role", "content"}`` items to LangChain messages, keeping the last *limit*.

    Accepts dicts or objects with ``role`` / ``content`` attributes (the
    API's pydantic models).
    """
    converted = []
    for message in list(messages)[-limit:]:
        if isinstance(message, dict):
            role, content = message["role"], message["content"]
        else:
            role, content = message.role, message.content
        converted.append(_MESSAGE_TYPES[role](content=content))
    return converted


def message_text(message: BaseMessage) -> str:
    """Return only the text parts of a message (skipping tool-use blocks)."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


# ── Running ──────────────────────────────────────────────────────────

_FINISH_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool-calls",
}


@dataclass
class AgentResult:
    text: str
    finish_reason: str
    usage: dict[str, int] = field(default_factory=dict)


def _sum_usage(messages: list[BaseMessage]) -> dict[str, int]:
    usage = {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0}
    for message in messages:
        metadata = getattr(message, "usage_metadata", None) or {}
        for key in usage:
            usage[key] += int(metadata.get(key, 0) or 0)
    return usage


def _finish_reason(message: BaseMessage | None) -> str:
    if message is None:
        return "other"
    if getattr(message, "tool_calls", None):
        return "tool-calls"
    stop_reason = (getattr(message, "response_metadata", None) or {}).get("stop_reason")
    return _FINISH_REASONS.get(stop_reason, "other")


def run_agent_sync(agent, messages: Iterable[Any]) -> AgentResult:
    """Run *agent* to completion and return the final text plus usage.

    Raises:
        QuotaExceededError: the provider rejected the call for quota reasons.
    """
    inputs = to_langchain_messages(messages)
    try:
        result = agent.invoke({"messages": inputs, "steps": 0})
    except Exception as exc:
        _reraise_mapped(exc)

    produced = result.get("messages", [])[len(inputs):]
    ai_messages = [m for m in produced if isinstance(m, AIMessage)]
    last = ai_messages[-1] if ai_messages else None

    return AgentResult(
        text=message_text(last) if last is not None else "",
        finish_reason=_finish_reason(last),
        usage=_sum_usage(ai_messages),
    )


def stream_agent(agent, messages: Iterable[Any]) -> Iterator[str]:
    """Yield the chatbot's answer text as it is generated.

    Tool calls and tool results are not streamed; only text emitted by the
    chatbot node reaches the caller.

    Raises:
        QuotaExceededError: the provider rejected the call for quota reasons.
    """
    inputs = to_langchain_messages(messages)
    try:
        for chunk, metadata in agent.stream({"messages": inputs, "steps": 0}, stream_mode="messages"):
            if metadata.get("langgraph_node") != "chatbot" or not isinstance(chunk, AIMessage):
                continue
            text = message_text(chunk)
            if text:
                yield text
    except Exception as exc:
        _reraise_mapped(exc)
