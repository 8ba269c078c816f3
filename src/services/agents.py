"""Static catalogue of the agents this backend can run."""

from __future__ import annotations

from pydantic import BaseModel


class AgentInfo(BaseModel):
    id: str
    name: str
    description: str
    tools: list[str]


ORDER_TOOLS = ["get_order_details", "check_delivery_status"]
BILLING_TOOLS = ["get_invoice_details", "check_refund_status"]
SUPPORT_TOOLS = ["search_products", "search_conversation_history"]

DEFAULT_AGENT_ID = "router"

AGENTS: list[AgentInfo] = [
    AgentInfo(
        id="router",
        name="Router Agent",
        description="Routes user requests to order, billing, or support tools based on intent.",
        tools=ORDER_TOOLS + BILLING_TOOLS + SUPPORT_TOOLS,
    ),
    AgentInfo(
        id="order",
        name="Order Agent",
        description="Handles order lookups and delivery status queries.",
        tools=ORDER_TOOLS,
    ),
    AgentInfo(
        id="billing",
        name="Billing Agent",
        description="Handles invoice lookups and refund status checks.",
        tools=BILLING_TOOLS,
    ),
    AgentInfo(
        id="support",
        name="Support Agent",
        description="Handles FAQs and conversation history searches.",
        tools=SUPPORT_TOOLS,
    ),
]


def list_agents() -> list[AgentInfo]:
    return list(AGENTS)


def get_agent(agent_id: str) -> AgentInfo | None:
    return next((agent for agent in AGENTS if agent.id == agent_id), None)
