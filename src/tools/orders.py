"""Order lookup tools.

Both tools accept either the internal order id or the customer-facing
order number (e.g. ``ORD-1001``).
"""

from __future__ import annotations

import logging

from langchain_core.tools import tool
from pydantic import BaseModel, Field
from sqlalchemy import or_, select

from src.db.models import Order, isoformat_utc
from src.db.session import session_scope
from src.services.metrics import metrics

logger = logging.getLogger(__name__)


class OrderIdInput(BaseModel):
    order_id: str = Field(..., min_length=1, description="Order ID or order number, e.g. ORD-1001")


def _find_order(order_id: str) -> Order | None:
    with session_scope() as session:
        return session.scalar(
            select(Order).where(or_(Order.id == order_id, Order.order_number == order_id)).limit(1)
        )


def _not_found(order_id: str) -> dict:
    logger.info("Order lookup miss: %s", order_id)
    return {"error": "Order not found", "order_id": order_id}


@tool(args_schema=OrderIdInput)
def get_order_details(order_id: str) -> dict:
    """Get full order details by order ID or order number."""
    with metrics.track("database", "get_order_details"):
        order = _find_order(order_id)
    if order is None:
        return _not_found(order_id)

    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "delivery_date": order.delivery_date.isoformat() if order.delivery_date else None,
        "items": order.items,
        "created_at": isoformat_utc(order.created_at),
    }


@tool(args_schema=OrderIdInput)
def check_delivery_status(order_id: str) -> dict:
    """Check delivery status and date by order ID or order number."""
    with metrics.track("database", "check_delivery_status"):
        order = _find_order(order_id)
    if order is None:
        return _not_found(order_id)

    return {
        "order_id": order.id,
        "status": order.status.value,
        "delivery_date": order.delivery_date.isoformat() if order.delivery_date else None,
    }
