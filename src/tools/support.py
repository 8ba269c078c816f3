"""Support tools: product FAQ search and past-conversation search.

Both do a case-insensitive substring match and return at most
``MAX_RESULTS`` rows, newest first.  ``%`` and ``_`` in the query are
matched literally.
"""

from __future__ import annotations

import logging

from langchain_core.tools import tool
from pydantic import BaseModel, Field
from sqlalchemy import or_, select

from src.db.models import Message, ProductFaq
from src.db.session import session_scope
from src.services.conversations import format_message
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_RESULTS = 5


class SearchInput(BaseModel):
    query: str = Field(..., min_length=1, description="Keywords to search for")


@tool(args_schema=SearchInput)
def search_products(query: str) -> list[dict]:
    """Search product FAQs using a query string."""
    with metrics.track("database", "search_products"), session_scope() as session:
        faqs = session.scalars(
            select(ProductFaq)
            .where(
                or_(
                    ProductFaq.question.icontains(query, autoescape=True),
                    ProductFaq.answer.icontains(query, autoescape=True),
                    ProductFaq.category.icontains(query, autoescape=True),
                )
            )
            .order_by(ProductFaq.updated_at.desc())
            .limit(MAX_RESULTS)
        ).all()

    logger.debug("search_products(%r) -> %d hits", query, len(faqs))
    return [
        {
            "id": faq.id,
            "question": faq.question,
            "answer": faq.answer,
            "category": faq.category,
        }
        for faq in faqs
    ]


@tool(args_schema=SearchInput)
def search_conversation_history(query: str) -> list[dict]:
    """Search past conversation history by keyword."""
    with metrics.track("database", "search_conversation_history"), session_scope() as session:
        messages = session.scalars(
            select(Message)
            .where(Message.content.icontains(query, autoescape=True))
            .order_by(Message.created_at.desc())
            .limit(MAX_RESULTS)
        ).all()
        results = [format_message(m) for m in messages]

    logger.debug("search_conversation_history(%r) -> %d hits", query, len(results))
    return results
