"""Seed the database with a demo customer, orders, invoices and FAQs.

Safe to run repeatedly: rows are matched on their natural keys (email,
order number, invoice number, FAQ question) and updated in place.  The
sample conversation is only created when the demo user has none.

Usage:
    uv run python -m src.db.seed           # create tables + upsert demo data
    uv run python -m src.db.seed --reset   # drop everything first
"""

from __future__ import annotations

import argparse
import logging
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.db.models import (
    Conversation,
    Invoice,
    InvoiceStatus,
    Message,
    MessageRole,
    Order,
    OrderStatus,
    ProductFaq,
    User,
    utcnow,
)
from src.db.session import init_db, reset_db, session_scope

logger = logging.getLogger(__name__)

DEMO_USER_EMAIL = "jane.doe@example.com"
DEMO_USER_NAME = "Jane Doe"

FAQS = [
    {
        "question": "How do I reset my password?",
        "answer": "Go to Settings > Security and click 'Reset Password'.",
        "category": "Account",
    },
    {
        "question": "What is your return policy?",
        "answer": (
            "You can return items within 30 days in original condition. "
            "Start a return from your Orders page."
        ),
        "category": "Returns",
    },
    {
        "question": "Where can I see my invoices?",
        "answer": "Open Billing in your dashboard to view all invoices.",
        "category": "Billing",
    },
    {
        "question": "What is the delivery timeline for standard shipping?",
        "answer": "Standard shipping typically takes 3-5 business days.",
        "category": "Shipping",
    },
]

ORDERS = [
    {
        "order_number": "ORD-1001",
        "status": OrderStatus.DELIVERED,
        "delivery_date": date(2026, 1, 15),
        "items": [
            {"sku": "SKU-MOUSE-1", "name": "Wireless Mouse", "qty": 1, "price": 29.99},
            {"sku": "SKU-PAD-1", "name": "Mouse Pad", "qty": 1, "price": 9.99},
        ],
    },
    {
        "order_number": "ORD-1002",
        "status": OrderStatus.SHIPPED,
        "delivery_date": date(2026, 2, 20),
        "items": [
            {"sku": "SKU-KB-1", "name": "Mechanical Keyboard", "qty": 1, "price": 89.99},
        ],
    },
    {
        "order_number": "ORD-1003",
        "status": OrderStatus.PENDING,
        "delivery_date": None,
        "items": [
            {"sku": "SKU-HEAD-1", "name": "Noise-Canceling Headphones", "qty": 1, "price": 199.99},
        ],
    },
]

INVOICES = [
    {
        "invoice_no": "INV-2001",
        "amount": Decimal("199.99"),
        "status": InvoiceStatus.PAID,
        "due_date": date(2026, 2, 1),
    },
    {
        "invoice_no": "INV-2002",
        "amount": Decimal("49.99"),
        "status": InvoiceStatus.REFUNDED,
        "due_date": date(2026, 2, 5),
    },
]

SAMPLE_CONVERSATION = [
    (MessageRole.SYSTEM, "You are the AI support assistant. Be concise and helpful."),
    (MessageRole.USER, "Where can I find my invoice for the last order?"),
    (
        MessageRole.ASSISTANT,
        "You can find invoices under Billing in your dashboard. "
        "I can also email it to you if you'd like.",
    ),
    (MessageRole.USER, "Please email it to me."),
]


def _upsert_user(session: Session) -> User:
    user = session.scalar(select(User).where(User.email == DEMO_USER_EMAIL))
    if user is None:
        user = User(email=DEMO_USER_EMAIL, name=DEMO_USER_NAME)
        session.add(user)
    else:
        user.name = DEMO_USER_NAME
    session.flush()
    return user


def _upsert_faqs(session: Session) -> None:
    for data in FAQS:
        faq = session.scalar(select(ProductFaq).where(ProductFaq.question == data["question"]))
        if faq is None:
            session.add(ProductFaq(**data))


def _upsert_orders(session: Session, user: User) -> None:
    for data in ORDERS:
        order = session.scalar(select(Order).where(Order.order_number == data["order_number"]))
        if order is None:
            session.add(Order(user_id=user.id, **data))
            continue
        order.status = data["status"]
        order.delivery_date = data["delivery_date"]
        order.items = data["items"]


def _upsert_invoices(session: Session, user: User) -> None:
    for data in INVOICES:
        invoice = session.scalar(select(Invoice).where(Invoice.invoice_no == data["invoice_no"]))
        if invoice is None:
            session.add(Invoice(user_id=user.id, **data))
            continue
        invoice.amount = data["amount"]
        invoice.status = data["status"]
        invoice.due_date = data["due_date"]


def _create_sample_conversation(session: Session, user: User) -> None:
    existing = session.scalar(select(Conversation.id).where(Conversation.user_id == user.id))
    if existing is not None:
        return
    # Spread the sample messages over the past few minutes so their order is stable
    started = utcnow() - timedelta(minutes=5)
    stamps = [started + timedelta(seconds=i) for i in range(len(SAMPLE_CONVERSATION))]
    conversation = Conversation(user_id=user.id, created_at=started, updated_at=stamps[-1])
    conversation.messages = [
        Message(role=role, content=content, created_at=stamp)
        for (role, content), stamp in zip(SAMPLE_CONVERSATION, stamps)
    ]
    session.add(conversation)


def seed_database() -> None:
    """Upsert the demo dataset."""
    with session_scope() as session:
        user = _upsert_user(session)
        _upsert_faqs(session)
        _upsert_orders(session, user)
        _upsert_invoices(session, user)
        _create_sample_conversation(session, user)
    logger.info(
        "Seeded %d FAQs, %d orders, %d invoices for %s",
        len(FAQS), len(ORDERS), len(INVOICES), DEMO_USER_EMAIL,
    )


def main():
    parser = argparse.ArgumentParser(description="Seed the Support Desk database")
    parser.add_argument(
        "--reset", action="store_true",
        help="Drop and recreate all tables before seeding",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if args.reset:
        reset_db()
    else:
        init_db()
    seed_database()


if __name__ == "__main__":
    main()
