"""Conversation persistence: find-or-create conversations, append and list messages.

All functions take an open SQLAlchemy ``Session``; committing is the
caller's job (see ``src.db.session.session_scope`` / ``get_db``).
"""

from __future__ import annotations

import logging
from typing import Literal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from src.db.models import Conversation, Message, MessageRole, User, isoformat_utc, utcnow

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant", "system"]

ROLE_TO_DB: dict[str, MessageRole] = {
    "user": MessageRole.USER,
    "assistant": MessageRole.ASSISTANT,
    "system": MessageRole.SYSTEM,
}
DB_TO_ROLE: dict[MessageRole, str] = {db: api for api, db in ROLE_TO_DB.items()}

DEFAULT_LIST_LIMIT = 20


class NoUsersError(Exception):
    """Raised when a conversation needs an owner but the user table is empty."""


class ConversationNotFoundError(LookupError):
    """Raised when a message targets a conversation that does not exist."""


def format_message(message: Message) -> dict:
    return {
        "id": message.id,
        "role": DB_TO_ROLE[message.role],
        "content": message.content,
        "created_at": isoformat_utc(message.created_at),
    }


def resolve_user_id(session: Session, user_id: str | None = None) -> str:
    """Return *user_id* if that user exists, else the oldest user's id."""
    if user_id:
        existing = session.scalar(select(User.id).where(User.id == user_id))
        if existing:
            return existing

    fallback = session.scalar(select(User.id).order_by(User.created_at.asc()).limit(1))
    if fallback is None:
        raise NoUsersError("No users found. Seed the database first.")
    return fallback


def ensure_conversation(
    session: Session,
    conversation_id: str | None = None,
    user_id: str | None = None,
) -> Conversation:
    """Find the conversation a new message belongs to, creating one if needed.

    Lookup order:
      1. the conversation with ``conversation_id``, when it exists
      2. the resolved user's most recently updated conversation
      3. a brand-new conversation for that user
    """
    if conversation_id:
        existing = session.get(Conversation, conversation_id)
        if existing is not None:
            return existing

    resolved_user_id = resolve_user_id(session, user_id)

    latest = session.scalar(
        select(Conversation)
        .where(Conversation.user_id == resolved_user_id)
        .order_by(Conversation.updated_at.desc())
        .limit(1)
    )
    if latest is not None:
        return latest

    conversation = Conversation(user_id=resolved_user_id)
    session.add(conversation)
    session.flush()
    logger.info("Created conversation %s for user %s", conversation.id, resolved_user_id)
    return conversation


def append_message(session: Session, conversation_id: str, role: Role, content: str) -> Message:
    """Insert a message and bump the conversation's ``updated_at``.

    Both writes go through the same session, so they commit (or roll back)
    together.  Raises ``ConversationNotFoundError`` for an unknown id.
    """
    conversation = session.get(Conversation, conversation_id)
    if conversation is None:
        raise ConversationNotFoundError(f"Conversation {conversation_id} not found")

    message = Message(conversation_id=conversation_id, role=ROLE_TO_DB[role], content=content)
    session.add(message)
    conversation.updated_at = utcnow()

    session.flush()
    return message


def list_conversations(session: Session, limit: int = DEFAULT_LIST_LIMIT) -> list[dict]:
    """Return the most recently updated conversations with their last message."""
    conversations = session.scalars(
        select(Conversation).order_by(Conversation.updated_at.desc()).limit(limit)
    ).all()

    summaries = []
    for conversation in conversations:
        last = session.scalar(
            select(Message.content)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.created_at.desc())
            .limit(1)
        )
        summaries.append(
            {
                "id": conversation.id,
                "last_message": last or "",
                "updated_at": isoformat_utc(conversation.updated_at),
            }
        )
    return summaries


def get_conversation_by_id(session: Session, conversation_id: str) -> dict | None:
    conversation = session.scalar(
        select(Conversation)
        .where(Conversation.id == conversation_id)
        .options(selectinload(Conversation.messages))
    )
    if conversation is None:
        return None

    return {
        "id": conversation.id,
        "user_id": conversation.user_id,
        "created_at": isoformat_utc(conversation.created_at),
        "updated_at": isoformat_utc(conversation.updated_at),
        "messages": [format_message(m) for m in conversation.messages],
    }
