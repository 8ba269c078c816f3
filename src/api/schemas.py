"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from src.services.agents import DEFAULT_AGENT_ID

Role = Literal["user", "assistant", "system"]


class ChatMessage(BaseModel):
    """One turn of the conversation as sent by the frontend."""

    role: Role
    content: str = Field(..., min_length=1)


class ChatRequest(BaseModel):
    """Chat history to answer; the last message is usually the user's question."""

    messages: list[ChatMessage] = Field(..., min_length=1)
    agent_id: str = Field(
        DEFAULT_AGENT_ID,
        description="Which agent answers (router, order, billing, support)",
    )


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class ChatSyncResponse(BaseModel):
    text: str
    finish_reason: str
    usage: Usage


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "support-desk-agent"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ConversationSummary(BaseModel):
    id: str
    last_message: str
    updated_at: str


class ConversationMessage(BaseModel):
    id: str
    role: Role
    content: str
    created_at: str


class ConversationDetail(BaseModel):
    id: str
    user_id: str
    created_at: str
    updated_at: str
    messages: list[ConversationMessage]


class CreateMessageRequest(BaseModel):
    """Persist one message, creating or reusing a conversation as needed."""

    conversation_id: str | None = None
    user_id: str | None = None
    message: ChatMessage


class CreateMessageResponse(BaseModel):
    conversation_id: str
    message: ConversationMessage


class ErrorResponse(BaseModel):
    error: str


class QuotaErrorResponse(ErrorResponse):
    retry_after_seconds: float | None = None
