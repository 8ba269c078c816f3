"""FastAPI route definitions for the Support Desk API."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from src.agent import run_agent_sync, stream_agent
from src.api.schemas import (
    ChatRequest,
    ChatSyncResponse,
    ConversationDetail,
    ConversationSummary,
    CreateMessageRequest,
    CreateMessageResponse,
    HealthResponse,
    QuotaErrorResponse,
)
from src.db.session import get_db
from src.services import conversations
from src.services.agents import AgentInfo, get_agent, list_agents
from src.services.quota import QuotaExceededError

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_agent(request: Request, agent_id: str):
    """Retrieve the compiled graph for *agent_id* from app state.

    Graphs are built once during the FastAPI lifespan (see ``server.py``).
    """
    agents = getattr(request.app.state, "agents", None)
    if agents is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    agent = agents.get(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


def _quota_response(exc: QuotaExceededError) -> JSONResponse:
    headers = {}
    if exc.retry_after_seconds:
        headers["Retry-After"] = str(math.ceil(exc.retry_after_seconds))
    body = QuotaErrorResponse(
        error="AI quota exceeded. Please try again shortly.",
        retry_after_seconds=exc.retry_after_seconds,
    )
    return JSONResponse(status_code=429, content=body.model_dump(), headers=headers)


def _relay(first: str | None, chunks: Iterator[str], request_id: str) -> Iterator[str]:
    """Re-emit the already-pulled first chunk, then the rest of the stream.

    Once the response has started the status code is fixed, so a failure
    mid-stream can only be logged and the body cut short.
    """
    if first is None:
        return
    yield first
    try:
        yield from chunks
    except Exception:
        logger.exception("[%s] Stream aborted", request_id)


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat")
async def chat(request: ChatRequest, http_request: Request):
    """Stream the agent's answer as plain text.

    The first chunk is pulled before the response starts so that a quota
    error can still be reported as a 429 rather than an empty 200.
    """
    agent = _get_agent(http_request, request.agent_id)
    request_id = getattr(http_request.state, "request_id", "?")

    chunks = stream_agent(agent, request.messages)
    try:
        first = await asyncio.to_thread(next, chunks, None)
    except QuotaExceededError as exc:
        logger.warning("[%s] %s", request_id, exc)
        return _quota_response(exc)
    except Exception as e:
        logger.exception("[%s] Error starting chat stream", request_id)
        raise HTTPException(status_code=500, detail="Internal Server Error") from e

    return StreamingResponse(
        _relay(first, chunks, request_id),
        media_type="text/plain; charset=utf-8",
    )


@router.post("/chat/sync", response_model=ChatSyncResponse)
async def chat_sync(request: ChatRequest, http_request: Request):
    """Run the agent to completion and return the answer with token usage.

    ``run_agent_sync`` blocks on the LLM, so it runs in a worker thread.
    """
    agent = _get_agent(http_request, request.agent_id)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await asyncio.to_thread(run_agent_sync, agent, request.messages)
    except QuotaExceededError as exc:
        logger.warning("[%s] %s", request_id, exc)
        return _quota_response(exc)
    except Exception as e:
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(status_code=500, detail="Internal Server Error") from e

    return ChatSyncResponse(text=result.text, finish_reason=result.finish_reason, usage=result.usage)


@router.get("/chat/conversations", response_model=list[ConversationSummary])
def get_conversations(db: Session = Depends(get_db)):
    try:
        return conversations.list_conversations(db)
    except Exception as e:
        logger.exception("Failed to load conversations")
        raise HTTPException(status_code=500, detail="Failed to load conversations") from e


@router.get("/chat/conversations/{conversation_id}", response_model=ConversationDetail)
def get_conversation(conversation_id: str, db: Session = Depends(get_db)):
    try:
        conversation = conversations.get_conversation_by_id(db, conversation_id)
    except Exception as e:
        logger.exception("Failed to load conversation %s", conversation_id)
        raise HTTPException(status_code=500, detail="Failed to load conversation") from e

    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.post(
    "/chat/conversations/messages",
    response_model=CreateMessageResponse,
    status_code=201,
)
def create_message(request: CreateMessageRequest, db: Session = Depends(get_db)):
    """Append a message to a conversation, creating the conversation if needed."""
    try:
        conversation = conversations.ensure_conversation(
            db,
            conversation_id=request.conversation_id,
            user_id=request.user_id,
        )
        created = conversations.append_message(
            db, conversation.id, request.message.role, request.message.content,
        )
    except Exception as e:
        logger.exception("Failed to save message")
        raise HTTPException(status_code=500, detail="Failed to save message") from e

    return CreateMessageResponse(
        conversation_id=conversation.id,
        message=conversations.format_message(created),
    )


@router.get("/agents", response_model=list[AgentInfo])
async def get_agents():
    return list_agents()


@router.get("/agents/{agent_id}", response_model=AgentInfo)
async def get_agent_info(agent_id: str):
    agent = get_agent(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent
