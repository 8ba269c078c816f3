"""FastAPI server for the Support Desk agent.

Run with:
    uv run uvicorn src.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.agent import create_all_agents
from src.api.routes import router
from src.config import (
    CORS_ORIGINS,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    SERVER_HOST,
    SERVER_PORT,
)
from src.db.session import init_db
from src.services.rate_limit import SlidingWindowRateLimiter, client_key

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

rate_limiter = SlidingWindowRateLimiter(RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: create missing tables and compile one graph per agent."""
    init_db()
    logger.info("Compiling LangGraph agents…")
    application.state.agents = create_all_agents()
    logger.info("Agents ready: %s", ", ".join(application.state.agents))
    yield


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Support Desk Agent",
    description=(
        "Customer-support chat backend — answers questions about orders, "
        "invoices and refunds, product FAQs and past conversations."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


# ── Error bodies: always {"error": ...} ──────────────────────────────
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = (
        "Invalid JSON body"
        if any(err.get("type") == "json_invalid" for err in errors)
        else "Invalid request body"
    )
    return JSONResponse(
        status_code=400,
        content={"error": message, "issues": jsonable_encoder(errors)},
    )


# ── Rate limiting (innermost, so CORS and request IDs still apply) ──
@app.middleware("http")
async def rate_limit(request: Request, call_next) -> Response:
    """Sliding-window limit on ``/api/*`` keyed by the client's proxy headers."""
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    decision = rate_limiter.hit(client_key(request.headers))
    headers = {
        "RateLimit-Policy": f"{decision.limit};w={int(RATE_LIMIT_WINDOW_SECONDS)}",
        "RateLimit-Limit": str(decision.limit),
        "RateLimit-Remaining": str(decision.remaining),
        "RateLimit-Reset": str(decision.reset_seconds),
    }
    if not decision.allowed:
        logger.warning("Rate limit exceeded for %s", client_key(request.headers))
        return JSONResponse(status_code=429, content={"error": "Rate limit exceeded"}, headers=headers)

    response = await call_next(request)
    response.headers.update(headers)
    return response


# ── CORS (needed for the browser frontend) ──────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After", "RateLimit-Remaining", "RateLimit-Reset"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header so the client
    can reference it in support tickets.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "message": "Backend is active",
        "service": "Support Desk Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting Support Desk API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "src.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
