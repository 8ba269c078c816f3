"""Support Desk Agent — an AI customer-support chat backend.

Architecture Overview
=====================

Each chat request carries the client's message history.  The last few
messages go to a **LangGraph** agent with two nodes:

1. **chatbot** — Claude with the agent's lookup tools bound.  Decides
   whether to answer directly or call a tool.

2. **tools** — Runs the requested lookups against the relational store
   (orders, invoices, product FAQs, past messages) and feeds the results
   back to the chatbot.

Routing: chatbot → (tool calls?) → tools → chatbot (at most 3 model steps) → END

Four agents share that graph shape: the **router** sees all six tools, the
**order**, **billing** and **support** agents only their own pair.

Key Design Decisions
--------------------
- **Stateless agent**: history lives in the client and the database, not in
  a graph checkpointer; every request is self-contained.
- **Quota handling**: provider retries are off; rate-limit / quota errors
  are recognised by walking the error's cause chain and surface as HTTP 429
  with ``Retry-After`` when the provider says how long to wait.
- **Streaming and sync**: ``/api/chat`` streams plain text, ``/api/chat/sync``
  returns the full answer plus token usage.
- **Persistence**: SQLAlchemy models with SQLite by default; any SQLAlchemy
  URL works via ``DATABASE_URL``.

Package Structure
-----------------
- ``src/agent.py`` — LangGraph graph, message conversion, sync/stream runners
- ``src/config.py`` — Centralized configuration from environment variables
- ``src/prompts.py`` — System prompts per agent
- ``src/server.py`` — FastAPI application and middleware
- ``src/main.py`` — CLI chat interface
- ``src/db/`` — ORM models, sessions, demo seed data
- ``src/services/`` — Agent registry, conversations, quota classifier, rate limiter, metrics
- ``src/tools/`` — LangChain lookup tools
- ``src/api/`` — FastAPI routes and Pydantic schemas
"""
