"""Shared test fixtures for the Support Desk test suite."""

from __future__ import annotations

import os

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load
    and every test shares one in-memory SQLite database.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ["DATABASE_URL"] = "sqlite://"
    os.environ["METRICS_ENABLED"] = "false"


@pytest.fixture
def empty_db():
    """Fresh schema with no rows."""
    from src.db.session import reset_db

    reset_db()
    yield


@pytest.fixture
def seeded_db(empty_db):
    """Fresh schema loaded with the demo dataset."""
    from src.db.seed import seed_database

    seed_database()
    yield


@pytest.fixture
def db_session(seeded_db):
    """A session on the seeded database, committed on teardown."""
    from src.db.session import session_scope

    with session_scope() as session:
        yield session
