"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Lifespan does not run."""
    return TestClient(app)


def make_cursor(docs):
    """Motor-style cursor: chainable sort/limit, awaitable to_list."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=list(docs))
    return cursor


def make_db():
    """MagicMock database where db["name"] and db.name are the same collection."""
    db = MagicMock()
    db.__getitem__.side_effect = lambda name: getattr(db, name)
    return db


@pytest.fixture
def mock_db():
    return make_db()
