"""Shared fixtures: a fresh file-backed SQLite database per test and an API client."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./doosr-test.db")
os.environ.setdefault("BACKEND_SESSION_SECRET", "test-secret")
os.environ.setdefault("JOURNAL_SESSION_ENCRYPTION_KEY", "test-journal-session-key")
os.environ.setdefault("UNFURL_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient

from doosr import repositories
from doosr.db import dispose_engine
from doosr.db_init import init_db
from doosr.settings import reset_settings

TEST_EMAIL = "tester@example.com"
HEADERS = {"X-Backend-Token": "test-secret", "X-User-Email": TEST_EMAIL}


@pytest.fixture(autouse=True)
async def database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'doosr.db'}")
    monkeypatch.setenv("DEFAULT_PERMANENT_SECTIONS", "")
    monkeypatch.delenv("ALLOWED_EMAILS", raising=False)
    reset_settings()
    await dispose_engine()
    await init_db()
    yield
    await dispose_engine()
    reset_settings()


@pytest.fixture
async def user():
    return await repositories.get_or_create_user(TEST_EMAIL)


@pytest.fixture
async def client():
    from doosr.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=HEADERS) as ac:
        yield ac
