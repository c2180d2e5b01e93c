"""
Shared fixtures.

Every test gets its own SQLite file, fresh settings/flags and empty
in-process caches. Tavus is replaced by FakeTavus through dependency
overrides; nothing leaves the machine.
"""

import asyncio
import itertools
from contextlib import ExitStack
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from booth.core import cache as cache_module
from booth.core import database as database_module
from booth.core.config import get_settings
from booth.core.database import close_db, get_session_factory, init_db
from booth.core.dependencies import get_tavus_dep
from booth.core.flags import get_flags
from booth.services import session_store as store_module
from booth.services import tavus as tavus_module
from booth.services.tavus import TavusConversation


class FakeTavus:
    """Stands in for TavusClient. Records payloads, hands out c1, c2, ..."""

    def __init__(self):
        self.calls: list[dict] = []
        self.error: Optional[Exception] = None
        self.echo: dict = {}
        self._ids = itertools.count(1)

    async def create_conversation(self, payload: dict, request_id: str = "unknown") -> TavusConversation:
        self.calls.append(payload)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        n = next(self._ids)
        return TavusConversation(
            conversation_id=f"c{n}",
            conversation_url=f"https://tavus.daily.co/c{n}",
            status="active",
            persona_id=self.echo.get("persona_id", payload.get("persona_id")),
            replica_id=self.echo.get("replica_id", payload.get("replica_id")),
        )

    async def aclose(self):
        return None


def _reset_globals():
    get_settings.cache_clear()
    get_flags.cache_clear()
    store_module._memory_store = None
    cache_module._cache = None
    tavus_module._tavus = None
    database_module._engine = None
    database_module._session_factory = None


@pytest.fixture(autouse=True)
def env(monkeypatch, tmp_path):
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'booth.db'}")
    monkeypatch.setenv("TAVUS_API_KEY", "tavus-test-key")
    monkeypatch.setenv("TAVUS_PERSONA_ID", "p-default")
    monkeypatch.setenv("TAVUS_REPLICA_ID", "r-default")
    monkeypatch.setenv("TAVUS_WEBHOOK_SECRET", "")
    monkeypatch.setenv("TAVUS_WEBHOOK_VERIFY", "false")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://booth.example.com")
    monkeypatch.setenv("GUARDRAIL_TRIGGERS", "")
    monkeypatch.setenv("FF_USE_DATABASE_SESSIONS", "false")
    monkeypatch.setenv("FF_USE_REDIS", "false")
    _reset_globals()
    yield monkeypatch
    _reset_globals()


@pytest.fixture
def fake_tavus():
    return FakeTavus()


def seed(apps: list[dict]) -> None:
    """Write booth apps to the test database before the app starts."""
    from booth.seed import seed_apps

    async def _main():
        await init_db()
        async with get_session_factory()() as db:
            await seed_apps(db, apps)
            await db.commit()
        await close_db()

    asyncio.run(_main())


def build_app(fake_tavus, apps: Optional[list[dict]] = None):
    """Fresh app wired to FakeTavus, with booth apps seeded first."""
    _reset_globals()
    if apps:
        seed(apps)
    from booth.factory import create_app

    app = create_app()
    app.dependency_overrides[get_tavus_dep] = lambda: fake_tavus
    return app


@pytest.fixture
def make_client(fake_tavus):
    """Build and start the app. Call after any env tweaks for the test."""
    stack = ExitStack()

    def _make(apps: Optional[list[dict]] = None) -> TestClient:
        return stack.enter_context(TestClient(build_app(fake_tavus, apps)))

    yield _make
    stack.close()


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def app_builder(fake_tavus):
    """For tests that manage the TestClient lifecycle themselves."""
    return lambda apps=None: build_app(fake_tavus, apps)
