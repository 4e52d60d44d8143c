from __future__ import annotations

import os
import tempfile

# The engine is built at import time, so point it at a scratch database first
_TMP_DIR = tempfile.mkdtemp(prefix="pulsewatch-tests-")
os.environ["DATA_PATH"] = _TMP_DIR
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["RUN_ON_STARTUP"] = "false"

from typing import Any, Callable, Dict, List  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from pulsewatch.database import Base, async_session, engine  # noqa: E402
from pulsewatch.models import Monitor  # noqa: E402
from pulsewatch.services.alerter import alerter_service  # noqa: E402
from pulsewatch.services.checker import checker_service  # noqa: E402
from pulsewatch.services.passive import MessageDeduplicator, passive_ingestion_service  # noqa: E402
from pulsewatch.services.state import monitor_state_store  # noqa: E402
from pulsewatch.services.telegram import telegram_service  # noqa: E402


class WebhookRecorder:
    """MockTransport handler that records requests and answers with a fixed status."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": True})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture(autouse=True)
def _reset_services(monkeypatch: pytest.MonkeyPatch) -> None:
    monitor_state_store.clear()
    monkeypatch.setattr(passive_ingestion_service, "dedup", MessageDeduplicator())
    monkeypatch.setattr(checker_service, "transport", None)
    monkeypatch.setattr(alerter_service, "transport", None)
    monkeypatch.setattr(telegram_service, "transport", None)
    monkeypatch.setattr(telegram_service, "_client", None)
    monkeypatch.setattr(telegram_service, "_task", None)
    monkeypatch.setattr(telegram_service, "_handler_tasks", set())
    monkeypatch.setattr(telegram_service, "_chat_tasks", {})


@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        yield session

    # Pooled aiosqlite connections must not outlive this test's event loop
    await engine.dispose()


@pytest.fixture
def make_monitor(db) -> Callable[..., Any]:
    async def _make(**fields: Dict[str, Any]) -> Monitor:
        fields.setdefault("name", "Example")
        fields.setdefault("url", "https://example.com/health")
        fields.setdefault("check_type", "http")
        monitor = Monitor(**fields)
        db.add(monitor)
        await db.commit()
        await db.refresh(monitor)
        return monitor

    return _make


@pytest.fixture
def webhook() -> WebhookRecorder:
    recorder = WebhookRecorder()
    alerter_service.transport = recorder.transport
    return recorder
