"""Test fixtures — a fresh Services container per test, fakes for the outside world.

Learn: Everything stateful (cache, subscription map, job table) lives on
one Services object, so isolation is just "build a new one":

1. `services` builds a container around in-memory storage and fake
   Smartsheet / completion clients — no network, no database server.
2. `client` starts the job workers and talks to the app through httpx's
   ASGITransport. ASGITransport doesn't run the lifespan, so the fixture
   starts and stops the services itself.
3. WebSocket tests use Starlette's TestClient instead (`ws_client`),
   which does run the lifespan on its own event loop.

Broadcaster tests don't need a real socket: FakeConnection records what
was sent and can be told to fail.
"""

import json

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketState

from sheetlink.clients.completions import CompletionError
from sheetlink.clients.smartsheet import SheetClientError
from sheetlink.config import Settings
from sheetlink.main import create_app
from sheetlink.services.container import Services
from sheetlink.services.webhook_receiver import compute_signature

WEBHOOK_SECRET = "test-shared-secret"


# ═══════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════


class FakeConnection:
    """Stands in for a WebSocket: records sends, can be told to fail."""

    def __init__(self, fail: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.fail = fail
        self.sent: list[dict] = []
        self.close_code = None

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason=None) -> None:
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def disconnect(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED


class FakeSheets:
    """In-memory Smartsheet: sheet id → sheet JSON."""

    def __init__(self, sheets: dict | None = None):
        self.sheets = sheets or {}
        self.fetches: list[str] = []
        self.updates: list[tuple[str, list[dict]]] = []

    async def get_sheet(self, sheet_id: str) -> dict:
        self.fetches.append(sheet_id)
        if sheet_id not in self.sheets:
            raise SheetClientError(f"Smartsheet API returned 404 for /sheets/{sheet_id}")
        return self.sheets[sheet_id]

    async def update_rows(self, sheet_id: str, rows: list[dict]) -> dict:
        if sheet_id not in self.sheets:
            raise SheetClientError(f"Smartsheet API returned 404 for /sheets/{sheet_id}/rows")
        self.updates.append((sheet_id, rows))
        return {"message": "SUCCESS", "result": rows}


class FakeCompletions:
    """Answers every prompt with all three fields; fails prompts containing a marker."""

    def __init__(self, fail_marker: str = "FAIL"):
        self.fail_marker = fail_marker
        self.prompts: list[str] = []

    async def complete_json(self, prompt: str) -> dict:
        self.prompts.append(prompt)
        if self.fail_marker in prompt:
            raise CompletionError("model returned garbage")
        return {"summary": "short summary", "score": 87, "terms": ["oncology", "trial"]}


def make_sheet(sheet_id: str, rows: int, source_column: int = 111) -> dict:
    return {
        "id": sheet_id,
        "version": 3,
        "rows": [
            {"id": 1000 + n, "cells": [{"columnId": source_column, "value": f"row {n} text"}]}
            for n in range(rows)
        ],
    }


# ═══════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def settings():
    return Settings(
        webhook_secret=WEBHOOK_SECRET,
        log_level="WARNING",
        max_concurrent_jobs=2,
        cleanup_interval_seconds=3600,
    )


@pytest.fixture
def fake_sheets():
    return FakeSheets({"42": make_sheet("42", rows=3)})


@pytest.fixture
def fake_completions():
    return FakeCompletions()


@pytest.fixture
def services(settings, fake_sheets, fake_completions):
    return Services(settings, sheets=fake_sheets, completions=fake_completions)


@pytest.fixture
def app(settings, services):
    return create_app(settings, services)


@pytest_asyncio.fixture()
async def client(app, services):
    """HTTP client against the app, with job workers running."""
    await services.start()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await services.stop()


@pytest.fixture
def ws_client(app):
    """Starlette TestClient — runs the lifespan, supports WebSockets."""
    with TestClient(app) as tc:
        yield tc


@pytest.fixture
def make_connection():
    return FakeConnection


@pytest.fixture
def sign():
    """Headers for a body signed with the test secret."""
    def _sign(body: bytes, secret: str = WEBHOOK_SECRET) -> dict[str, str]:
        return {
            "Smartsheet-Hmac-SHA256": compute_signature(secret, body),
            "Content-Type": "application/json",
        }
    return _sign


@pytest.fixture
def event_batch():
    """Raw webhook body with one change per (object_type, action) pair."""
    def _batch(sheet_id: str = "42", changes=(("row", "updated"),)) -> bytes:
        return json.dumps({
            "webhookId": "wh-1",
            "scope": "sheet",
            "scopeObjectId": sheet_id,
            "events": [
                {
                    "objectType": object_type,
                    "action": action,
                    "id": f"obj-{n}",
                    "timestamp": "2024-05-01T12:00:00Z",
                }
                for n, (object_type, action) in enumerate(changes)
            ],
        }).encode()
    return _batch
