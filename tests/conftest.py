from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect, WebSocketState

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

TEST_ENV = {
    "ELEVENLABS_API_KEY": "xi-test-key",
    "ELEVENLABS_AGENT_ID": "agent-test",
    "TWILIO_ACCOUNT_SID": "AC123",
    "TWILIO_AUTH_TOKEN": "token",
    "TWILIO_PHONE_NUMBER": "+15005550006",
    "PUBLIC_BASE_URL": "",
    "AI_SETUP_TIMEOUT_SECONDS": "2",
}


class FakeTelephony:
    """Stands in for the Twilio-facing starlette WebSocket."""

    def __init__(self) -> None:
        self._inbound: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED
        self.close_calls = 0

    def push(self, frame) -> None:
        self._inbound.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def hang_up(self) -> None:
        self._inbound.put_nowait(None)

    async def receive_text(self) -> str:
        item = await self._inbound.get()
        if item is None:
            self.client_state = WebSocketState.DISCONNECTED
            raise WebSocketDisconnect(code=1000)
        return item

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_calls += 1
        self.application_state = WebSocketState.DISCONNECTED

    @property
    def closed(self) -> bool:
        return self.application_state == WebSocketState.DISCONNECTED


class FakeAIConnection:
    """Stands in for the ElevenLabs websocket client connection."""

    def __init__(self, scripted: list | None = None) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._scripted = list(scripted or [])
        self._inbound: asyncio.Queue | None = None

    def _queue(self) -> asyncio.Queue:
        if self._inbound is None:
            self._inbound = asyncio.Queue()
            for message in self._scripted:
                self._inbound.put_nowait(message if isinstance(message, str) else json.dumps(message))
        return self._inbound

    def push(self, message) -> None:
        self._queue().put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        self._queue().put_nowait(None)

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self._queue().put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._queue().get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeFetcher:
    def __init__(self, url: str = "wss://api.elevenlabs.io/v1/convai/conversation?token=abc", error=None) -> None:
        self.url = url
        self.error = error
        self.calls = 0

    async def fetch_signed_url(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.url


class FakeConnector:
    def __init__(self, connection: FakeAIConnection | None = None) -> None:
        self.connection = connection or FakeAIConnection()
        self.urls: list[str] = []

    async def __call__(self, signed_url: str) -> FakeAIConnection:
        self.urls.append(signed_url)
        return self.connection


class FakeObserver:
    """Observer websocket double accepted by the registry."""

    def __init__(self) -> None:
        self.received: list[dict] = []
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED

    async def send_json(self, data: dict) -> None:
        self.received.append(data)


async def wait_for(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture(scope="session")
def app():
    os.environ.update(TEST_ENV)

    import importlib

    # Ensure clean import with the test settings.
    for module_name in [
        "config.settings",
        "integrations.twilio_client",
        "integrations.elevenlabs",
        "api.dependencies",
        "api.routes",
        "api.twilio_routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def _reset_overrides(app):
    yield
    app.dependency_overrides.clear()
