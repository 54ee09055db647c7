"""Pytest configuration and shared fixtures."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from core.config import Settings
from main import create_app
from services.errors import StoreError
from services.store import MemoryRequestStore

WEBHOOK_URL = "http://n8n.test/webhook/chat"
ORIGIN = "https://chat.example.com"


class FakeClock:
    """Monotonic clock that only moves when a test advances it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWebhook:
    """httpx.MockTransport handler standing in for the workflow webhook."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 202
        self.content = b""
        self.headers: dict[str, str] = {}
        self.unreachable = False
        self.times_out = False
        # path -> absolute URL to redirect to
        self.redirects: dict[str, str] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)
        if self.times_out:
            raise httpx.ReadTimeout("Read timed out", request=request)
        if request.url.path in self.redirects:
            return httpx.Response(
                307, headers={"location": self.redirects[request.url.path]}
            )
        return httpx.Response(
            self.status_code, content=self.content, headers=self.headers
        )

    @property
    def last_payload(self) -> dict:
        return json.loads(self.requests[-1].content)


class BrokenStore:
    """Store whose every operation fails, as if the cache were down."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def get(self, request_id):
        raise StoreError("connection lost")

    async def set(self, request_id, record, ttl):
        raise StoreError("connection lost")

    async def delete(self, request_id):
        raise StoreError("connection lost")

    async def pop(self, request_id):
        raise StoreError("connection lost")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryRequestStore(clock=clock)


@pytest.fixture
def broken_store():
    return BrokenStore()


@pytest.fixture
def webhook():
    return FakeWebhook()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        webhook_url=WEBHOOK_URL,
        redis_url="",
        allowed_origins=(ORIGIN,),
        public_base_url="",
        request_ttl_seconds=3600,
        webhook_timeout=5.0,
        callback_secret="",
        strict_callbacks=False,
        static_dir=str(tmp_path / "no-static"),
    )


@pytest.fixture
def make_client(store, webhook):
    """Builds a TestClient around an app with the given settings."""
    clients = []

    def _make(app_settings, app_store=None):
        app = create_app(
            app_settings,
            store=app_store if app_store is not None else store,
            transport=httpx.MockTransport(webhook),
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client, settings):
    return make_client(settings)
