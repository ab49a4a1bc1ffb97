"""
Global test configuration and fixtures for the merchant relay

This module provides shared fixtures: a sealed box with a fixed test key,
a scripted fake of the GoBiz upstream served through httpx.MockTransport,
wired services, and a FastAPI test client bound to the fake upstream.
"""

import inspect
import os
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Union

# Settings are read at import time
TEST_MASTER_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
os.environ.setdefault("MASTER_KEY", TEST_MASTER_KEY)
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOGIN_SETTLE_DELAY", "0")
os.environ.setdefault("NETWORK_BACKOFF_BASE_MS", "1")
os.environ.setdefault("UPSTREAM_BACKOFF_BASE_MS", "1")

import httpx
import pytest
from fastapi.testclient import TestClient

from merchant_relay.api.dependencies import get_gobiz_provider
from merchant_relay.core.config import settings
from merchant_relay.core.limiter import limiter
from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.utils.encryption import SealedBox
from merchant_relay.core.utils.session_codec import SessionCodec
from merchant_relay.main import app
from merchant_relay.providers.gobiz import GoBizProvider
from merchant_relay.providers.gobiz.common.services.api_client import ResilientClient
from merchant_relay.providers.gobiz.common.services.token_manager import TokenLifecycleManager

TEST_USER_AGENT = "pytest-agent/1.0"
UPSTREAM_BASE = "https://gobiz.test"

Responder = Union[Callable[[httpx.Request], Any], Exception]


# ============================================================================
# Fake upstream
# ============================================================================

class FakeGoBiz:
    """Scripted GoBiz upstream.

    Each path has a queue of responders consumed in order; when a queue is
    empty the path's fallback responder is used, and without one the fake
    answers 404. A responder is an exception to raise or a callable taking
    the request and returning an ``httpx.Response`` (sync or async).
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._queues: Dict[str, List[Responder]] = defaultdict(list)
        self._fallback: Dict[str, Responder] = {}

    @staticmethod
    def reply(status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None):
        def respond(request: httpx.Request) -> httpx.Response:
            if body is None:
                return httpx.Response(status, headers=headers)
            if isinstance(body, str):
                return httpx.Response(status, text=body, headers=headers)
            return httpx.Response(status, json=body, headers=headers)

        return respond

    @staticmethod
    def tokens(access: str = "access-1", refresh: Optional[str] = "refresh-1", expires_in: Any = 3600):
        body: Dict[str, Any] = {"access_token": access, "expires_in": expires_in}
        if refresh is not None:
            body["refresh_token"] = refresh
        return FakeGoBiz.reply(200, body)

    def queue(self, path: str, *responders: Responder) -> "FakeGoBiz":
        self._queues[path].extend(responders)
        return self

    def always(self, path: str, responder: Responder) -> "FakeGoBiz":
        self._fallback[path] = responder
        return self

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if self._queues[path]:
            responder = self._queues[path].pop(0)
        elif path in self._fallback:
            responder = self._fallback[path]
        else:
            return httpx.Response(404, json={"message": f"no route for {path}"})

        if isinstance(responder, Exception):
            raise responder
        result = responder(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=UPSTREAM_BASE, transport=httpx.MockTransport(self.handler))


# ============================================================================
# Service fixtures
# ============================================================================

@pytest.fixture
def box() -> SealedBox:
    return SealedBox(bytes.fromhex(TEST_MASTER_KEY))


@pytest.fixture
def fake_gobiz() -> FakeGoBiz:
    return FakeGoBiz()


@pytest.fixture
async def http(fake_gobiz):
    async with fake_gobiz.client() as client:
        yield client


@pytest.fixture
def tokens(http, box) -> TokenLifecycleManager:
    return TokenLifecycleManager(http, box)


@pytest.fixture
def no_sleep():
    """Records requested sleeps instead of sleeping"""
    delays: List[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def api_client(http, tokens, no_sleep) -> ResilientClient:
    return ResilientClient(http, tokens, sleep=no_sleep)


@pytest.fixture
def record_factory(box):
    """Build session records, authenticated unless told otherwise"""

    def _create(
        access: Optional[str] = "access-0",
        refresh: Optional[str] = "refresh-0",
        expires_in_seconds: int = 3600,
        user_agent: str = TEST_USER_AGENT,
        **fields: Any,
    ) -> SessionRecord:
        record = SessionRecord.new(user_agent)
        if access:
            record.access_credential = box.seal_text(access)
            record.credential_expiry = int(time.time() * 1000) + expires_in_seconds * 1000
        if refresh:
            record.refresh_credential = box.seal_text(refresh)
        for name, value in fields.items():
            setattr(record, name, value)
        return record

    return _create


# ============================================================================
# Application client fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_limiter():
    """Clear rate limit counters so tests do not affect each other"""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def client(fake_gobiz, box):
    """FastAPI test client whose provider talks to the fake upstream"""
    provider = GoBizProvider(fake_gobiz.client(), box)
    app.dependency_overrides[get_gobiz_provider] = lambda: provider

    with TestClient(app, headers={"User-Agent": TEST_USER_AGENT}) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def session_cookie(box, record_factory):
    """Sealed cookie value for an authenticated record"""
    def _create(**kwargs: Any) -> str:
        return SessionCodec(box).encode(record_factory(**kwargs))

    return _create


@pytest.fixture
def cookie_name() -> str:
    return settings.session_cookie_name


# ============================================================================
# Test Markers and Configuration
# ============================================================================

def pytest_collection_modifyitems(config, items):
    """Add markers based on file location"""
    for item in items:
        path = str(item.fspath)
        if "/unit/" in path:
            item.add_marker(pytest.mark.unit)
        if "/security/" in path:
            item.add_marker(pytest.mark.security)
        if "/integration/" in path:
            item.add_marker(pytest.mark.integration)
