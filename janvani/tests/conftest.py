"""
Shared pytest fixtures for the JANVANI client test suite.

Every test gets a fresh, seeded reference API (janvani.devserver) served
in-process through httpx.ASGITransport. The client side talks to it through a
transport wrapper that records each request and can simulate outages or hold
a request open until the test releases it.
"""

import asyncio
from typing import List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from janvani.cache import CacheStore
from janvani.coordinator import Coordinator
from janvani.devserver import create_app
from janvani.gateway import Gateway
from janvani.models import Role
from janvani.seed import USERS
from janvani.store import LocalStore

BASE_URL = "http://testserver/api"
ACCOUNTS = {u["key"]: u for u in USERS}


class FakeClock:
    """Injectable monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyTransport(httpx.AsyncBaseTransport):
    """Wraps the ASGI transport: records requests, injects failures, holds requests open."""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.calls: List[Tuple[str, str]] = []
        self.tokens: List[Optional[str]] = []
        self._failures: list = []
        self._holds: list = []

    def fail(self, method: str, path_suffix: str, times: int = 1, exc=httpx.ConnectError):
        """The next *times* matching requests raise *exc* instead of reaching the app."""
        self._failures.append([method, path_suffix, times, exc])

    def hold(self, method: str, path_suffix: str) -> asyncio.Event:
        """Matching requests wait until the returned event is set."""
        gate = asyncio.Event()
        self._holds.append((method, path_suffix, gate))
        return gate

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p in self.calls if m == method and p == path)

    def tokens_for(self, method: str, path: str, since: int = 0) -> List[Optional[str]]:
        """Authorization headers sent on matching requests, from call index *since* on."""
        return [token for (m, p), token in zip(self.calls[since:], self.tokens[since:]) if m == method and p == path]

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        self.tokens.append(request.headers.get("authorization"))
        for rule in self._failures:
            if rule[0] == method and path.endswith(rule[1]) and rule[2] > 0:
                rule[2] -= 1
                raise rule[3]("simulated outage", request=request)
        for hold_method, suffix, gate in self._holds:
            if hold_method == method and path.endswith(suffix):
                await gate.wait()
        return await self.inner.handle_async_request(request)

    async def aclose(self) -> None:
        await self.inner.aclose()


@pytest.fixture
def app():
    """Fresh seeded reference API; bcrypt kept cheap so logins stay fast."""
    return create_app(secret="test-secret-do-not-use-in-production", bcrypt_rounds=4)


@pytest_asyncio.fixture
async def client(app):
    """Raw httpx client against the reference API (no retries, no cache)."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as c:
        yield c


@pytest.fixture
def transport(app):
    return FlakyTransport(httpx.ASGITransport(app=app))


@pytest_asyncio.fixture
async def http(transport):
    async with httpx.AsyncClient(transport=transport) as c:
        yield c


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway(http):
    return Gateway(http, base_url=BASE_URL, timeout=5, retry_backoff=0)


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "state")


@pytest_asyncio.fixture
async def coordinator(gateway, store, clock):
    coord = Coordinator(gateway=gateway, cache=CacheStore(ttl=15, clock=clock), store=store,
                        poll_interval=3600)
    yield coord
    coord.stop_polling()
    await asyncio.sleep(0)


@pytest.fixture
def accounts():
    """Seeded accounts by key (citizen1..citizen4, admin), passwords included."""
    return ACCOUNTS


@pytest.fixture
def sign_in(coordinator):
    """Coroutine that logs a seeded account into a coordinator (default: the fixture one)."""
    async def _sign_in(key: str, coord: Coordinator = None):
        account = ACCOUNTS[key]
        return await (coord or coordinator).login(account["email"], account["password"], Role(account["role"]))
    return _sign_in


async def _login(client: httpx.AsyncClient, key: str) -> dict:
    """Log in through the raw API and return Authorization headers dict."""
    account = ACCOUNTS[key]
    resp = await client.post(f"/auth/{account['role']}/login",
                             json={"email": account["email"], "password": account["password"]})
    assert resp.status_code == 200, f"Login failed for {key}: {resp.text}"
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest_asyncio.fixture
async def citizen_headers(client):
    """Auth headers for the seeded citizen1 account."""
    return await _login(client, "citizen1")


@pytest_asyncio.fixture
async def other_citizen_headers(client):
    return await _login(client, "citizen2")


@pytest_asyncio.fixture
async def admin_headers(client):
    """Auth headers for the seeded admin account."""
    return await _login(client, "admin")
