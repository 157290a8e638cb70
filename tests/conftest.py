# tests/conftest.py
import asyncio
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from dreamy_api.config import Settings
from dreamy_api.main import create_app
from dreamy_api.proxy import JobProxy
from dreamy_api.remote import RemoteJobService

BASE_URL = "https://api.replicate.com/v1"
TOKEN = "r8_test_token"


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        # let other tasks (cancellation) run between polls
        await asyncio.sleep(0)


class RemoteStub:
    """Scripted predictions API.

    `polls` is consumed one entry per status request; the last entry repeats
    forever. Entries are dicts (200 JSON), httpx.Response objects, or
    exceptions to raise.
    """

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.create: Any = {"id": "x1", "status": "starting"}
        self.polls: List[Any] = [{"id": "x1", "status": "succeeded", "output": "http://img"}]
        self.files: Dict[str, httpx.Response] = {}
        self.requests: List[httpx.Request] = []
        self.poll_times: List[float] = []

    @property
    def create_calls(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    @property
    def poll_calls(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "GET" and "/predictions/" in r.url.path]

    def _reply(self, entry: Any) -> httpx.Response:
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, httpx.Response):
            return entry
        return httpx.Response(200, json=entry)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            if isinstance(self.create, dict):
                return httpx.Response(201, json=self.create)
            return self._reply(self.create)
        if "/predictions/" in request.url.path:
            if self.clock is not None:
                self.poll_times.append(self.clock.now)
            entry = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
            return self._reply(entry)
        if str(request.url) in self.files:
            return self.files[str(request.url)]
        return httpx.Response(404, json={"detail": "not found"})


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def stub(fake_clock):
    return RemoteStub(clock=fake_clock)


@pytest_asyncio.fixture
async def make_proxy(stub, fake_clock):
    clients = []

    def make(credential: Optional[str] = TOKEN, **kwargs) -> JobProxy:
        http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(stub.handler))
        clients.append(http)
        remote = RemoteJobService(http, credential)
        return JobProxy(remote, credential, clock=fake_clock, sleep=fake_clock.sleep, **kwargs)

    yield make
    for http in clients:
        await http.aclose()


@pytest.fixture
def make_client(stub):
    opened = []

    def make(**overrides) -> TestClient:
        values = {"api_token": TOKEN, "poll_interval": 0.0}
        values.update(overrides)
        app = create_app(Settings(**values), transport=httpx.MockTransport(stub.handler))
        client = TestClient(app)
        client.__enter__()
        opened.append(client)
        return client

    yield make
    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
