"""Shared fixtures for the connector test suite.

Key fixtures:
- clock: a controllable time source injected into every store
- make_app: builds a connector app with a given static API key
- client: a TestClient over an app without a static API key
- pkce_pair: a (verifier, S256 challenge) pair
"""

import pytest
from fastapi.testclient import TestClient

from config import Config
from main import create_app
from oauth.pkce import s256_challenge

CLIENT_ID = "c1"
REDIRECT_URI = "https://a/cb"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Session transport that records what it was handed."""

    def __init__(self):
        self.delivered = []
        self.closed = False

    async def deliver(self, payload: bytes) -> None:
        self.delivered.append(payload)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_app(clock):
    """Factory for apps sharing the test clock."""

    def _make_app(api_key: str = None, **overrides):
        data = {"public_url": "https://memory.example.com", "api_key": api_key}
        data.update(overrides)
        app = create_app(Config(data), clock=clock)
        app.state.clients.register(CLIENT_ID, "Test Client", [REDIRECT_URI])
        return app

    return _make_app


@pytest.fixture
def client(make_app):
    return TestClient(make_app(), follow_redirects=False)


@pytest.fixture
def pkce_pair():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    return verifier, s256_challenge(verifier)
