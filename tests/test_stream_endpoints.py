"""Tests for the event-stream endpoints (sse.py) and the info endpoints."""

import json

import anyio
import pytest
from fastapi.testclient import TestClient

from sessions import SessionClosed
from sse import SESSION_HEADER, StreamTransport
from tests.conftest import FakeTransport

INITIALIZED = {"jsonrpc": "2.0", "method": "notifications/initialized"}


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def http(app):
    return TestClient(app)


class TestStreamMessage:

    def test_routes_to_session_by_header(self, app, http):
        transport = FakeTransport()
        app.state.sessions.open("s1", transport)

        response = http.post("/stream-message", json=INITIALIZED, headers={SESSION_HEADER: "s1"})

        assert response.status_code == 202
        assert json.loads(transport.delivered[0]) == INITIALIZED

    def test_routes_by_query_param(self, app, http):
        transport = FakeTransport()
        app.state.sessions.open("s1", transport)

        response = http.post("/stream-message?session_id=s1", json=INITIALIZED)

        assert response.status_code == 202
        assert len(transport.delivered) == 1

    def test_missing_session_id(self, http):
        response = http.post("/stream-message", json=INITIALIZED)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_session"

    def test_unknown_session_id(self, http):
        response = http.post("/stream-message", json=INITIALIZED, headers={SESSION_HEADER: "nope"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_session"

    def test_closed_session(self, app, http):
        app.state.sessions.open("s1", FakeTransport())
        app.state.sessions.close("s1")

        response = http.post("/stream-message", json=INITIALIZED, headers={SESSION_HEADER: "s1"})
        assert response.status_code == 400

    def test_swept_session(self, app, http, clock):
        app.state.sessions.open("s1", FakeTransport())
        clock.advance(31 * 60)
        app.state.sweeper.sweep_once()

        response = http.post("/stream-message", json=INITIALIZED, headers={SESSION_HEADER: "s1"})
        assert response.status_code == 400

    def test_transport_failure_is_a_500(self, app, http):
        class Failing(FakeTransport):
            async def deliver(self, payload):
                raise RuntimeError("stream went away")

        app.state.sessions.open("s1", Failing())

        response = http.post("/stream-message", json=INITIALIZED, headers={SESSION_HEADER: "s1"})
        assert response.status_code == 500
        assert response.json()["error"] == "server_error"

    def test_ended_stream_is_a_client_error(self, app, http):
        class Ended(FakeTransport):
            async def deliver(self, payload):
                raise SessionClosed("s1")

        app.state.sessions.open("s1", Ended())

        response = http.post("/stream-message", json=INITIALIZED, headers={SESSION_HEADER: "s1"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_session"
        assert "s1" not in app.state.sessions


class TestStreamTransport:

    async def test_deliver_rejects_invalid_message(self):
        from pydantic import ValidationError

        transport = StreamTransport("s1")
        transport._read_stream_writer = object()  # never reached
        with pytest.raises(ValidationError):
            await transport.deliver(b'{"not": "json-rpc"}')

    async def test_deliver_before_connect(self):
        with pytest.raises(SessionClosed):
            await StreamTransport("s1").deliver(json.dumps(INITIALIZED).encode())

    async def test_deliver_after_stream_ended(self):
        writer, reader = anyio.create_memory_object_stream(0)
        await reader.aclose()
        transport = StreamTransport("s1")
        transport._read_stream_writer = writer

        with pytest.raises(SessionClosed):
            await transport.deliver(json.dumps(INITIALIZED).encode())

    async def test_deliver_parses_request(self):
        writer, reader = anyio.create_memory_object_stream(1)
        transport = StreamTransport("s1")
        transport._read_stream_writer = writer

        await transport.deliver(json.dumps(INITIALIZED).encode())

        received = reader.receive_nowait()
        assert json.loads(received.message.model_dump_json(by_alias=True, exclude_none=True)) == INITIALIZED

    def test_endpoint_uri(self):
        transport = StreamTransport("abc")
        assert transport.endpoint_uri({"root_path": "/api"}) == "/api/stream-message?session_id=abc"

    def test_close_before_connect_is_noop(self):
        StreamTransport("s1").close()


class TestStreamOpen:

    def test_requires_auth_when_static_key_configured(self, make_app):
        app = make_app(api_key="static-key")
        http = TestClient(app)

        response = http.get("/stream")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"
        assert "resource_metadata" in response.headers["www-authenticate"]
        assert len(app.state.sessions) == 0

    def test_wrong_credential_rejected(self, make_app):
        http = TestClient(make_app(api_key="static-key"))
        response = http.get("/stream", headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401

    def test_post_not_allowed(self, http):
        assert http.post("/stream").status_code == 405


class TestInfoEndpoints:

    def test_health(self, app, http):
        app.state.sessions.open("s1", FakeTransport())

        body = http.get("/health").json()

        assert body["status"] == "ok"
        assert body["active_sessions"] == 1

    def test_root(self, http):
        body = http.get("/").json()
        assert body["endpoints"]["rpc"] == "https://memory.example.com/rpc"
        assert body["api_key_required"] is False

    def test_cors_preflight(self, http):
        response = http.options("/stream-message", headers={
            "Origin": "https://claude.ai",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Mcp-Session-Id, Authorization",
        })

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "mcp-session-id" in response.headers["access-control-allow-headers"].lower()

    def test_cors_exposes_session_header(self, http):
        response = http.get("/health", headers={"Origin": "https://claude.ai"})
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-expose-headers"] == SESSION_HEADER
