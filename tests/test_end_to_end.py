"""End-to-end: authorize with PKCE, exchange the code, call /rpc, expire.

The app lifespan is entered (``with TestClient(app)``) so the Streamable
HTTP session manager behind /rpc is running.
"""

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from tests.conftest import CLIENT_ID, REDIRECT_URI

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-06-18",
        "capabilities": {},
        "clientInfo": {"name": "e2e-test", "version": "1.0"},
    },
}


def rpc_headers(token: str = None) -> dict:
    headers = {"Accept": "application/json, text/event-stream", "Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def obtain_token(http: TestClient, verifier: str, challenge: str) -> dict:
    redirect = http.get("/authorize", params={
        "client_id": CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "response_type": "code",
        "state": "xyz123",
        "code_challenge": challenge,
        "code_challenge_method": "S256",
    }, follow_redirects=False)
    assert redirect.status_code == 302
    query = parse_qs(urlparse(redirect.headers["location"]).query)
    assert query["state"] == ["xyz123"]

    response = http.post("/token", data={
        "grant_type": "authorization_code",
        "code": query["code"][0],
        "client_id": CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "code_verifier": verifier,
    })
    assert response.status_code == 200
    return response.json()


def test_full_flow_until_token_expiry(make_app, clock, pkce_pair):
    verifier, challenge = pkce_pair
    app = make_app(api_key="static-key")

    with TestClient(app) as http:
        token = obtain_token(http, verifier, challenge)

        response = http.post("/rpc/", json=INITIALIZE, headers=rpc_headers(token["access_token"]))
        assert response.status_code == 200

        clock.advance(token["expires_in"])

        response = http.post("/rpc/", json=INITIALIZE, headers=rpc_headers(token["access_token"]))
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"


def test_static_key_reaches_rpc(make_app):
    with TestClient(make_app(api_key="static-key")) as http:
        response = http.post("/rpc/", json=INITIALIZE, headers=rpc_headers("static-key"))
        assert response.status_code == 200


@pytest.mark.parametrize("token", [None, "not-a-token"])
def test_rpc_rejected_when_static_key_configured(make_app, token):
    with TestClient(make_app(api_key="static-key")) as http:
        response = http.post("/rpc/", json=INITIALIZE, headers=rpc_headers(token))
        assert response.status_code == 401


def test_rpc_open_without_static_key(make_app):
    with TestClient(make_app()) as http:
        response = http.post("/rpc/", json=INITIALIZE, headers=rpc_headers())
        assert response.status_code == 200


def test_lifespan_runs_the_sweeper(make_app):
    app = make_app()
    with TestClient(app):
        assert app.state.sweeper.running
    assert not app.state.sweeper.running
