"""OAuth 2.0 endpoints for the memory connector.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Client registration (/register)
- Authorization (/authorize), auto-approved, no consent screen
- Token endpoint (/token)
"""

import logging
import secrets
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from errors import ClientError, TransientError
from logging_config import redact
from oauth.models import DEFAULT_SCOPE, SUPPORTED_SCOPES, TOKEN_TYPE
from oauth.pkce import SUPPORTED_METHODS
from oauth.stores import AccessTokenStore, AuthorizationCodeStore, ClientRegistry, RefreshTokenStore

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

# First-party client registered at startup
BOOTSTRAP_CLIENT_ID = "claude-web"
BOOTSTRAP_CLIENT_NAME = "Claude Web Client"
BOOTSTRAP_REDIRECT_URIS = [
    "https://claude.ai/oauth/callback",
    "http://localhost:3000/oauth/callback",
]

# These will be set by init_oauth_routes()
_server_url: str = ""
_clients: Optional[ClientRegistry] = None
_codes: Optional[AuthorizationCodeStore] = None
_tokens: Optional[AccessTokenStore] = None
_refresh_tokens: Optional[RefreshTokenStore] = None
_manifest_extra: dict = {}


def init_oauth_routes(
    server_url: str,
    clients: ClientRegistry,
    codes: AuthorizationCodeStore,
    tokens: AccessTokenStore,
    refresh_tokens: RefreshTokenStore,
    manifest_extra: dict = None,
):
    """Bind the OAuth routes to a server URL and its stores.

    Must be called before including the router in the app.
    """
    global _server_url, _clients, _codes, _tokens, _refresh_tokens, _manifest_extra
    _server_url = server_url
    _clients = clients
    _codes = codes
    _tokens = tokens
    _refresh_tokens = refresh_tokens
    _manifest_extra = manifest_extra or {}

    if _clients.get(BOOTSTRAP_CLIENT_ID) is None:
        _clients.register(BOOTSTRAP_CLIENT_ID, BOOTSTRAP_CLIENT_NAME, BOOTSTRAP_REDIRECT_URIS)


def _token_response(data: dict) -> JSONResponse:
    return JSONResponse(data, headers={"Cache-Control": "no-store", "Pragma": "no-cache"})


def _is_absolute_http_uri(uri) -> bool:
    if not isinstance(uri, str):
        return False
    parts = urlsplit(uri)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def _with_query(uri: str, params: dict) -> str:
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


# ============== Discovery Endpoints ==============

@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource():
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    return {
        "resource": _server_url,
        "authorization_servers": [_server_url],
        "scopes_supported": list(SUPPORTED_SCOPES),
        "bearer_methods_supported": ["header"],
    }


@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server():
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return {
        "issuer": _server_url,
        "authorization_endpoint": f"{_server_url}/authorize",
        "token_endpoint": f"{_server_url}/token",
        "registration_endpoint": f"{_server_url}/register",
        "scopes_supported": list(SUPPORTED_SCOPES),
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["none", "client_secret_post"],
        "code_challenge_methods_supported": list(SUPPORTED_METHODS),
    }


@router.get("/.well-known/mcp.json")
async def mcp_manifest():
    """Connector manifest advertising the OAuth and protocol endpoints."""
    manifest = {
        "schema_version": "1.0",
        "name": "OpenMemory",
        "description": "Persistent memory system for AI assistants. Store, search, and recall information across conversations.",
        "authentication": {
            "type": "oauth2",
            "authorization_url": f"{_server_url}/authorize",
            "token_url": f"{_server_url}/token",
            "scopes": SUPPORTED_SCOPES,
        },
        "endpoints": {
            "rpc": f"{_server_url}/rpc",
            "stream": f"{_server_url}/stream",
        },
    }
    manifest.update(_manifest_extra)
    return manifest


# ============== Client Registration ==============

@router.post("/register")
async def register_client(request: Request):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
    try:
        data = await request.json()
    except ValueError:
        raise TransientError("invalid_request", "Body must be JSON")
    if not isinstance(data, dict):
        raise TransientError("invalid_request", "Body must be a JSON object")

    redirect_uris = data.get("redirect_uris")
    if not isinstance(redirect_uris, list) or not redirect_uris or not all(map(_is_absolute_http_uri, redirect_uris)):
        raise ClientError("invalid_client_metadata", "redirect_uris must be a non-empty list of absolute http(s) URIs")

    client = _clients.register(
        client_id=secrets.token_urlsafe(24),
        name=data.get("client_name") or "MCP Client",
        redirect_uris=redirect_uris,
        client_secret=secrets.token_urlsafe(32),
    )

    return JSONResponse({
        "client_id": client.client_id,
        "client_secret": client.client_secret,
        "client_name": client.name,
        "redirect_uris": sorted(client.redirect_uris),
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
        "token_endpoint_auth_method": "none",
        "client_id_issued_at": int(client.created_at),
    }, status_code=201)


# ============== Authorization ==============

@router.get("/authorize")
async def authorize(
    client_id: str = "",
    redirect_uri: str = "",
    response_type: str = "",
    scope: str = "",
    state: Optional[str] = None,
    code_challenge: str = "",
    code_challenge_method: str = "",
):
    """OAuth 2.0 Authorization Endpoint.

    Consent is auto-approved: a valid request is answered straight away with a
    redirect carrying the code and the caller's state, unmodified.
    """
    client = _clients.validate(client_id, redirect_uri or None)
    if client is None:
        raise ClientError("invalid_client", "Invalid client_id or redirect_uri")

    if not redirect_uri:
        # Only unambiguous when the client has a single registered URI
        if len(client.redirect_uris) != 1:
            raise ClientError("invalid_request", "redirect_uri is required")
        redirect_uri = next(iter(client.redirect_uris))

    if response_type != "code":
        raise ClientError("unsupported_response_type", "Only response_type=code is supported")

    auth_code = _codes.issue(
        client_id=client.client_id,
        redirect_uri=redirect_uri,
        scope=scope or DEFAULT_SCOPE,
        code_challenge=code_challenge or None,
        code_challenge_method=code_challenge_method or None,
    )
    logger.info(f"[OAUTH] Issued authorization code for client {client.client_id} (pkce={bool(code_challenge)})")

    params = {"code": auth_code.code}
    if state is not None and state != "":
        params["state"] = state
    return RedirectResponse(url=_with_query(redirect_uri, params), status_code=302)


# ============== Token Endpoint ==============

@router.post("/token")
async def token(
    request: Request,
    grant_type: str = Form(None),
    code: str = Form(None),
    redirect_uri: str = Form(None),
    client_id: str = Form(None),
    code_verifier: str = Form(None),
    refresh_token: str = Form(None),
):
    """OAuth 2.0 Token Endpoint (form or JSON body)."""
    if grant_type is None:
        try:
            data = await request.json()
        except ValueError:
            raise TransientError("invalid_request", "Invalid request body")
        if not isinstance(data, dict):
            raise TransientError("invalid_request", "Invalid request body")
        grant_type = data.get("grant_type")
        code = data.get("code")
        redirect_uri = data.get("redirect_uri")
        client_id = data.get("client_id")
        code_verifier = data.get("code_verifier")
        refresh_token = data.get("refresh_token")

    logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {client_id}")

    if grant_type == "authorization_code":
        auth_code = _codes.redeem(code, client_id, redirect_uri, code_verifier)

        access = _tokens.issue(scope=auth_code.scope, client_id=auth_code.client_id)
        refresh = _refresh_tokens.issue(scope=auth_code.scope, client_id=auth_code.client_id)
        logger.info(f"[TOKEN] Access token {redact(access.access_token)} created for client {auth_code.client_id}")

        return _token_response({
            "access_token": access.access_token,
            "token_type": TOKEN_TYPE,
            "expires_in": access.expires_in,
            "refresh_token": refresh.refresh_token,
            "scope": access.scope,
        })

    if grant_type == "refresh_token":
        previous = _refresh_tokens.rotate(refresh_token, client_id)

        access = _tokens.issue(scope=previous.scope, client_id=previous.client_id)
        refresh = _refresh_tokens.issue(scope=previous.scope, client_id=previous.client_id)
        logger.info(f"[TOKEN] Access token {redact(access.access_token)} refreshed for client {previous.client_id}")

        return _token_response({
            "access_token": access.access_token,
            "token_type": TOKEN_TYPE,
            "expires_in": access.expires_in,
            "refresh_token": refresh.refresh_token,
            "scope": access.scope,
        })

    raise ClientError("unsupported_grant_type", "Unsupported grant_type")
