"""OpenMemory connector - OAuth-protected MCP server.

It handles:
- OAuth 2.0 authorization code + PKCE flow for MCP clients (oauth/)
- Single-shot MCP requests via Streamable HTTP (/rpc)
- Long-lived MCP event streams (/stream, /stream-message)
- Discovery documents and a health probe

All OAuth state and sessions are held in memory and are lost on restart.
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware import Middleware

from config import Config, load_config
from errors import ConnectorError, connector_error_handler
from oauth.middleware import AuthGate, MCPOAuthMiddleware
from oauth.stores import AccessTokenStore, AuthorizationCodeStore, ClientRegistry, RefreshTokenStore
from sessions import SessionRegistry
from sse import SESSION_HEADER
from sweeper import ExpirySweeper
from tools import CONNECTOR_VERSION, MCP_PROTOCOL_VERSION, manifest_entries, mcp

logger = logging.getLogger(__name__)

RPC_PATH = "/rpc"


def create_app(config: Config = None, clock: Callable[[], float] = time.time) -> FastAPI:
    """Build the connector app with fresh stores."""
    config = config or load_config()
    server_url = config.base_url

    clients = ClientRegistry(clock=clock)
    codes = AuthorizationCodeStore(clock=clock)
    tokens = AccessTokenStore(clock=clock, ttl=config.access_token_ttl)
    refresh_tokens = RefreshTokenStore(clock=clock, ttl=config.refresh_token_ttl)
    sessions = SessionRegistry(clock=clock, max_age=config.session_max_age)
    gate = AuthGate(tokens, api_key=config.api_key, server_url=server_url, clock=clock)
    sweeper = ExpirySweeper(
        {
            "sessions": sessions,
            "access_tokens": tokens,
            "refresh_tokens": refresh_tokens,
            "authorization_codes": codes,
        },
        interval=config.sweep_interval,
    )

    # ============== Streamable HTTP MCP App ==============
    mcp_http_app = mcp.http_app(
        path="/",  # Route at root of mounted app
        transport="streamable-http",
        middleware=[Middleware(MCPOAuthMiddleware, gate=gate)],
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # FastMCP task group must be running before /rpc can serve requests
        async with mcp_http_app.lifespan(app):
            sweeper.start()
            try:
                yield
            finally:
                await sweeper.stop()

    app = FastAPI(
        title="OpenMemory Connector",
        description="MCP server for OpenMemory with OAuth 2.0 + PKCE",
        version=CONNECTOR_VERSION,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.clients = clients
    app.state.codes = codes
    app.state.tokens = tokens
    app.state.refresh_tokens = refresh_tokens
    app.state.sessions = sessions
    app.state.gate = gate
    app.state.sweeper = sweeper

    # The calling client runs in a third-party web origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", SESSION_HEADER],
        expose_headers=[SESSION_HEADER],
    )
    app.add_exception_handler(ConnectorError, connector_error_handler)

    app.mount(RPC_PATH, mcp_http_app)

    # ============== Include Routers ==============
    from oauth.endpoints import init_oauth_routes, router as oauth_router
    init_oauth_routes(server_url, clients, codes, tokens, refresh_tokens, manifest_extra=manifest_entries())
    app.include_router(oauth_router)

    from sse import init_sse_routes, router as sse_router
    init_sse_routes(gate, sessions, mcp)
    app.include_router(sse_router)

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        """Liveness probe."""
        return {
            "status": "ok",
            "connector": "claude-web",
            "version": CONNECTOR_VERSION,
            "protocol": MCP_PROTOCOL_VERSION,
            "active_sessions": len(sessions),
        }

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        return {
            "name": "OpenMemory Connector",
            "version": CONNECTOR_VERSION,
            "endpoints": {
                "rpc": f"{server_url}{RPC_PATH}",
                "stream": f"{server_url}/stream",
                "manifest": f"{server_url}/.well-known/mcp.json",
            },
            "api_key_required": bool(config.api_key),
        }

    logger.info(f"[STARTUP] SERVER_URL: {server_url}")
    logger.info(f"[STARTUP] Static API key configured: {bool(config.api_key)}")
    return app


def main():
    import uvicorn

    from logging_config import setup_logging

    config = load_config()
    setup_logging(config.log_level, config.log_format)
    app = create_app(config)
    logger.info(f"Starting connector on {config.host}:{config.port}")
    logger.info(f"Streamable HTTP endpoint: {RPC_PATH}")
    logger.info("Event stream endpoint: /stream")
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
