"""Event-stream transport endpoints (/stream, /stream-message).

GET /stream opens a long-lived event stream, registers a session for it and
runs one MCP server session over it. The session id is returned in the
Mcp-Session-Id response header, and the first event ("endpoint") tells the
client where to post its messages. POST /stream-message routes a JSON-RPC
message to the stream named by that id.
"""

import logging
import secrets
from contextlib import asynccontextmanager
from typing import Optional

import anyio
from fastapi import APIRouter, Request
from mcp import types
from mcp.shared.message import SessionMessage
from pydantic import TypeAdapter, ValidationError
from sse_starlette import EventSourceResponse
from starlette.responses import Response

from errors import AuthError, ClientError, InternalError, TransientError, error_response
from oauth.middleware import AuthGate
from sessions import SessionClosed, SessionRegistry

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
STREAM_PATH = "/stream"
MESSAGE_PATH = "/stream-message"

# JSONRPCMessage is a RootModel in mcp 1.x and a bare union in 2.x
_message_adapter = TypeAdapter(types.JSONRPCMessage)

# Router for event-stream endpoints
router = APIRouter(tags=["sse"])

# These will be set by init_sse_routes()
_gate: Optional[AuthGate] = None
_registry: Optional[SessionRegistry] = None
_mcp = None


def init_sse_routes(gate: AuthGate, registry: SessionRegistry, mcp_instance):
    """Initialize stream routes with required dependencies.

    Args:
        gate: Authentication gate applied to stream-open requests
        registry: Registry tracking the open streams
        mcp_instance: The FastMCP instance served over each stream

    Must be called before including the router in the app.
    """
    global _gate, _registry, _mcp
    _gate = gate
    _registry = registry
    _mcp = mcp_instance


class StreamTransport:
    """One event stream carrying one MCP session.

    Mirrors mcp.server.sse.SseServerTransport (connect_sse and
    handle_post_message) except that the session id is owned by the caller and
    sent in the Mcp-Session-Id header. Check it against the SDK transport when
    upgrading mcp.
    """

    def __init__(self, session_id: str, message_path: str = MESSAGE_PATH):
        self.session_id = session_id
        self.message_path = message_path
        self._read_stream_writer = None
        self._cancel_scope: Optional[anyio.CancelScope] = None

    def endpoint_uri(self, scope) -> str:
        root_path = scope.get("root_path", "")
        return f"{root_path}{self.message_path}?session_id={self.session_id}"

    @asynccontextmanager
    async def connect(self, scope, receive, send):
        """Start the event-stream response and yield (read_stream, write_stream).

        The response ends when the client disconnects or close() is called.
        """
        read_stream_writer, read_stream = anyio.create_memory_object_stream(0)
        write_stream, write_stream_reader = anyio.create_memory_object_stream(0)
        sse_stream_writer, sse_stream_reader = anyio.create_memory_object_stream(0)
        self._read_stream_writer = read_stream_writer

        async def sse_writer():
            async with sse_stream_writer, write_stream_reader:
                await sse_stream_writer.send({"event": "endpoint", "data": self.endpoint_uri(scope)})
                async for session_message in write_stream_reader:
                    await sse_stream_writer.send({
                        "event": "message",
                        "data": session_message.message.model_dump_json(by_alias=True, exclude_none=True),
                    })

        async def response_wrapper():
            response = EventSourceResponse(
                content=sse_stream_reader,
                data_sender_callable=sse_writer,
                headers={SESSION_HEADER: self.session_id},
            )
            await response(scope, receive, send)
            await read_stream_writer.aclose()
            await write_stream_reader.aclose()

        async with anyio.create_task_group() as tg:
            self._cancel_scope = tg.cancel_scope
            tg.start_soon(response_wrapper)
            try:
                yield read_stream, write_stream
            finally:
                self._read_stream_writer = None

    async def deliver(self, payload: bytes) -> None:
        """Parse a JSON-RPC message and hand it to the session's server.

        Raises:
            ValidationError: payload is not a JSON-RPC message.
            SessionClosed: the stream is not connected or has ended.
        """
        message = _message_adapter.validate_json(payload)
        writer = self._read_stream_writer
        if writer is None:
            raise SessionClosed(self.session_id)
        try:
            await writer.send(SessionMessage(message))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            raise SessionClosed(self.session_id)

    def close(self) -> None:
        """Cancel the stream; the connection is dropped."""
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()


class StreamEndpoint:
    """ASGI app for GET /stream; it owns the response for the whole session."""

    async def __call__(self, scope, receive, send):
        request = Request(scope, receive)
        try:
            identity = _gate.require(request)
        except AuthError as e:
            logger.info(f"[SSE] Stream rejected: {e.description}")
            await error_response(e)(scope, receive, send)
            return

        session_id = secrets.token_hex(16)
        transport = StreamTransport(session_id)
        _registry.open(session_id, transport)
        logger.info(f"[SSE] Connection established ({identity.kind.value})")

        try:
            async with transport.connect(scope, receive, send) as (read_stream, write_stream):
                server = _mcp._mcp_server
                await server.run(read_stream, write_stream, server.create_initialization_options())
        finally:
            _registry.close(session_id)


router.add_route(STREAM_PATH, StreamEndpoint(), methods=["GET"])


@router.post(MESSAGE_PATH)
async def stream_message(request: Request) -> Response:
    """Route a client message to its open stream."""
    session_id = request.headers.get(SESSION_HEADER) or request.query_params.get("session_id")
    if not session_id:
        raise ClientError("invalid_session", "Missing session id")
    if _registry.get(session_id) is None:
        raise ClientError("invalid_session", "Invalid or expired session")

    body = await request.body()
    try:
        delivered = await _registry.route(session_id, body)
    except ValidationError:
        raise TransientError("invalid_request", "Could not parse message")
    except Exception:
        logger.exception(f"[SSE] Message handling failed for session {session_id}")
        raise InternalError("server_error", "Failed to process message")

    if not delivered:
        raise ClientError("invalid_session", "Invalid or expired session")
    return Response("Accepted", status_code=202)
