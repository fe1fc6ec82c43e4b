"""Error taxonomy for the connector's HTTP surface.

Every error carries a short machine-readable ``error`` string and the HTTP
status it maps to. None of them is retried internally; recovery is left to
the calling client.
"""

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ConnectorError(Exception):
    """Base class for errors rendered as ``{"error": ...}`` JSON bodies."""

    status_code = 500
    default_error = "server_error"

    def __init__(self, error: Optional[str] = None, description: Optional[str] = None, status_code: Optional[int] = None):
        self.error = error or self.default_error
        self.description = description
        if status_code is not None:
            self.status_code = status_code
        super().__init__(description or self.error)

    @property
    def headers(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class ClientError(ConnectorError):
    """Invalid input: unknown client, bad grant, failed PKCE, unknown session."""

    status_code = 400
    default_error = "invalid_request"


class AuthError(ConnectorError):
    """Missing, invalid or expired bearer credential."""

    status_code = 401
    default_error = "unauthorized"

    def __init__(self, description: Optional[str] = None, resource_metadata_url: Optional[str] = None, status_code: int = 401):
        super().__init__(
            error="unauthorized" if status_code == 401 else "forbidden",
            description=description,
            status_code=status_code,
        )
        self.resource_metadata_url = resource_metadata_url

    @property
    def headers(self) -> dict:
        if self.status_code != 401 or not self.resource_metadata_url:
            return {}
        return {"WWW-Authenticate": f'Bearer resource_metadata="{self.resource_metadata_url}"'}


class TransientError(ConnectorError):
    """Malformed request body; safe to retry once the input is fixed."""

    status_code = 400
    default_error = "invalid_request"


class InternalError(ConnectorError):
    """Unexpected failure while routing to a transport."""

    status_code = 500
    default_error = "server_error"


def error_response(exc: ConnectorError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=exc.headers)


async def connector_error_handler(request: Request, exc: ConnectorError) -> JSONResponse:
    """FastAPI exception handler for the ConnectorError hierarchy."""
    if exc.status_code >= 500:
        logger.error(f"[HTTP] {request.method} {request.url.path} failed: {exc.error}")
    else:
        logger.info(f"[HTTP] {request.method} {request.url.path} -> {exc.status_code} {exc.error}")
    return error_response(exc)
