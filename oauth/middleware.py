"""Bearer authentication for the protocol endpoints.

Credentials are checked in this order:
- an access token issued by /token (and not yet expired)
- the static API key, when one is configured

Policy: when no static API key is configured, unauthenticated requests are
let through as anonymous. When a key is configured, they get a 401.
"""

import hmac
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from errors import AuthError, error_response
from logging_config import redact
from oauth.models import DEFAULT_SCOPE, STATIC_SECRET_TTL
from oauth.stores import AccessTokenStore

logger = logging.getLogger(__name__)


class CredentialKind(str, Enum):
    ACCESS_TOKEN = "access_token"
    STATIC_SECRET = "static_secret"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Identity:
    """Who a request was authenticated as."""

    kind: CredentialKind
    scope: str
    expires_at: Optional[float] = None
    client_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.kind is not CredentialKind.ANONYMOUS


def extract_bearer(authorization_header: Optional[str]) -> Optional[str]:
    """Return the credential from "Bearer <value>", or None if absent/malformed."""
    if not authorization_header:
        return None
    parts = authorization_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    value = parts[1].strip()
    return value or None


class AuthGate:
    """Maps an HTTP request to an Identity, or rejects it."""

    def __init__(
        self,
        tokens: AccessTokenStore,
        api_key: Optional[str] = None,
        server_url: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self.tokens = tokens
        self.api_key = api_key or None
        self.server_url = server_url
        self._clock = clock

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.server_url}/.well-known/oauth-protected-resource"

    def authenticate(self, request: Request) -> Optional[Identity]:
        """Resolve the request's bearer credential; None when unauthenticated."""
        value = extract_bearer(request.headers.get("Authorization"))
        if value is None:
            return None

        token = self.tokens.lookup(value)
        if token is not None:
            return Identity(
                kind=CredentialKind.ACCESS_TOKEN,
                scope=token.scope,
                expires_at=token.expires_at,
                client_id=token.client_id,
            )

        if self.api_key and hmac.compare_digest(value.encode(), self.api_key.encode()):
            return Identity(
                kind=CredentialKind.STATIC_SECRET,
                scope=DEFAULT_SCOPE,
                expires_at=self._clock() + STATIC_SECRET_TTL,
            )

        logger.info(f"[AUTH] Unknown bearer credential {redact(value)}")
        return None

    def require(self, request: Request) -> Identity:
        """Apply the access policy.

        Raises:
            AuthError: when unauthenticated and a static API key is configured.
        """
        identity = self.authenticate(request)
        if identity is not None:
            return identity
        if self.api_key:
            raise AuthError("Authentication required", resource_metadata_url=self.resource_metadata_url)
        return Identity(kind=CredentialKind.ANONYMOUS, scope=DEFAULT_SCOPE)


class MCPOAuthMiddleware(BaseHTTPMiddleware):
    """Middleware guarding the mounted Streamable HTTP app."""

    def __init__(self, app, gate: AuthGate):
        super().__init__(app)
        self.gate = gate

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)
        try:
            identity = self.gate.require(request)
        except AuthError as e:
            logger.info(f"[AUTH] RPC request rejected: {e.description}")
            return error_response(e)

        request.state.identity = identity
        logger.debug(f"[AUTH] RPC request authorized ({identity.kind.value})")
        return await call_next(request)
