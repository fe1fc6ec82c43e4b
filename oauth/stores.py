"""In-memory stores for OAuth state.

Each store owns one map behind the ``Store`` interface so a durable backend
can be swapped in without touching the endpoints. State is ephemeral: a
process restart forgets every client registered at runtime, every code and
every token.
"""

import logging
import secrets
import threading
import time
from typing import Callable, Generic, Iterable, Optional, Protocol, TypeVar

from errors import ClientError
from logging_config import redact
from oauth.models import (
    ACCESS_TOKEN_TTL,
    AUTHORIZATION_CODE_TTL,
    DEFAULT_SCOPE,
    REFRESH_TOKEN_TTL,
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
)
from oauth.pkce import verify_pkce

logger = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], float]


class Store(Protocol[V]):
    """Key/value interface the OAuth stores are written against."""

    def get(self, key: str) -> Optional[V]: ...

    def put(self, key: str, value: V) -> None: ...

    def delete(self, key: str) -> None: ...

    def pop(self, key: str) -> Optional[V]: ...

    def items(self) -> list: ...

    def __len__(self) -> int: ...


class InMemoryStore(Generic[V]):
    """Dict-backed store; every operation holds the lock."""

    def __init__(self):
        self._data: dict[str, V] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: V) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def pop(self, key: str) -> Optional[V]:
        """Atomically fetch and remove an entry."""
        with self._lock:
            return self._data.pop(key, None)

    def items(self) -> list:
        with self._lock:
            return list(self._data.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


def _sweep(store: Store, expired: Callable[[object], bool]) -> int:
    removed = 0
    for key, value in store.items():
        if expired(value):
            store.delete(key)
            removed += 1
    return removed


# ============== Client Registry ==============

class ClientRegistry:
    """Registered OAuth clients keyed by client_id."""

    def __init__(self, store: Store = None, clock: Clock = time.time):
        self._store = store if store is not None else InMemoryStore()
        self._clock = clock

    def register(
        self,
        client_id: str,
        name: str,
        redirect_uris: Iterable[str],
        client_secret: Optional[str] = None,
    ) -> OAuthClient:
        """Insert or replace a client descriptor."""
        client = OAuthClient(
            client_id=client_id,
            name=name,
            redirect_uris=frozenset(redirect_uris),
            created_at=self._clock(),
            client_secret=client_secret,
        )
        self._store.put(client_id, client)
        logger.info(f"[OAUTH] Registered OAuth client: {name} ({client_id})")
        return client

    def get(self, client_id: str) -> Optional[OAuthClient]:
        return self._store.get(client_id)

    def validate(self, client_id: Optional[str], redirect_uri: Optional[str] = None) -> Optional[OAuthClient]:
        """Return the client, or None if unknown or the redirect URI is not allowed."""
        if not client_id:
            return None
        client = self._store.get(client_id)
        if client is None:
            return None
        if redirect_uri and not client.allows_redirect(redirect_uri):
            return None
        return client

    def __len__(self) -> int:
        return len(self._store)


# ============== Authorization Codes ==============

class AuthorizationCodeStore:
    """Short-lived, single-use authorization codes."""

    def __init__(self, store: Store = None, clock: Clock = time.time, ttl: int = AUTHORIZATION_CODE_TTL):
        self._store = store if store is not None else InMemoryStore()
        self._clock = clock
        self.ttl = ttl

    def issue(
        self,
        client_id: str,
        redirect_uri: str,
        scope: Optional[str] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> AuthorizationCode:
        if code_challenge and not code_challenge_method:
            code_challenge_method = "S256"
        auth_code = AuthorizationCode(
            code=secrets.token_hex(16),
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope or DEFAULT_SCOPE,
            expires_at=self._clock() + self.ttl,
            code_challenge=code_challenge or None,
            code_challenge_method=code_challenge_method if code_challenge else None,
            user_id=user_id,
        )
        self._store.put(auth_code.code, auth_code)
        return auth_code

    def redeem(
        self,
        code: Optional[str],
        client_id: Optional[str],
        redirect_uri: Optional[str],
        code_verifier: Optional[str] = None,
    ) -> AuthorizationCode:
        """Consume a code and return it if the exchange is valid.

        The code is removed before any check runs, so a code can never be
        presented twice whatever the outcome of the first attempt.

        Raises:
            ClientError: invalid_grant for unknown, expired, mismatched or
                PKCE-failing codes.
        """
        auth_code = self._store.pop(code) if code else None
        if auth_code is None or auth_code.is_expired(self._clock()):
            raise ClientError("invalid_grant", "Invalid or expired authorization code")

        if auth_code.client_id != client_id or auth_code.redirect_uri != redirect_uri:
            logger.info(f"[TOKEN] Client mismatch for code {redact(auth_code.code)}")
            raise ClientError("invalid_grant", "Client mismatch")

        if auth_code.code_challenge:
            if not code_verifier:
                raise ClientError("invalid_grant", "code_verifier is required")
            if not verify_pkce(code_verifier, auth_code.code_challenge, auth_code.code_challenge_method or "S256"):
                logger.info(f"[TOKEN] PKCE verification failed for client {client_id}")
                raise ClientError("invalid_grant", "Invalid code_verifier")

        return auth_code

    def sweep(self) -> int:
        now = self._clock()
        return _sweep(self._store, lambda c: c.is_expired(now))

    def __len__(self) -> int:
        return len(self._store)


# ============== Access Tokens ==============

class AccessTokenStore:
    """Bearer tokens minted by the token endpoint."""

    def __init__(self, store: Store = None, clock: Clock = time.time, ttl: int = ACCESS_TOKEN_TTL):
        self._store = store if store is not None else InMemoryStore()
        self._clock = clock
        self.ttl = ttl

    def issue(self, scope: str, client_id: Optional[str] = None, expires_in: Optional[int] = None) -> AccessToken:
        token = AccessToken(
            access_token=secrets.token_hex(32),
            expires_in=expires_in or self.ttl,
            scope=scope,
            created_at=self._clock(),
            client_id=client_id,
        )
        self._store.put(token.access_token, token)
        return token

    def lookup(self, value: str) -> Optional[AccessToken]:
        """Return a live token; an expired one is evicted on the spot."""
        token = self._store.get(value)
        if token is None:
            return None
        if token.is_expired(self._clock()):
            self._store.delete(value)
            logger.info(f"[AUTH] Evicted expired access token {redact(value)}")
            return None
        return token

    def sweep(self) -> int:
        now = self._clock()
        return _sweep(self._store, lambda t: t.is_expired(now))

    def __len__(self) -> int:
        return len(self._store)


# ============== Refresh Tokens ==============

class RefreshTokenStore:
    """Refresh tokens returned alongside access tokens; rotated on use."""

    def __init__(self, store: Store = None, clock: Clock = time.time, ttl: int = REFRESH_TOKEN_TTL):
        self._store = store if store is not None else InMemoryStore()
        self._clock = clock
        self.ttl = ttl

    def issue(self, scope: str, client_id: Optional[str] = None) -> RefreshToken:
        token = RefreshToken(
            refresh_token=secrets.token_urlsafe(32),
            scope=scope,
            created_at=self._clock(),
            expires_in=self.ttl,
            client_id=client_id,
        )
        self._store.put(token.refresh_token, token)
        return token

    def rotate(self, value: Optional[str], client_id: Optional[str] = None) -> RefreshToken:
        """Consume a refresh token and return the record it carried.

        Raises:
            ClientError: invalid_grant when the token is unknown, expired or
                was issued to another client.
        """
        token = self._store.pop(value) if value else None
        if token is None or token.is_expired(self._clock()):
            raise ClientError("invalid_grant", "Invalid or expired refresh token")
        if client_id and token.client_id and client_id != token.client_id:
            raise ClientError("invalid_grant", "Client mismatch")
        return token

    def sweep(self) -> int:
        now = self._clock()
        return _sweep(self._store, lambda t: t.is_expired(now))

    def __len__(self) -> int:
        return len(self._store)
