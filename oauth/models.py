"""OAuth entities held by the in-memory stores.

All timestamps are float seconds as returned by the store clock.
Entities are frozen; stores hand them out without exposing their maps.
"""

from dataclasses import dataclass, field
from typing import Optional

TOKEN_TYPE = "Bearer"
DEFAULT_SCOPE = "memory:read memory:write"
SUPPORTED_SCOPES = {
    "memory:read": "Read memories",
    "memory:write": "Store and modify memories",
}

AUTHORIZATION_CODE_TTL = 10 * 60
ACCESS_TOKEN_TTL = 3600
REFRESH_TOKEN_TTL = 30 * 24 * 60 * 60
STATIC_SECRET_TTL = 24 * 60 * 60


@dataclass(frozen=True)
class OAuthClient:
    client_id: str
    name: str
    redirect_uris: frozenset
    created_at: float
    client_secret: Optional[str] = None

    def allows_redirect(self, redirect_uri: str) -> bool:
        return redirect_uri in self.redirect_uris


@dataclass(frozen=True)
class AuthorizationCode:
    code: str
    client_id: str
    redirect_uri: str
    scope: str
    expires_at: float
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    user_id: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class AccessToken:
    access_token: str
    expires_in: int
    scope: str
    created_at: float
    client_id: Optional[str] = None
    token_type: str = field(default=TOKEN_TYPE)

    @property
    def expires_at(self) -> float:
        return self.created_at + self.expires_in

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class RefreshToken:
    refresh_token: str
    scope: str
    created_at: float
    expires_in: int
    client_id: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        return now >= self.created_at + self.expires_in
