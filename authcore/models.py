from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dedupe_scopes(scopes) -> list[str]:
    """Normalize a scope iterable, keeping the first occurrence order."""
    seen = []
    for s in scopes or ():
        if s and s not in seen:
            seen.append(s)
    return seen


@dataclass(frozen=True)
class Client:
    client_id: str
    name: str
    secret_hash: str | None = None
    redirect_uris: frozenset[str] = frozenset()
    allowed_scopes: frozenset[str] = frozenset()

    @property
    def is_public(self) -> bool:
        # Public clients (no secret) authenticate with client_id alone and must use PKCE
        return self.secret_hash is None


@dataclass
class AuthorizationCode:
    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scopes: list[str]
    expires_at: datetime
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    nonce: str | None = None
    consumed: bool = False

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass
class RefreshToken:
    token_hash: str
    user_id: str
    client_id: str
    scopes: list[str]
    chain_id: str
    issued_at: datetime
    expires_at: datetime
    id: int | None = None
    rotated_from: int | None = None
    revoked_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_active(self, now: datetime | None = None) -> bool:
        return not self.is_revoked() and not self.is_expired(now)


@dataclass(frozen=True)
class UserProfile:
    user_id: str
    username: str
    name: str | None = None
    nickname: str | None = None
    picture: str | None = None
    email: str | None = None
    email_verified: bool = False


@dataclass
class TokenResponse:
    access_token: str
    expires_in: int
    token_type: str = 'Bearer'
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None

    def as_dict(self) -> dict:
        data = {
            'access_token': self.access_token,
            'token_type': self.token_type,
            'expires_in': self.expires_in,
        }
        for key in ('refresh_token', 'id_token', 'scope'):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data
