"""Stateless access tokens and ID tokens, signed RS256 through the KeyManager."""
from __future__ import annotations

import base64
import hashlib
import secrets
import time

from authlib.jose.errors import JoseError
from authlib.oauth2.rfc6749.util import list_to_scope

from .errors import InvalidTokenError
from .keys import KeyManager
from .models import UserProfile

ACCESS_TOKEN_TTL = 3600
ID_TOKEN_TTL = 3600
ACCESS_TOKEN_TYP = 'at+jwt'


def _b64url_no_pad(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode().rstrip('=')


def at_hash(access_token: str) -> str:
    h = hashlib.sha256(access_token.encode()).digest()
    return _b64url_no_pad(h[:len(h) // 2])


def profile_claims(user: UserProfile, scopes) -> dict:
    """Claims released for ``user`` under ``scopes`` (shared by ID tokens and userinfo)."""
    claims = {}
    if 'profile' in scopes:
        claims['name'] = user.name or user.username
        claims['preferred_username'] = user.username
        if user.nickname:
            claims['nickname'] = user.nickname
        if user.picture:
            claims['picture'] = user.picture
    if 'email' in scopes and user.email:
        claims['email'] = user.email
        claims['email_verified'] = bool(user.email_verified)
    return claims


class TokenIssuer:
    def __init__(self, keys: KeyManager, issuer: str,
                 access_token_ttl: int = ACCESS_TOKEN_TTL, id_token_ttl: int = ID_TOKEN_TTL,
                 clock=time.time):
        self._keys = keys
        self.issuer = issuer
        self.access_token_ttl = int(access_token_ttl)
        self.id_token_ttl = int(id_token_ttl)
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def issue_access_token(self, user_id: str, client_id: str, scopes) -> str:
        now = self._now()
        payload = {
            'iss': self.issuer,
            'sub': str(user_id),
            'aud': client_id,
            'client_id': client_id,
            'scope': list_to_scope(list(scopes)) or '',
            'iat': now,
            'exp': now + self.access_token_ttl,
            'jti': secrets.token_urlsafe(16),
        }
        return self._keys.sign(payload, typ=ACCESS_TOKEN_TYP)

    def issue_id_token(self, user: UserProfile, client_id: str, scopes,
                       nonce: str | None = None, access_token: str | None = None) -> str:
        now = self._now()
        payload = {
            'iss': self.issuer,
            'sub': str(user.user_id),
            'aud': client_id,
            'iat': now,
            'exp': now + self.id_token_ttl,
        }
        payload.update(profile_claims(user, scopes))
        if nonce:
            payload['nonce'] = nonce
        if access_token:
            payload['at_hash'] = at_hash(access_token)
        return self._keys.sign(payload)

    # ----------------------
    # Verification
    # ----------------------
    def _decode(self, token: str, audience: str | None = None):
        options = {
            'iss': {'essential': True, 'value': self.issuer},
            'sub': {'essential': True},
            'exp': {'essential': True},
        }
        if audience is not None:
            options['aud'] = {'essential': True, 'value': audience}
        try:
            claims = self._keys.decode(token, claims_options=options)
            claims.validate(now=self._now())
        except (JoseError, ValueError) as exc:
            raise InvalidTokenError(str(exc)) from exc
        return claims

    def verify(self, token: str, audience: str | None = None) -> dict:
        """Verify signature, issuer, expiry (and audience when given); return the claims."""
        return dict(self._decode(token, audience))

    def verify_access_token(self, token: str) -> dict:
        claims = self._decode(token)
        if claims.header.get('typ') != ACCESS_TOKEN_TYP:
            raise InvalidTokenError('not an access token')
        return dict(claims)

    def verify_id_token(self, token: str, audience: str | None = None) -> dict:
        claims = self._decode(token, audience)
        if claims.header.get('typ') == ACCESS_TOKEN_TYP:
            raise InvalidTokenError('not an ID token')
        return dict(claims)
