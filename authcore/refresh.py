"""Opaque refresh tokens with mandatory rotation and reuse detection.

Only the SHA-256 of a secret is stored. Every token belongs to a chain
(``chain_id``); rotating revokes the presented token and stores its
successor in one transaction. Presenting a token that is already revoked
means someone replayed it, so the whole chain is revoked and the holder
has to sign in again.
"""
from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from datetime import timedelta

from .errors import ExpiredError, NotFoundError, ReusedError
from .models import RefreshToken, dedupe_scopes, utcnow
from .repositories import RefreshTokenRepository

logger = logging.getLogger(__name__)

REFRESH_TOKEN_TTL = timedelta(days=30)


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()


class RefreshTokenStore:
    def __init__(self, repository: RefreshTokenRepository, ttl: timedelta = REFRESH_TOKEN_TTL, clock=utcnow):
        self._repository = repository
        self._ttl = ttl
        self._clock = clock

    def _new(self, user_id, client_id, scopes, chain_id: str, rotated_from: int | None) -> tuple[str, RefreshToken]:
        secret = secrets.token_urlsafe(32)
        now = self._clock()
        token = RefreshToken(
            token_hash=hash_secret(secret),
            user_id=str(user_id),
            client_id=client_id,
            scopes=dedupe_scopes(scopes),
            chain_id=chain_id,
            rotated_from=rotated_from,
            issued_at=now,
            expires_at=now + self._ttl,
        )
        return secret, token

    def issue(self, user_id: str, client_id: str, scopes,
              rotated_from: RefreshToken | None = None) -> tuple[str, RefreshToken]:
        """Store a new token and return ``(secret, token)``; the secret is never retrievable again."""
        chain_id = rotated_from.chain_id if rotated_from else uuid.uuid4().hex
        secret, token = self._new(
            user_id, client_id, scopes, chain_id, rotated_from.id if rotated_from else None,
        )
        return secret, self._repository.add(token)

    def find(self, secret: str) -> RefreshToken | None:
        if not secret:
            return None
        return self._repository.get_by_hash(hash_secret(secret))

    def rotate(self, old_secret: str, client_id: str | None = None) -> tuple[str, RefreshToken]:
        """Exchange ``old_secret`` for a successor.

        Raises ``NotFoundError`` (unknown, or issued to another client),
        ``ExpiredError``, or ``ReusedError`` after revoking the chain.
        """
        current = self.find(old_secret)
        if current is None or (client_id is not None and current.client_id != client_id):
            raise NotFoundError('unknown refresh token')
        if current.is_revoked():
            self._reuse_detected(current)
        now = self._clock()
        if current.is_expired(now):
            raise ExpiredError('refresh token expired')

        secret, successor = self._new(
            current.user_id, current.client_id, current.scopes, current.chain_id, current.id,
        )
        stored = self._repository.replace(current.id, successor, now)
        if stored is None:
            # Lost the conditional revoke: another request already rotated this token
            self._reuse_detected(current)
        return secret, stored

    def _reuse_detected(self, token: RefreshToken):
        count = self._repository.revoke_chain(token.chain_id, self._clock())
        logger.warning(
            'Refresh token reuse for client %s user %s: revoked %d token(s) in chain %s',
            token.client_id, token.user_id, count, token.chain_id,
        )
        raise ReusedError(token.chain_id)

    def revoke(self, secret: str, client_id: str | None = None) -> bool:
        token = self.find(secret)
        if token is None or (client_id is not None and token.client_id != client_id):
            return False
        return self._repository.mark_revoked(token.id, self._clock())

    def revoke_chain(self, chain_id: str) -> int:
        return self._repository.revoke_chain(chain_id, self._clock())

    def purge_expired(self) -> int:
        count = self._repository.delete_expired(self._clock())
        if count:
            logger.info('Purged %d expired refresh tokens', count)
        return count
