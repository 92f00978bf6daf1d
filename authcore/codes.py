from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from .errors import AlreadyConsumedError, ExpiredError, NotFoundError
from .models import AuthorizationCode, dedupe_scopes, utcnow
from .repositories import AuthorizationCodeRepository

logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=10)


class CodeStore:
    """Issues authorization codes and hands each one out exactly once."""

    def __init__(self, repository: AuthorizationCodeRepository, ttl: timedelta = CODE_TTL, clock=utcnow):
        self._repository = repository
        self._ttl = ttl
        self._clock = clock

    def issue(self, client_id: str, user_id: str, redirect_uri: str, scopes,
              code_challenge: str | None = None, code_challenge_method: str | None = None,
              nonce: str | None = None) -> AuthorizationCode:
        code = AuthorizationCode(
            code=secrets.token_urlsafe(32),
            client_id=client_id,
            user_id=str(user_id),
            redirect_uri=redirect_uri,
            scopes=dedupe_scopes(scopes),
            expires_at=self._clock() + self._ttl,
            code_challenge=code_challenge or None,
            code_challenge_method=(code_challenge_method or None) if code_challenge else None,
            nonce=nonce or None,
        )
        self._repository.add(code)
        return code

    def consume_once(self, code: str) -> AuthorizationCode:
        """Burn ``code`` and return it.

        The code is consumed before its expiry is checked, so a late
        exchange attempt still uses it up.
        """
        consumed = self._repository.mark_consumed(code) if code else None
        if consumed is None:
            stored = self._repository.get(code) if code else None
            if stored is not None:
                logger.warning('Authorization code replay for client %s', stored.client_id)
                raise AlreadyConsumedError('authorization code already used')
            raise NotFoundError('unknown authorization code')
        if consumed.is_expired(self._clock()):
            raise ExpiredError('authorization code expired')
        return consumed

    def purge_expired(self) -> int:
        count = self._repository.delete_expired(self._clock())
        if count:
            logger.info('Purged %d expired authorization codes', count)
        return count
