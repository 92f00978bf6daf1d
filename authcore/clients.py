from __future__ import annotations

import logging
import secrets

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import InvalidClientError, InvalidScopeError, NotFoundError
from .models import Client, dedupe_scopes
from .repositories import ClientRepository

logger = logging.getLogger(__name__)


class ClientRegistry:
    """Client identity, redirect URI and scope checks."""

    def __init__(self, repository: ClientRepository):
        self._repository = repository

    def find(self, client_id: str) -> Client:
        client = self._repository.get(client_id) if client_id else None
        if client is None:
            raise NotFoundError(f'unknown client {client_id!r}')
        return client

    def authenticate(self, client_id: str, secret: str | None) -> bool:
        try:
            client = self.find(client_id)
        except NotFoundError:
            return False
        return self._check_secret(client, secret)

    def authenticate_client(self, client_id: str | None, secret: str | None, status_code: int = 400) -> Client:
        """Like ``authenticate`` but returns the client or raises ``invalid_client``."""
        try:
            client = self.find(client_id)
        except NotFoundError:
            logger.info('Rejected unknown client %r', client_id)
            raise InvalidClientError(description='Unknown client', status_code=status_code) from None
        if not self._check_secret(client, secret):
            logger.info('Rejected bad credentials for client %r', client_id)
            raise InvalidClientError(description='Client authentication failed', status_code=status_code)
        return client

    @staticmethod
    def _check_secret(client: Client, secret: str | None) -> bool:
        if client.is_public:
            return not secret
        if not secret:
            return False
        # werkzeug compares digests with hmac.compare_digest
        return check_password_hash(client.secret_hash, secret)

    @staticmethod
    def validate_redirect(client: Client, uri: str | None) -> bool:
        # Exact match only: no prefix, wildcard or normalization
        return bool(uri) and uri in client.redirect_uris

    @staticmethod
    def validate_scopes(client: Client, requested) -> list[str]:
        scopes = dedupe_scopes(requested)
        denied = [s for s in scopes if s not in client.allowed_scopes]
        if denied:
            raise InvalidScopeError(description=f'Scope not allowed for this client: {" ".join(denied)}')
        return scopes

    # ----------------------
    # Admin
    # ----------------------
    def register(self, client_id: str, name: str, redirect_uris, scopes,
                 secret: str | None = None, public: bool = False) -> tuple[Client, str | None]:
        """Create or replace a client. Returns the plaintext secret once (None for public clients)."""
        if not public and not secret:
            secret = secrets.token_urlsafe(32)
        client = Client(
            client_id=client_id,
            name=name,
            secret_hash=None if public else generate_password_hash(secret),
            redirect_uris=frozenset(redirect_uris),
            allowed_scopes=frozenset(scopes),
        )
        self._repository.save(client)
        logger.info('Registered %s client %r', 'public' if public else 'confidential', client_id)
        return client, None if public else secret
