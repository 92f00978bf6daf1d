from __future__ import annotations

from authlib.oauth2 import OAuth2Error
from authlib.oauth2.rfc6749.errors import (  # noqa: F401 re-exported for callers
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)


# ----------------------
# Storage outcomes
# ----------------------
class AuthCoreError(Exception):
    """Base class for failures raised by the stores and the key manager."""


class NotFoundError(AuthCoreError):
    pass


class AlreadyConsumedError(AuthCoreError):
    pass


class ExpiredError(AuthCoreError):
    pass


class ReusedError(AuthCoreError):
    """A rotated-away refresh token was presented again; its chain is revoked."""

    def __init__(self, chain_id: str):
        super().__init__(f'refresh token reuse detected in chain {chain_id}')
        self.chain_id = chain_id


class InvalidTokenError(AuthCoreError):
    """A bearer token failed signature, type or claim validation."""


# ----------------------
# OAuth errors without an Authlib counterpart
# ----------------------
class ServerError(OAuth2Error):
    error = 'server_error'
    status_code = 500


class LoginRequiredError(OAuth2Error):
    error = 'login_required'
