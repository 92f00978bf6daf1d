"""Authorization and token endpoints.

``GrantHandler`` is the only object the HTTP layer talks to. Each public
``create_*_response`` method turns a request into an ``EndpointResponse``:
protocol failures become OAuth error envelopes and anything unexpected
becomes ``server_error``, so no exception reaches the caller.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Mapping

from authlib.common.urls import add_params_to_uri
from authlib.oauth2 import OAuth2Error
from authlib.oauth2.rfc6749.util import extract_basic_authorization, list_to_scope, scope_to_list

from . import pkce
from .clients import ClientRegistry
from .codes import CodeStore
from .errors import (
    AlreadyConsumedError,
    ExpiredError,
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidTokenError,
    LoginRequiredError,
    NotFoundError,
    ReusedError,
    ServerError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from .models import TokenResponse, UserProfile
from .refresh import RefreshTokenStore
from .repositories import UserRepository
from .tokens import TokenIssuer, profile_claims

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = [('Cache-Control', 'no-store'), ('Pragma', 'no-cache')]


class GrantState(enum.Enum):
    RECEIVED = 'received'
    CLIENT_VALIDATED = 'client_validated'
    GRANT_DISPATCHED = 'grant_dispatched'
    CODE_EXCHANGED = 'code_exchanged'
    TOKEN_REFRESHED = 'token_refreshed'
    RESPONDED = 'responded'
    REJECTED = 'rejected'


@dataclass
class EndpointResponse:
    status_code: int
    body: dict = field(default_factory=dict)
    headers: list = field(default_factory=list)
    state: GrantState | None = None

    @property
    def location(self) -> str | None:
        return next((v for k, v in self.headers if k == 'Location'), None)


class _TokenRequest:
    """Per-request context: parameters, client credentials, state and storage deadline."""

    def __init__(self, params: Mapping[str, str], authorization: str | None, deadline: float | None):
        self.params = params
        self.authorization = authorization
        self.deadline = deadline
        self.state = GrantState.RECEIVED
        self.grant_type = params.get('grant_type')

    def transition(self, state: GrantState):
        logger.debug('token request %s: %s -> %s', self.grant_type, self.state.value, state.value)
        self.state = state

    def require(self, name: str) -> str:
        value = self.params.get(name)
        if not value:
            raise InvalidRequestError(description=f'Missing {name!r} in request')
        return value

    def checkpoint(self):
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise ServerError(description='Storage deadline exceeded')


class GrantHandler:
    GRANT_TYPES = ('authorization_code', 'refresh_token')

    def __init__(self, clients: ClientRegistry, codes: CodeStore, refresh_tokens: RefreshTokenStore,
                 issuer: TokenIssuer, users: UserRepository, storage_deadline: float | None = None):
        self.clients = clients
        self.codes = codes
        self.refresh_tokens = refresh_tokens
        self.issuer = issuer
        self.users = users
        self.storage_deadline = storage_deadline

    # ----------------------
    # Token endpoint
    # ----------------------
    def create_token_response(self, params: Mapping[str, str], authorization: str | None = None,
                              deadline: float | None = None) -> EndpointResponse:
        """Handle a token request.

        ``deadline`` is a ``time.monotonic()`` value after which no further
        storage call is started; it defaults to now + ``storage_deadline``.
        """
        if deadline is None and self.storage_deadline is not None:
            deadline = time.monotonic() + self.storage_deadline
        request = _TokenRequest(params, authorization, deadline)
        try:
            token = self._dispatch(request)
        except OAuth2Error as error:
            request.transition(GrantState.REJECTED)
            logger.info('Token request rejected: %s (%s)', error.error, error.description)
            return self._error_response(error, request.state)
        except Exception:
            request.transition(GrantState.REJECTED)
            logger.exception('Token request failed')
            return self._error_response(ServerError(description='Internal error'), request.state)
        request.transition(GrantState.RESPONDED)
        return EndpointResponse(200, token.as_dict(), list(NO_STORE_HEADERS), request.state)

    def _dispatch(self, request: _TokenRequest) -> TokenResponse:
        grant_type = request.require('grant_type')
        if grant_type not in self.GRANT_TYPES:
            raise UnsupportedGrantTypeError(grant_type)
        client = self._authenticate(request)
        request.transition(GrantState.CLIENT_VALIDATED)
        request.transition(GrantState.GRANT_DISPATCHED)
        if grant_type == 'authorization_code':
            return self.exchange_authorization_code(request, client)
        return self.refresh(request, client)

    def _authenticate(self, request: _TokenRequest):
        client_id, client_secret = extract_basic_authorization({'Authorization': request.authorization or ''})
        if client_id:
            status_code = 401
        else:
            client_id = request.params.get('client_id')
            client_secret = request.params.get('client_secret')
            status_code = 400
        if not client_id:
            raise InvalidRequestError(description='Missing client credentials')
        request.checkpoint()
        return self.clients.authenticate_client(client_id, client_secret, status_code=status_code)

    def exchange_authorization_code(self, request: _TokenRequest, client) -> TokenResponse:
        code_value = request.require('code')
        redirect_uri = request.require('redirect_uri')
        request.checkpoint()
        try:
            code = self.codes.consume_once(code_value)
        except NotFoundError:
            raise InvalidGrantError(description='Invalid authorization code') from None
        except AlreadyConsumedError:
            raise InvalidGrantError(description='Authorization code has already been used') from None
        except ExpiredError:
            raise InvalidGrantError(description='Authorization code has expired') from None

        # Codes are bound to the client and redirect URI they were issued for
        if code.client_id != client.client_id:
            logger.warning('Client %s presented a code issued to %s', client.client_id, code.client_id)
            raise InvalidGrantError(description='Authorization code was issued to another client')
        if code.redirect_uri != redirect_uri:
            raise InvalidGrantError(description='redirect_uri does not match the authorization request')

        if code.code_challenge:
            verifier = request.params.get('code_verifier')
            if not verifier:
                raise InvalidGrantError(description='Missing code_verifier')
            if not pkce.verify(code.code_challenge_method, code.code_challenge, verifier):
                raise InvalidGrantError(description='Invalid code_verifier')

        request.transition(GrantState.CODE_EXCHANGED)
        request.checkpoint()
        secret, _ = self.refresh_tokens.issue(code.user_id, client.client_id, code.scopes)
        return self._token_response(client.client_id, code.user_id, code.scopes, secret, request, nonce=code.nonce)

    def refresh(self, request: _TokenRequest, client) -> TokenResponse:
        old_secret = request.require('refresh_token')
        request.checkpoint()
        try:
            secret, token = self.refresh_tokens.rotate(old_secret, client_id=client.client_id)
        except ReusedError:
            raise InvalidGrantError(description='Refresh token has already been used') from None
        except ExpiredError:
            raise InvalidGrantError(description='Refresh token has expired') from None
        except NotFoundError:
            raise InvalidGrantError(description='Invalid refresh token') from None
        request.transition(GrantState.TOKEN_REFRESHED)
        return self._token_response(client.client_id, token.user_id, token.scopes, secret, request)

    def _token_response(self, client_id: str, user_id: str, scopes, refresh_secret: str,
                        request: _TokenRequest, nonce: str | None = None) -> TokenResponse:
        access_token = self.issuer.issue_access_token(user_id, client_id, scopes)
        id_token = None
        if 'openid' in scopes:
            user = self._load_user(user_id, request)
            id_token = self.issuer.issue_id_token(user, client_id, scopes, nonce=nonce, access_token=access_token)
        return TokenResponse(
            access_token=access_token,
            expires_in=self.issuer.access_token_ttl,
            refresh_token=refresh_secret,
            id_token=id_token,
            scope=list_to_scope(list(scopes)),
        )

    def _load_user(self, user_id: str, request: _TokenRequest) -> UserProfile:
        request.checkpoint()
        user = self.users.get(user_id)
        if user is None:
            raise InvalidGrantError(description='Resource owner no longer exists')
        return user

    # ----------------------
    # Authorization endpoint
    # ----------------------
    def create_authorization_response(self, params: Mapping[str, str], user_id: str | None) -> EndpointResponse:
        """Issue a code for an authenticated resource owner.

        Until the client and redirect URI are verified, errors are answered
        directly (400/401); after that they are sent back to the client's
        redirect URI together with ``state``.
        """
        try:
            return self._authorize(params, user_id)
        except OAuth2Error as error:
            logger.info('Authorization request rejected: %s (%s)', error.error, error.description)
            return self._error_response(error, GrantState.REJECTED)
        except Exception:
            logger.exception('Authorization request failed')
            return self._error_response(ServerError(description='Internal error'), GrantState.REJECTED)

    def _authorize(self, params: Mapping[str, str], user_id: str | None) -> EndpointResponse:
        client_id = params.get('client_id')
        if not client_id:
            raise InvalidRequestError(description="Missing 'client_id' in request")
        try:
            client = self.clients.find(client_id)
        except NotFoundError:
            raise InvalidClientError(description='Unknown client') from None
        redirect_uri = params.get('redirect_uri')
        if not self.clients.validate_redirect(client, redirect_uri):
            raise InvalidRequestError(description='redirect_uri is not registered for this client')

        state = params.get('state')
        try:
            code = self._issue_code(client, redirect_uri, params, user_id)
        except OAuth2Error as error:
            error.redirect_uri = redirect_uri
            error.state = state
            raise

        query = [('code', code.code)]
        if state:
            query.append(('state', state))
        return EndpointResponse(302, {}, [('Location', add_params_to_uri(redirect_uri, query))], GrantState.RESPONDED)

    def _issue_code(self, client, redirect_uri: str, params: Mapping[str, str], user_id: str | None):
        response_type = params.get('response_type')
        if response_type != 'code':
            raise UnsupportedResponseTypeError(response_type or '')
        if user_id is None:
            raise LoginRequiredError(description='The resource owner is not signed in')
        scopes = self.clients.validate_scopes(client, scope_to_list(params.get('scope')) or [])

        challenge = params.get('code_challenge')
        method = params.get('code_challenge_method')
        if challenge:
            method = method or 'plain'
            if method not in pkce.SUPPORTED_METHODS:
                raise InvalidRequestError(description='Unsupported code_challenge_method')
        elif method:
            raise InvalidRequestError(description='code_challenge_method given without code_challenge')
        elif client.is_public:
            raise InvalidRequestError(description='PKCE is required for public clients')

        return self.codes.issue(
            client.client_id, user_id, redirect_uri, scopes,
            code_challenge=challenge, code_challenge_method=method, nonce=params.get('nonce'),
        )

    # ----------------------
    # Revocation & userinfo
    # ----------------------
    def create_revocation_response(self, params: Mapping[str, str], authorization: str | None = None) -> EndpointResponse:
        """RFC 7009: answers 200 whether or not the token was known."""
        request = _TokenRequest(params, authorization, None)
        try:
            client = self._authenticate(request)
            token = request.require('token')
            if self.refresh_tokens.revoke(token, client_id=client.client_id):
                logger.info('Client %s revoked a refresh token', client.client_id)
        except OAuth2Error as error:
            return self._error_response(error, GrantState.REJECTED)
        except Exception:
            logger.exception('Revocation request failed')
            return self._error_response(ServerError(description='Internal error'), GrantState.REJECTED)
        return EndpointResponse(200, {}, list(NO_STORE_HEADERS), GrantState.RESPONDED)

    def userinfo(self, access_token: str) -> dict:
        """Claims about the token's subject, filtered by the token's scope.

        Raises ``InvalidTokenError`` when the token is invalid or the user is gone.
        """
        return self.userinfo_for(self.issuer.verify_access_token(access_token))

    def userinfo_for(self, claims: Mapping) -> dict:
        """Same as ``userinfo`` for access token claims that were already verified."""
        scopes = scope_to_list(claims.get('scope')) or []
        user = self.users.get(claims['sub'])
        if user is None:
            raise InvalidTokenError('subject no longer exists')
        data = {'sub': str(user.user_id)}
        data.update(profile_claims(user, scopes))
        return data

    # ----------------------
    # Errors
    # ----------------------
    @staticmethod
    def _error_response(error: OAuth2Error, state: GrantState) -> EndpointResponse:
        body = dict(error.get_body())
        if error.redirect_uri:
            location = add_params_to_uri(error.redirect_uri, list(body.items()))
            return EndpointResponse(302, body, [('Location', location)], state)
        headers = list(NO_STORE_HEADERS)
        if error.status_code == 401:
            headers.append(('WWW-Authenticate', 'Basic realm="token"'))
        return EndpointResponse(error.status_code, body, headers, state)
