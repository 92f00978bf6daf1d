"""Flask binding for the authorization core.

The views only translate between HTTP and ``GrantHandler``; all protocol
decisions live in ``authcore.grants``. ``require_oauth`` protects resource
routes with the access tokens this server issues.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from authlib.common.urls import add_params_to_uri
from authlib.integrations.flask_oauth2 import ResourceProtector, current_token
from authlib.oauth2.rfc6750 import BearerTokenValidator
from authlib.oauth2.rfc6750 import InvalidTokenError as InvalidBearerTokenError
from flask import Blueprint, Flask, current_app, jsonify, redirect, request, session

from .clients import ClientRegistry
from .codes import CodeStore
from .config import Settings
from .db import init_db, make_engine, make_session_factory
from .errors import InvalidTokenError
from .grants import EndpointResponse, GrantHandler
from .keys import KeyManager
from .refresh import RefreshTokenStore
from .repositories import (
    SqlAuthorizationCodeRepository,
    SqlClientRepository,
    SqlRefreshTokenRepository,
    SqlUserRepository,
)
from .tokens import TokenIssuer

logger = logging.getLogger(__name__)

bp = Blueprint('oauth', __name__)

CLAIMS_SUPPORTED = [
    'sub', 'iss', 'aud', 'exp', 'iat', 'nonce', 'at_hash',
    'name', 'nickname', 'preferred_username', 'picture', 'email', 'email_verified',
]


def session_user(req) -> str | None:
    """Default resource-owner check: a user id placed in the Flask session by the login app."""
    user_id = session.get('user_id')
    return str(user_id) if user_id is not None else None


def _state():
    return current_app.extensions['authcore']


def _render(resp: EndpointResponse):
    if resp.status_code == 302:
        return redirect(resp.location, code=302)
    return jsonify(resp.body), resp.status_code, resp.headers


class AccessToken(dict):
    """Verified access token claims, as Authlib's bearer validator expects them."""

    def get_scope(self):
        return self.get('scope', '')

    def is_expired(self):
        # exp was checked against the issuer's clock during verification
        return False

    def is_revoked(self):
        return False


class AccessTokenValidator(BearerTokenValidator):
    def authenticate_token(self, token_string):
        try:
            claims = _state()['handler'].issuer.verify_access_token(token_string)
        except InvalidTokenError as exc:
            logger.info('Rejected bearer token: %s', exc)
            return None
        return AccessToken(claims)


require_oauth = ResourceProtector()
require_oauth.register_token_validator(AccessTokenValidator())


# ----------------------
# OAuth2 endpoints
# ----------------------
@bp.route('/oauth/authorize', methods=['GET'])
def authorize():
    state = _state()
    user_id = state['authenticate_user'](request)
    login_url = state['settings'].login_url
    if user_id is None and login_url:
        return redirect(add_params_to_uri(login_url, [('next', request.url)]))
    return _render(state['handler'].create_authorization_response(request.args, user_id))


@bp.route('/oauth/token', methods=['POST'])
def issue_token():
    handler = _state()['handler']
    return _render(handler.create_token_response(request.form, request.headers.get('Authorization')))


@bp.route('/oauth/revoke', methods=['POST'])
def revoke_token():
    handler = _state()['handler']
    return _render(handler.create_revocation_response(request.form, request.headers.get('Authorization')))


@bp.route('/oauth/userinfo', methods=['GET', 'POST'])
@require_oauth('openid')
def userinfo():
    try:
        data = _state()['handler'].userinfo_for(current_token)
    except InvalidTokenError as exc:
        logger.info('Rejected userinfo request: %s', exc)
        require_oauth.raise_error_response(InvalidBearerTokenError())
    return jsonify(data)


# ----------------------
# OIDC Discovery & JWKS
# ----------------------
@bp.route('/.well-known/jwks.json')
def jwks():
    return jsonify(_state()['keys'].jwks())


@bp.route('/.well-known/openid-configuration')
def openid_config():
    issuer = _state()['settings'].issuer
    return jsonify({
        'issuer': issuer,
        'authorization_endpoint': f'{issuer}/oauth/authorize',
        'token_endpoint': f'{issuer}/oauth/token',
        'userinfo_endpoint': f'{issuer}/oauth/userinfo',
        'revocation_endpoint': f'{issuer}/oauth/revoke',
        'jwks_uri': f'{issuer}/.well-known/jwks.json',
        'scopes_supported': ['openid', 'profile', 'email'],
        'response_types_supported': ['code'],
        'response_modes_supported': ['query'],
        'grant_types_supported': list(GrantHandler.GRANT_TYPES),
        'code_challenge_methods_supported': ['S256', 'plain'],
        'subject_types_supported': ['public'],
        'id_token_signing_alg_values_supported': ['RS256'],
        'token_endpoint_auth_methods_supported': ['client_secret_basic', 'client_secret_post', 'none'],
        'claims_supported': CLAIMS_SUPPORTED,
    })


@bp.route('/health')
def health():
    return jsonify({'status': 'ok'}), 200


# ----------------------
# App factory
# ----------------------
def build_handler(settings: Settings, session_factory, keys: KeyManager) -> GrantHandler:
    clients = ClientRegistry(SqlClientRepository(session_factory))
    codes = CodeStore(SqlAuthorizationCodeRepository(session_factory), ttl=timedelta(seconds=settings.auth_code_ttl))
    refresh_tokens = RefreshTokenStore(
        SqlRefreshTokenRepository(session_factory),
        ttl=timedelta(days=settings.refresh_token_ttl_days),
    )
    issuer = TokenIssuer(
        keys,
        settings.issuer,
        access_token_ttl=settings.access_token_ttl,
        id_token_ttl=settings.id_token_ttl,
    )
    return GrantHandler(
        clients, codes, refresh_tokens, issuer, SqlUserRepository(session_factory),
        storage_deadline=settings.storage_timeout,
    )


def load_keys(settings: Settings, session_factory) -> KeyManager:
    if settings.private_key_path:
        return KeyManager.from_file(settings.private_key_path, settings.key_id)
    return KeyManager.load_or_create(session_factory, settings.key_id)


def create_app(settings: Settings | None = None, handler: GrantHandler | None = None,
               keys: KeyManager | None = None, authenticate_user=session_user) -> Flask:
    """Wire the core from ``settings``; pass ``handler``/``keys`` to supply pre-built collaborators."""
    settings = settings or Settings.from_env()
    app = Flask(__name__)
    app.secret_key = settings.secret_key

    if handler is None:
        engine = make_engine(settings.database_url, settings.storage_timeout)
        init_db(engine)
        session_factory = make_session_factory(engine)
        keys = keys or load_keys(settings, session_factory)
        handler = build_handler(settings, session_factory, keys)
    elif keys is None:
        raise ValueError('keys must be given together with a pre-built handler')

    app.extensions['authcore'] = {
        'settings': settings,
        'handler': handler,
        'keys': keys,
        'authenticate_user': authenticate_user,
    }
    app.register_blueprint(bp)
    logger.info('Authorization server ready, issuer %s, signing kid %s', settings.issuer, keys.kid)
    return app
