"""Admin command line: ``authcore <command>``.

Uses the same environment settings as the server (``DATABASE_URL`` etc).
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import timedelta

from . import pkce
from .clients import ClientRegistry
from .codes import CodeStore
from .config import Settings
from .db import init_db, make_engine, make_session_factory
from .errors import NotFoundError
from .keys import KeyManager
from .models import UserProfile
from .refresh import RefreshTokenStore
from .repositories import (
    SqlAuthorizationCodeRepository,
    SqlClientRepository,
    SqlRefreshTokenRepository,
    SqlUserRepository,
)


def _session_factory(settings: Settings):
    engine = make_engine(settings.database_url, settings.storage_timeout)
    init_db(engine)
    return make_session_factory(engine)


def cmd_init_db(args, settings):
    _session_factory(settings)
    print(f'✓ Tables ready on {settings.database_url}')
    return 0


def cmd_add_client(args, settings):
    registry = ClientRegistry(SqlClientRepository(_session_factory(settings)))
    try:
        registry.find(args.client_id)
    except NotFoundError:
        exists = False
    else:
        exists = True
    if exists and not args.update:
        print(f"Client '{args.client_id}' already exists (use --update to replace it)", file=sys.stderr)
        return 1
    client, secret = registry.register(
        args.client_id,
        args.name or args.client_id,
        args.redirect_uri,
        args.scope.split(),
        secret=args.secret,
        public=args.public,
    )
    print(f"✓ Client '{client.client_id}' {'updated' if exists else 'created'}")
    print(f'  Client Name: {client.name}')
    print(f"  Type: {'public (PKCE required)' if client.is_public else 'confidential'}")
    print(f"  Redirect URIs: {' '.join(sorted(client.redirect_uris))}")
    print(f"  Scope: {' '.join(sorted(client.allowed_scopes))}")
    if secret:
        print(f'  Client Secret: {secret}  (shown once)')
    return 0


def cmd_add_user(args, settings):
    users = SqlUserRepository(_session_factory(settings))
    users.save(UserProfile(
        user_id=args.user_id,
        username=args.username,
        name=args.name,
        nickname=args.nickname,
        picture=args.picture,
        email=args.email,
        email_verified=args.email_verified,
    ))
    print(f"✓ User '{args.username}' ({args.user_id}) saved")
    return 0


def cmd_rotate_key(args, settings):
    if settings.private_key_path:
        print('OIDC_PRIVATE_KEY_PATH is set; rotate the PEM file instead', file=sys.stderr)
        return 1
    session_factory = _session_factory(settings)
    # Make sure a first key exists so the new one retires it
    KeyManager.load_or_create(session_factory, settings.key_id)
    kid = KeyManager.rotate(session_factory)
    print(f'✓ New signing key {kid}; restart the server to start signing with it')
    return 0


def cmd_purge(args, settings):
    session_factory = _session_factory(settings)
    codes = CodeStore(SqlAuthorizationCodeRepository(session_factory), ttl=timedelta(seconds=settings.auth_code_ttl))
    tokens = RefreshTokenStore(SqlRefreshTokenRepository(session_factory))
    print(f'✓ Removed {codes.purge_expired()} codes and {tokens.purge_expired()} refresh tokens')
    return 0


def cmd_pkce(args, settings):
    verifier = pkce.create_verifier()
    print(json.dumps({
        'code_verifier': verifier,
        'code_challenge': pkce.create_s256_challenge(verifier),
        'method': 'S256',
    }))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='authcore', description='Authorization server administration')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('init-db', help='create tables').set_defaults(func=cmd_init_db)

    p = sub.add_parser('add-client', help='register an OAuth client')
    p.add_argument('client_id')
    p.add_argument('--name')
    p.add_argument('--redirect-uri', action='append', required=True, help='exact redirect URI (repeatable)')
    p.add_argument('--scope', default='openid profile email', help='space separated allowed scopes')
    p.add_argument('--secret', help='client secret (generated when omitted)')
    p.add_argument('--public', action='store_true', help='public client without a secret')
    p.add_argument('--update', action='store_true', help='replace an existing client')
    p.set_defaults(func=cmd_add_client)

    p = sub.add_parser('add-user', help='create or update a user profile')
    p.add_argument('user_id')
    p.add_argument('username')
    p.add_argument('--name')
    p.add_argument('--nickname')
    p.add_argument('--picture')
    p.add_argument('--email')
    p.add_argument('--email-verified', action='store_true')
    p.set_defaults(func=cmd_add_user)

    sub.add_parser('rotate-key', help='retire the active signing key').set_defaults(func=cmd_rotate_key)
    sub.add_parser('purge', help='delete expired codes and refresh tokens').set_defaults(func=cmd_purge)
    sub.add_parser('pkce', help='print a PKCE verifier/challenge pair').set_defaults(func=cmd_pkce)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format='%(levelname)s %(name)s: %(message)s')
    return args.func(args, settings)


if __name__ == '__main__':
    sys.exit(main())
