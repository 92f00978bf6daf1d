# Shared fixtures: a throwaway SQLite database per test and one RSA key per session

import base64
from datetime import datetime, timedelta, timezone

import pytest

from authcore.clients import ClientRegistry
from authcore.codes import CodeStore
from authcore.db import init_db, make_engine, make_session_factory
from authcore.grants import GrantHandler
from authcore.keys import KeyManager
from authcore.models import UserProfile
from authcore.refresh import RefreshTokenStore
from authcore.repositories import (
    SqlAuthorizationCodeRepository,
    SqlClientRepository,
    SqlRefreshTokenRepository,
    SqlUserRepository,
)
from authcore.tokens import TokenIssuer

ISSUER = 'https://issuer.test'
REDIRECT_URI = 'https://a/cb'
PUBLIC_REDIRECT_URI = 'http://localhost:3000/callback'
CLIENT_SECRET = 's3cret'

# RFC 7636 appendix B
VERIFIER = 'dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk'
CHALLENGE = 'E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM'


class FakeClock:
    """Settable UTC clock shared by the stores and the token issuer."""

    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def timestamp(self):
        return self.now.timestamp()

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def basic_auth(client_id, secret):
    raw = f'{client_id}:{secret}'.encode()
    return 'Basic ' + base64.b64encode(raw).decode()


@pytest.fixture(scope='session')
def keys():
    return KeyManager.generate(kid='test-key')


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'oauth.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def registry(session_factory):
    return ClientRegistry(SqlClientRepository(session_factory))


@pytest.fixture
def code_repository(session_factory):
    return SqlAuthorizationCodeRepository(session_factory)


@pytest.fixture
def codes(code_repository, clock):
    return CodeStore(code_repository, clock=clock)


@pytest.fixture
def refresh_repository(session_factory):
    return SqlRefreshTokenRepository(session_factory)


@pytest.fixture
def refresh_tokens(refresh_repository, clock):
    return RefreshTokenStore(refresh_repository, clock=clock)


@pytest.fixture
def users(session_factory):
    repo = SqlUserRepository(session_factory)
    repo.save(UserProfile(
        user_id='1',
        username='alice',
        name='Alice',
        nickname='ally',
        email='alice@example.com',
        email_verified=True,
    ))
    return repo


@pytest.fixture
def issuer(keys, clock):
    return TokenIssuer(keys, ISSUER, clock=clock.timestamp)


@pytest.fixture
def confidential_client(registry):
    client, _ = registry.register(
        'c1', 'Client One', [REDIRECT_URI], ['openid', 'profile', 'email'], secret=CLIENT_SECRET,
    )
    return client


@pytest.fixture
def public_client(registry):
    client, _ = registry.register(
        'spa', 'Single Page App', [PUBLIC_REDIRECT_URI], ['openid', 'profile'], public=True,
    )
    return client


@pytest.fixture
def handler(registry, codes, refresh_tokens, issuer, users, confidential_client, public_client):
    return GrantHandler(registry, codes, refresh_tokens, issuer, users)
