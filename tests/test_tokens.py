# Tests for authcore/tokens.py: RS256 access and ID tokens

import base64
import hashlib
import json

import pytest
from authlib.jose import JsonWebKey, jwt

from authcore.errors import InvalidTokenError
from authcore.keys import KeyManager
from authcore.models import UserProfile
from authcore.tokens import TokenIssuer, at_hash, profile_claims

from .conftest import ISSUER


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip('=')


def _header(token: str) -> dict:
    segment = token.split('.')[0]
    return json.loads(base64.urlsafe_b64decode(segment + '=' * (-len(segment) % 4)))


@pytest.fixture
def alice():
    return UserProfile('1', 'alice', name='Alice', nickname='ally', picture='https://img/a.png',
                       email='alice@example.com', email_verified=True)


class TestAccessToken:
    def test_claims(self, issuer, clock):
        token = issuer.issue_access_token('1', 'c1', ['openid', 'profile'])
        claims = issuer.verify_access_token(token)
        now = int(clock.timestamp())
        assert claims['iss'] == ISSUER
        assert claims['sub'] == '1'
        assert claims['aud'] == 'c1'
        assert claims['client_id'] == 'c1'
        assert claims['scope'] == 'openid profile'
        assert claims['iat'] == now
        assert claims['exp'] == now + 3600
        assert claims['jti']

    def test_header(self, issuer, keys):
        header = _header(issuer.issue_access_token('1', 'c1', ['openid']))
        assert header == {'alg': 'RS256', 'kid': keys.kid, 'typ': 'at+jwt'}

    def test_verifies_against_published_jwks(self, issuer, keys):
        token = issuer.issue_access_token('1', 'c1', ['openid'])
        key_set = JsonWebKey.import_key_set(keys.jwks())
        claims = jwt.decode(token, key_set)
        assert claims['sub'] == '1'

    def test_custom_ttl(self, keys, clock):
        short = TokenIssuer(keys, ISSUER, access_token_ttl=60, clock=clock.timestamp)
        claims = short.verify(short.issue_access_token('1', 'c1', ['openid']))
        assert claims['exp'] - claims['iat'] == 60

    def test_expired(self, issuer, clock):
        token = issuer.issue_access_token('1', 'c1', ['openid'])
        clock.advance(hours=2)
        with pytest.raises(InvalidTokenError):
            issuer.verify_access_token(token)

    def test_id_token_is_not_an_access_token(self, issuer, alice):
        id_token = issuer.issue_id_token(alice, 'c1', ['openid'])
        with pytest.raises(InvalidTokenError):
            issuer.verify_access_token(id_token)


class TestIdToken:
    def test_profile_and_email_claims(self, issuer, alice):
        token = issuer.issue_id_token(alice, 'c1', ['openid', 'profile', 'email'], nonce='n-0S6')
        claims = issuer.verify_id_token(token, audience='c1')
        assert claims['sub'] == '1'
        assert claims['aud'] == 'c1'
        assert claims['nonce'] == 'n-0S6'
        assert claims['name'] == 'Alice'
        assert claims['preferred_username'] == 'alice'
        assert claims['nickname'] == 'ally'
        assert claims['picture'] == 'https://img/a.png'
        assert claims['email'] == 'alice@example.com'
        assert claims['email_verified'] is True

    def test_openid_only_has_no_profile_claims(self, issuer, alice):
        claims = issuer.verify_id_token(issuer.issue_id_token(alice, 'c1', ['openid']))
        for name in ('name', 'nickname', 'preferred_username', 'email', 'nonce', 'at_hash'):
            assert name not in claims

    def test_at_hash(self, issuer, alice):
        access_token = issuer.issue_access_token('1', 'c1', ['openid'])
        claims = issuer.verify_id_token(issuer.issue_id_token(alice, 'c1', ['openid'], access_token=access_token))
        digest = hashlib.sha256(access_token.encode()).digest()[:16]
        assert claims['at_hash'] == base64.urlsafe_b64encode(digest).decode().rstrip('=')
        assert claims['at_hash'] == at_hash(access_token)

    def test_header_typ(self, issuer, alice):
        assert _header(issuer.issue_id_token(alice, 'c1', ['openid']))['typ'] == 'JWT'

    def test_wrong_audience(self, issuer, alice):
        token = issuer.issue_id_token(alice, 'c1', ['openid'])
        with pytest.raises(InvalidTokenError):
            issuer.verify_id_token(token, audience='c2')

    def test_access_token_is_not_an_id_token(self, issuer):
        with pytest.raises(InvalidTokenError):
            issuer.verify_id_token(issuer.issue_access_token('1', 'c1', ['openid']))


class TestRejection:
    def test_foreign_issuer(self, keys, issuer, clock):
        other = TokenIssuer(keys, 'https://evil.test', clock=clock.timestamp)
        with pytest.raises(InvalidTokenError):
            issuer.verify(other.issue_access_token('1', 'c1', ['openid']))

    def test_signed_by_another_key_with_same_kid(self, issuer, keys, clock):
        impostor = TokenIssuer(KeyManager.generate(kid=keys.kid), ISSUER, clock=clock.timestamp)
        with pytest.raises(InvalidTokenError):
            issuer.verify(impostor.issue_access_token('1', 'c1', ['openid']))

    def test_tampered_payload(self, issuer):
        header, payload, signature = issuer.issue_access_token('1', 'c1', ['openid']).split('.')
        claims = json.loads(base64.urlsafe_b64decode(payload + '=' * (-len(payload) % 4)))
        claims['sub'] = 'admin'
        with pytest.raises(InvalidTokenError):
            issuer.verify('.'.join([header, _b64(claims), signature]))

    def test_alg_none(self, issuer, clock):
        now = int(clock.timestamp())
        token = '.'.join([
            _b64({'alg': 'none', 'typ': 'at+jwt'}),
            _b64({'iss': ISSUER, 'sub': '1', 'iat': now, 'exp': now + 60}),
            '',
        ])
        with pytest.raises(InvalidTokenError):
            issuer.verify(token)

    def test_garbage(self, issuer):
        with pytest.raises(InvalidTokenError):
            issuer.verify('not-a-jwt')


class TestProfileClaims:
    def test_name_falls_back_to_username(self):
        user = UserProfile('2', 'bob')
        assert profile_claims(user, ['profile']) == {'name': 'bob', 'preferred_username': 'bob'}

    def test_email_needs_email_scope(self, alice):
        assert 'email' not in profile_claims(alice, ['profile'])

    def test_email_scope_without_address(self):
        assert profile_claims(UserProfile('2', 'bob'), ['email']) == {}
