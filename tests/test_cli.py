# Tests for authcore/cli.py

import json

import pytest

from authcore import pkce
from authcore.cli import main
from authcore.clients import ClientRegistry
from authcore.db import make_engine, make_session_factory
from authcore.repositories import SqlClientRepository, SqlUserRepository


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv('DATABASE_URL', url)
    monkeypatch.delenv('OIDC_PRIVATE_KEY_PATH', raising=False)
    return url


def _session_factory(url):
    return make_session_factory(make_engine(url))


class TestCli:
    def test_init_db(self, database_url, capsys):
        assert main(['init-db']) == 0
        assert 'Tables ready' in capsys.readouterr().out

    def test_add_confidential_client(self, database_url, capsys):
        assert main(['add-client', 'web', '--redirect-uri', 'https://a/cb', '--secret', 'pw']) == 0
        out = capsys.readouterr().out
        assert "Client 'web' created" in out
        assert 'Client Secret: pw' in out

        registry = ClientRegistry(SqlClientRepository(_session_factory(database_url)))
        assert registry.authenticate('web', 'pw')
        assert registry.find('web').allowed_scopes == frozenset({'openid', 'profile', 'email'})

    def test_add_public_client(self, database_url, capsys):
        assert main([
            'add-client', 'spa', '--public',
            '--redirect-uri', 'http://localhost:3000/callback',
            '--redirect-uri', 'http://localhost:3000/silent',
            '--scope', 'openid profile',
        ]) == 0
        assert 'Client Secret' not in capsys.readouterr().out
        client = ClientRegistry(SqlClientRepository(_session_factory(database_url))).find('spa')
        assert client.is_public
        assert len(client.redirect_uris) == 2

    def test_existing_client_needs_update_flag(self, database_url, capsys):
        main(['add-client', 'web', '--redirect-uri', 'https://a/cb'])
        assert main(['add-client', 'web', '--redirect-uri', 'https://b/cb']) == 1
        assert 'already exists' in capsys.readouterr().err
        assert main(['add-client', 'web', '--redirect-uri', 'https://b/cb', '--update']) == 0
        assert "Client 'web' updated" in capsys.readouterr().out

    def test_add_user(self, database_url):
        assert main(['add-user', '7', 'bob', '--email', 'bob@example.com', '--email-verified']) == 0
        user = SqlUserRepository(_session_factory(database_url)).get('7')
        assert user.username == 'bob'
        assert user.email_verified is True

    def test_rotate_key(self, database_url, capsys):
        assert main(['rotate-key']) == 0
        assert 'New signing key' in capsys.readouterr().out

    def test_rotate_key_refused_for_pem_file(self, database_url, monkeypatch):
        monkeypatch.setenv('OIDC_PRIVATE_KEY_PATH', '/tmp/signing.pem')
        assert main(['rotate-key']) == 1

    def test_purge(self, database_url, capsys):
        assert main(['purge']) == 0
        assert 'Removed 0 codes and 0 refresh tokens' in capsys.readouterr().out

    def test_pkce(self, database_url, capsys):
        assert main(['pkce']) == 0
        pair = json.loads(capsys.readouterr().out)
        assert pkce.verify(pair['method'], pair['code_challenge'], pair['code_verifier'])
