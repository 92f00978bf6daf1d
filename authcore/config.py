"""Runtime settings, read once from the environment at startup."""
from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, field
from typing import Mapping


def _as_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = (environ.get(name) or '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f'{name} must be an integer, got {raw!r}') from None


def _as_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = (environ.get(name) or '').strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f'{name} must be a number, got {raw!r}') from None


@dataclass
class Settings:
    issuer: str = 'http://127.0.0.1:8000'
    database_url: str = 'sqlite:///oauth.db'
    secret_key: str = field(default_factory=lambda: secrets.token_hex(32))
    # PEM file holding the RSA private key; when unset the key lives in the oidc_key table
    private_key_path: str | None = None
    key_id: str | None = None
    access_token_ttl: int = 3600
    id_token_ttl: int = 3600
    auth_code_ttl: int = 600
    refresh_token_ttl_days: int = 30
    storage_timeout: float = 5.0
    login_url: str | None = None
    log_level: str = 'INFO'
    host: str = '127.0.0.1'
    port: int = 8000

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> 'Settings':
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            issuer=(env.get('OIDC_ISSUER') or defaults.issuer).rstrip('/'),
            database_url=env.get('DATABASE_URL', defaults.database_url),
            secret_key=env.get('APP_SECRET') or defaults.secret_key,
            private_key_path=env.get('OIDC_PRIVATE_KEY_PATH') or None,
            key_id=env.get('OIDC_JWK_KID') or None,
            access_token_ttl=_as_int(env, 'ACCESS_TOKEN_TTL', defaults.access_token_ttl),
            id_token_ttl=_as_int(env, 'ID_TOKEN_TTL', defaults.id_token_ttl),
            auth_code_ttl=_as_int(env, 'AUTH_CODE_TTL', defaults.auth_code_ttl),
            refresh_token_ttl_days=_as_int(env, 'REFRESH_TOKEN_TTL_DAYS', defaults.refresh_token_ttl_days),
            storage_timeout=_as_float(env, 'STORAGE_TIMEOUT', defaults.storage_timeout),
            login_url=env.get('LOGIN_URL') or None,
            log_level=(env.get('LOG_LEVEL') or defaults.log_level).upper(),
            host=env.get('HOST', defaults.host),
            port=_as_int(env, 'PORT', defaults.port),
        )
