"""SQLAlchemy tables and session factory.

Timestamps are stored as integer epoch seconds so comparisons behave the
same on every backend (SQLite drops tzinfo from DateTime columns).
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def to_epoch(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp())


def from_epoch(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


# ----------------------
# Models
# ----------------------
class ClientRow(Base):
    __tablename__ = 'oauth2_client'
    id = Column(Integer, primary_key=True)
    client_id = Column(String(48), unique=True, nullable=False)
    client_secret_hash = Column(String(255), nullable=True)  # NULL for public clients
    client_name = Column(String(120), nullable=False, default='')
    redirect_uris = Column(Text, nullable=False, default='')  # space separated
    scope = Column(Text, nullable=False, default='')          # space separated
    created_at = Column(Integer, nullable=False)


class AuthorizationCodeRow(Base):
    __tablename__ = 'oauth2_code'
    id = Column(Integer, primary_key=True)
    code = Column(String(120), unique=True, nullable=False)
    client_id = Column(String(48), nullable=False)
    user_id = Column(String(64), nullable=False)
    redirect_uri = Column(Text, nullable=False)
    scope = Column(Text, nullable=False, default='')
    nonce = Column(String(255))
    code_challenge = Column(String(128))
    code_challenge_method = Column(String(10))
    expires_at = Column(Integer, nullable=False, index=True)
    consumed = Column(Boolean, nullable=False, default=False)


class RefreshTokenRow(Base):
    __tablename__ = 'oauth2_refresh_token'
    id = Column(Integer, primary_key=True)
    token_hash = Column(String(64), unique=True, nullable=False)
    chain_id = Column(String(32), nullable=False, index=True)
    rotated_from = Column(Integer, nullable=True)
    user_id = Column(String(64), nullable=False)
    client_id = Column(String(48), nullable=False)
    scope = Column(Text, nullable=False, default='')
    issued_at = Column(Integer, nullable=False)
    expires_at = Column(Integer, nullable=False, index=True)
    revoked_at = Column(Integer, nullable=True)


class SigningKeyRow(Base):
    __tablename__ = 'oidc_key'
    id = Column(Integer, primary_key=True)
    kid = Column(String(64), unique=True, nullable=False)
    alg = Column(String(16), default='RS256')
    use = Column(String(16), default='sig')
    public_jwk = Column(Text, nullable=False)
    private_jwk = Column(Text, nullable=False)
    # True for the signing key, NULL once retired: the unique constraint allows one active key
    active = Column(Boolean, nullable=True, unique=True, default=True)
    created_at = Column(Integer, nullable=False)


class UserRow(Base):
    __tablename__ = 'user'
    id = Column(String(64), primary_key=True)
    username = Column(String(40), unique=True, nullable=False)
    name = Column(String(120))
    nickname = Column(String(120))
    picture = Column(String(512))
    email = Column(String(120))
    email_verified = Column(Boolean, default=False)


# ----------------------
# Engine & sessions
# ----------------------
def make_engine(database_url: str, timeout: float = 5.0):
    """Create an engine whose lock waits and pool checkouts are bounded by ``timeout``."""
    if database_url.startswith('sqlite'):
        return create_engine(
            database_url,
            connect_args={'check_same_thread': False, 'timeout': timeout},
        )
    return create_engine(database_url, pool_timeout=timeout, pool_pre_ping=True)


def make_session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine) -> None:
    Base.metadata.create_all(engine, checkfirst=True)
    logger.debug('Tables ready on %s', engine.url)
