"""One storage interface per aggregate, plus the SQLAlchemy implementations.

The two writes that carry the protocol's single-use guarantees
(``mark_consumed`` and ``replace``) are conditional UPDATEs whose row count
decides the winner, so they stay correct across processes and hosts.
"""
from __future__ import annotations

import abc
from datetime import datetime

from authlib.oauth2.rfc6749.util import list_to_scope, scope_to_list
from sqlalchemy import delete, select, update

from .db import (
    AuthorizationCodeRow,
    ClientRow,
    RefreshTokenRow,
    UserRow,
    from_epoch,
    to_epoch,
)
from .models import AuthorizationCode, Client, RefreshToken, UserProfile, utcnow


def _split(value: str | None) -> list[str]:
    return scope_to_list(value or '') or []


def _join(values) -> str:
    return list_to_scope(list(values or [])) or ''


# ----------------------
# Interfaces
# ----------------------
class ClientRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, client_id: str) -> Client | None: ...

    @abc.abstractmethod
    def save(self, client: Client) -> None:
        """Insert or update (admin only)."""


class AuthorizationCodeRepository(abc.ABC):
    @abc.abstractmethod
    def add(self, code: AuthorizationCode) -> None: ...

    @abc.abstractmethod
    def get(self, code: str) -> AuthorizationCode | None: ...

    @abc.abstractmethod
    def mark_consumed(self, code: str) -> AuthorizationCode | None:
        """Flip ``consumed`` false -> true in one conditional write.

        Returns the code only to the caller whose write succeeded.
        """

    @abc.abstractmethod
    def delete_expired(self, now: datetime) -> int: ...


class RefreshTokenRepository(abc.ABC):
    @abc.abstractmethod
    def add(self, token: RefreshToken) -> RefreshToken: ...

    @abc.abstractmethod
    def get_by_hash(self, token_hash: str) -> RefreshToken | None: ...

    @abc.abstractmethod
    def replace(self, old_id: int, new: RefreshToken, now: datetime) -> RefreshToken | None:
        """Revoke ``old_id`` if still active and store ``new`` in the same transaction.

        Returns None when ``old_id`` was already revoked (a lost race or a replay).
        """

    @abc.abstractmethod
    def mark_revoked(self, token_id: int, now: datetime) -> bool: ...

    @abc.abstractmethod
    def revoke_chain(self, chain_id: str, now: datetime) -> int: ...

    @abc.abstractmethod
    def delete_expired(self, now: datetime) -> int: ...


class UserRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, user_id: str) -> UserProfile | None: ...

    @abc.abstractmethod
    def save(self, user: UserProfile) -> None: ...


# ----------------------
# SQLAlchemy implementations
# ----------------------
class _SqlRepository:
    def __init__(self, session_factory):
        self._session_factory = session_factory


class SqlClientRepository(_SqlRepository, ClientRepository):
    @staticmethod
    def _to_model(row: ClientRow) -> Client:
        return Client(
            client_id=row.client_id,
            name=row.client_name or '',
            secret_hash=row.client_secret_hash,
            redirect_uris=frozenset(row.redirect_uris.split()),
            allowed_scopes=frozenset(_split(row.scope)),
        )

    def get(self, client_id):
        with self._session_factory() as db:
            row = db.scalars(select(ClientRow).filter_by(client_id=client_id)).first()
            return self._to_model(row) if row else None

    def save(self, client):
        with self._session_factory.begin() as db:
            row = db.scalars(select(ClientRow).filter_by(client_id=client.client_id)).first()
            if row is None:
                row = ClientRow(client_id=client.client_id, created_at=to_epoch(utcnow()))
                db.add(row)
            row.client_name = client.name
            row.client_secret_hash = client.secret_hash
            row.redirect_uris = ' '.join(sorted(client.redirect_uris))
            row.scope = _join(sorted(client.allowed_scopes))


class SqlAuthorizationCodeRepository(_SqlRepository, AuthorizationCodeRepository):
    @staticmethod
    def _to_model(row: AuthorizationCodeRow) -> AuthorizationCode:
        return AuthorizationCode(
            code=row.code,
            client_id=row.client_id,
            user_id=row.user_id,
            redirect_uri=row.redirect_uri,
            scopes=_split(row.scope),
            expires_at=from_epoch(row.expires_at),
            code_challenge=row.code_challenge,
            code_challenge_method=row.code_challenge_method,
            nonce=row.nonce,
            consumed=bool(row.consumed),
        )

    def add(self, code):
        with self._session_factory.begin() as db:
            db.add(AuthorizationCodeRow(
                code=code.code,
                client_id=code.client_id,
                user_id=code.user_id,
                redirect_uri=code.redirect_uri,
                scope=_join(code.scopes),
                nonce=code.nonce,
                code_challenge=code.code_challenge,
                code_challenge_method=code.code_challenge_method,
                expires_at=to_epoch(code.expires_at),
                consumed=code.consumed,
            ))

    def get(self, code):
        with self._session_factory() as db:
            row = db.scalars(select(AuthorizationCodeRow).filter_by(code=code)).first()
            return self._to_model(row) if row else None

    def mark_consumed(self, code):
        with self._session_factory.begin() as db:
            # The UPDATE is the first statement so the write lock is taken before any read
            result = db.execute(
                update(AuthorizationCodeRow)
                .where(AuthorizationCodeRow.code == code, AuthorizationCodeRow.consumed.is_(False))
                .values(consumed=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            row = db.scalars(select(AuthorizationCodeRow).filter_by(code=code)).one()
            return self._to_model(row)

    def delete_expired(self, now):
        with self._session_factory.begin() as db:
            result = db.execute(
                delete(AuthorizationCodeRow)
                .where(AuthorizationCodeRow.expires_at <= to_epoch(now))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount


class SqlRefreshTokenRepository(_SqlRepository, RefreshTokenRepository):
    @staticmethod
    def _to_model(row: RefreshTokenRow) -> RefreshToken:
        return RefreshToken(
            id=row.id,
            token_hash=row.token_hash,
            user_id=row.user_id,
            client_id=row.client_id,
            scopes=_split(row.scope),
            chain_id=row.chain_id,
            rotated_from=row.rotated_from,
            issued_at=from_epoch(row.issued_at),
            expires_at=from_epoch(row.expires_at),
            revoked_at=from_epoch(row.revoked_at),
        )

    @staticmethod
    def _to_row(token: RefreshToken) -> RefreshTokenRow:
        return RefreshTokenRow(
            token_hash=token.token_hash,
            chain_id=token.chain_id,
            rotated_from=token.rotated_from,
            user_id=token.user_id,
            client_id=token.client_id,
            scope=_join(token.scopes),
            issued_at=to_epoch(token.issued_at),
            expires_at=to_epoch(token.expires_at),
            revoked_at=to_epoch(token.revoked_at),
        )

    def add(self, token):
        with self._session_factory.begin() as db:
            row = self._to_row(token)
            db.add(row)
            db.flush()
            return self._to_model(row)

    def get_by_hash(self, token_hash):
        with self._session_factory() as db:
            row = db.scalars(select(RefreshTokenRow).filter_by(token_hash=token_hash)).first()
            return self._to_model(row) if row else None

    def replace(self, old_id, new, now):
        with self._session_factory.begin() as db:
            result = db.execute(
                update(RefreshTokenRow)
                .where(RefreshTokenRow.id == old_id, RefreshTokenRow.revoked_at.is_(None))
                .values(revoked_at=to_epoch(now))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            row = self._to_row(new)
            db.add(row)
            db.flush()
            return self._to_model(row)

    def mark_revoked(self, token_id, now):
        with self._session_factory.begin() as db:
            result = db.execute(
                update(RefreshTokenRow)
                .where(RefreshTokenRow.id == token_id, RefreshTokenRow.revoked_at.is_(None))
                .values(revoked_at=to_epoch(now))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def revoke_chain(self, chain_id, now):
        with self._session_factory.begin() as db:
            result = db.execute(
                update(RefreshTokenRow)
                .where(RefreshTokenRow.chain_id == chain_id, RefreshTokenRow.revoked_at.is_(None))
                .values(revoked_at=to_epoch(now))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def delete_expired(self, now):
        with self._session_factory.begin() as db:
            result = db.execute(
                delete(RefreshTokenRow)
                .where(RefreshTokenRow.expires_at <= to_epoch(now))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount


class SqlUserRepository(_SqlRepository, UserRepository):
    def get(self, user_id):
        with self._session_factory() as db:
            row = db.get(UserRow, str(user_id))
            if row is None:
                return None
            return UserProfile(
                user_id=row.id,
                username=row.username,
                name=row.name,
                nickname=row.nickname,
                picture=row.picture,
                email=row.email,
                email_verified=bool(row.email_verified),
            )

    def save(self, user):
        with self._session_factory.begin() as db:
            row = db.get(UserRow, str(user.user_id))
            if row is None:
                row = UserRow(id=str(user.user_id))
                db.add(row)
            row.username = user.username
            row.name = user.name
            row.nickname = user.nickname
            row.picture = user.picture
            row.email = user.email
            row.email_verified = user.email_verified
