"""RS256 signing key material and the published JWKS.

A ``KeyManager`` is built once at startup and never mutated. Rotation
writes a new active key to the ``oidc_key`` table and takes effect on the
next start; retired keys keep being published so tokens they signed stay
verifiable until they expire.
"""
from __future__ import annotations

import json
import logging
import secrets
from pathlib import Path

from authlib.jose import JsonWebKey, JsonWebToken, KeySet
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from .db import SigningKeyRow, to_epoch
from .models import utcnow

logger = logging.getLogger(__name__)

ALGORITHM = 'RS256'

# Only RS256 is accepted on decode, so an HS256 token keyed with the public JWK is refused
_jwt = JsonWebToken([ALGORITHM])


def _public_jwk(key, kid: str) -> dict:
    pub = key.as_dict(is_private=False)
    pub.update({'kid': kid, 'use': 'sig', 'alg': ALGORITHM})
    return pub


def _generate(kid: str | None = None):
    key = JsonWebKey.generate_key('RSA', 2048, is_private=True)
    return key, kid or key.thumbprint()


def _key_row(key, kid: str) -> SigningKeyRow:
    return SigningKeyRow(
        kid=kid,
        alg=ALGORITHM,
        use='sig',
        public_jwk=json.dumps(_public_jwk(key, kid)),
        private_jwk=json.dumps(key.as_dict(is_private=True, kid=kid)),
        active=True,
        created_at=to_epoch(utcnow()),
    )


class KeyManager:
    def __init__(self, signing_key, kid: str, retired: list[dict] | tuple = ()):
        if signing_key.public_only:
            raise ValueError('signing key must include the private component')
        # Authlib copies the key's own kid into the JWS header, so it must match the published one
        self._signing_key = JsonWebKey.import_key(signing_key.as_dict(is_private=True, kid=kid))
        self._kid = kid
        public = [_public_jwk(signing_key, kid)]
        public.extend(dict(jwk) for jwk in retired if jwk.get('kid') != kid)
        self._public_jwks = tuple(public)
        self._key_set = KeySet([JsonWebKey.import_key(jwk) for jwk in public])

    @property
    def kid(self) -> str:
        return self._kid

    @property
    def key_set(self) -> KeySet:
        return self._key_set

    def jwks(self) -> dict:
        return {'keys': [dict(jwk) for jwk in self._public_jwks]}

    def sign(self, payload: dict, typ: str = 'JWT') -> str:
        header = {'alg': ALGORITHM, 'kid': self._kid, 'typ': typ}
        return _jwt.encode(header, payload, self._signing_key).decode()

    def decode(self, token: str, claims_options: dict | None = None):
        """Verify the signature against the published keys and return the claims.

        Raises ``authlib.jose.errors.JoseError`` or ``ValueError`` (unknown kid).
        Claim validation is left to the caller via ``claims.validate()``.
        """
        return _jwt.decode(token, self._key_set, claims_options=claims_options)

    # ----------------------
    # Constructors
    # ----------------------
    @classmethod
    def generate(cls, kid: str | None = None) -> 'KeyManager':
        key, kid = _generate(kid)
        return cls(key, kid)

    @classmethod
    def from_pem(cls, pem: bytes | str, kid: str | None = None) -> 'KeyManager':
        if isinstance(pem, str):
            pem = pem.encode()
        key = JsonWebKey.import_key(pem, {'kty': 'RSA'})
        return cls(key, kid or key.thumbprint())

    @classmethod
    def from_file(cls, path: str | Path, kid: str | None = None) -> 'KeyManager':
        logger.info('Loading signing key from %s', path)
        return cls.from_pem(Path(path).read_bytes(), kid)

    @classmethod
    def load_or_create(cls, session_factory, kid: str | None = None) -> 'KeyManager':
        """Load the active key from ``oidc_key``, creating one on first run."""
        try:
            return cls._load_or_create(session_factory, kid)
        except IntegrityError:
            # Another process stored the first key between our read and our insert
            logger.info('Signing key was created concurrently, loading it')
            return cls._load_or_create(session_factory, kid)

    @classmethod
    def _load_or_create(cls, session_factory, kid: str | None) -> 'KeyManager':
        with session_factory.begin() as db:
            rows = db.scalars(select(SigningKeyRow).order_by(SigningKeyRow.id)).all()
            active = next((r for r in rows if r.active), None)
            if active is None:
                key, new_kid = _generate(kid)
                active = _key_row(key, new_kid)
                db.add(active)
                db.flush()
                logger.info('Generated signing key %s', new_kid)
            retired = [json.loads(r.public_jwk) for r in rows if r is not active and not r.active]
            private = JsonWebKey.import_key(json.loads(active.private_jwk))
            return cls(private, active.kid, retired)

    @staticmethod
    def rotate(session_factory) -> str:
        """Retire the active key and store a new one. Running processes keep their key until restart."""
        key, kid = _generate('kid-' + secrets.token_urlsafe(6))
        with session_factory.begin() as db:
            db.execute(update(SigningKeyRow).where(SigningKeyRow.active.is_(True)).values(active=None))
            db.add(_key_row(key, kid))
        logger.info('Rotated signing key, new kid %s', kid)
        return kid
