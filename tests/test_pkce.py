# Tests for authcore/pkce.py

import pytest

from authcore import pkce

from .conftest import CHALLENGE as RFC_CHALLENGE
from .conftest import VERIFIER as RFC_VERIFIER


class TestVerify:
    def test_s256_matches_rfc_example(self):
        assert pkce.create_s256_challenge(RFC_VERIFIER) == RFC_CHALLENGE
        assert pkce.verify('S256', RFC_CHALLENGE, RFC_VERIFIER) is True

    def test_s256_wrong_verifier(self):
        assert pkce.verify('S256', RFC_CHALLENGE, RFC_VERIFIER[:-1] + 'x') is False

    def test_plain(self):
        assert pkce.verify('plain', 'abc', 'abc') is True
        assert pkce.verify('plain', 'abc', 'abd') is False

    def test_plain_does_not_accept_s256_challenge(self):
        assert pkce.verify('plain', RFC_CHALLENGE, RFC_VERIFIER) is False

    @pytest.mark.parametrize('method', ['S512', 's256', '', None])
    def test_unknown_method_rejected(self, method):
        assert pkce.verify(method, 'abc', 'abc') is False

    @pytest.mark.parametrize('challenge,verifier', [('', 'abc'), ('abc', ''), (None, 'abc'), ('abc', None)])
    def test_missing_values_rejected(self, challenge, verifier):
        assert pkce.verify('plain', challenge, verifier) is False


class TestCreateVerifier:
    def test_verifier_length_within_rfc_bounds(self):
        verifier = pkce.create_verifier()
        assert 43 <= len(verifier) <= 128

    def test_generated_pair_verifies(self):
        verifier = pkce.create_verifier()
        assert pkce.verify('S256', pkce.create_s256_challenge(verifier), verifier)
