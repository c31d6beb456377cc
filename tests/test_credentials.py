"""Tests for bearer credential verification."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from fixit_live.auth.credentials import CredentialVerifier, strip_bearer
from fixit_live.config import CoordinatorConfig
from fixit_live.errors import AuthFailure

SECRET = "test-secret-that-is-long-enough-for-hs256"


def _make_verifier(secret: str = SECRET) -> CredentialVerifier:
    return CredentialVerifier(CoordinatorConfig(jwt_secret=secret))


class TestStripBearer:
    def test_variants(self):
        assert strip_bearer("Bearer abc") == "abc"
        assert strip_bearer("bearer   abc ") == "abc"
        assert strip_bearer("abc") == "abc"
        assert strip_bearer("") is None
        assert strip_bearer(None) is None
        assert strip_bearer("Bearer ") is None


class TestCredentialVerifier:
    def setup_method(self):
        self.verifier = _make_verifier()

    def test_round_trip(self):
        token = self.verifier.issue("user_1")
        assert self.verifier.verify(token) == "user_1"
        assert self.verifier.verify(f"Bearer {token}") == "user_1"

    def test_sub_claim_accepted(self):
        token = jwt.encode({"sub": "user_2"}, SECRET, algorithm="HS256")
        assert self.verifier.verify(token) == "user_2"

    def test_missing_credential(self):
        with pytest.raises(AuthFailure):
            self.verifier.verify(None)

    def test_wrong_secret(self):
        token = _make_verifier("another-secret-that-is-long-enough-xx").issue("user_1")
        with pytest.raises(AuthFailure):
            self.verifier.verify(token)

    def test_expired(self):
        token = self.verifier.issue("user_1", expires_in=timedelta(seconds=-5))
        with pytest.raises(AuthFailure, match="expired"):
            self.verifier.verify(token)

    def test_garbage(self):
        with pytest.raises(AuthFailure):
            self.verifier.verify("not-a-jwt")

    def test_no_identity_claim(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"exp": now + timedelta(hours=1)}, SECRET, algorithm="HS256")
        with pytest.raises(AuthFailure):
            self.verifier.verify(token)
