"""Signed session tokens used as the authentication black box."""

from quizroster.security import (
    create_session_token,
    decode_session_token,
    token_from_authorization,
)

SECRET = "unit-test-secret-key-that-is-long-enough"


class TestSessionTokens:
    def test_round_trip_yields_principal(self):
        token = create_session_token("user-1", "mentor", SECRET, ttl_seconds=60, now=100)
        principal = decode_session_token(token, SECRET, now=120)
        assert principal is not None
        assert principal.user_id == "user-1"
        assert principal.is_mentor

    def test_expired_token_rejected(self):
        token = create_session_token("user-1", "student", SECRET, ttl_seconds=60, now=100)
        assert decode_session_token(token, SECRET, now=161) is None

    def test_tampered_signature_rejected(self):
        token = create_session_token("user-1", "student", SECRET, ttl_seconds=60, now=100)
        assert decode_session_token(token, "another-secret", now=120) is None
        assert decode_session_token(token + "x", SECRET, now=120) is None

    def test_garbage_rejected(self):
        assert decode_session_token("not-a-token", SECRET) is None
        assert decode_session_token("", SECRET) is None


class TestAuthorizationHeader:
    def test_bearer_extracted(self):
        assert token_from_authorization("Bearer abc.def") == "abc.def"

    def test_other_schemes_ignored(self):
        assert token_from_authorization("Basic abc") == ""
        assert token_from_authorization(None) == ""
