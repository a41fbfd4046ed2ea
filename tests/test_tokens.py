"""Unit tests for auth/tokens.py -- password hashing and TokenIssuer.

Covers:
- bcrypt hash/verify round trip, wrong password, corrupt stored hash
- access and refresh claim shapes
- two tokens for the same user in the same second differ (jti)
- expired, tampered and wrong-key tokens map to the right TokenError
- a refresh token is rejected by verify_access() and vice versa
"""

import pytest

from auth.tokens import (
    TokenExpiredError,
    TokenIssuer,
    TokenMalformedError,
    hash_password,
    verify_password,
)


def test_password_round_trip():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed) is True
    assert verify_password("wrong", hashed) is False


def test_corrupt_hash_is_a_mismatch_not_a_crash():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_access_token_claims(issuer):
    token = issuer.issue_access_token(7, "alice", "admin", ttl=60)
    claims = issuer.verify_access(token)
    assert claims["sub"] == "alice"
    assert claims["user_id"] == 7
    assert claims["role"] == "admin"
    assert claims["type"] == "access"
    assert claims["exp"] - claims["iat"] == 60


def test_refresh_token_claims(issuer):
    claims = issuer.verify_refresh(issuer.issue_refresh_token(7, ttl=600))
    assert claims["sub"] == "7"
    assert claims["user_id"] == 7
    assert claims["type"] == "refresh"
    assert "role" not in claims


def test_tokens_are_unique_within_the_same_second(issuer):
    a = issuer.issue_access_token(1, "alice", "user", ttl=60)
    b = issuer.issue_access_token(1, "alice", "user", ttl=60)
    assert a != b, "jti must make back-to-back tokens distinct"


def test_expired_token(issuer):
    token = issuer.issue_access_token(1, "alice", "user", ttl=-10)
    with pytest.raises(TokenExpiredError):
        issuer.verify_access(token)


def test_wrong_key_is_malformed(issuer):
    other = TokenIssuer("another-secret-key-that-is-also-long-enough")
    with pytest.raises(TokenMalformedError):
        issuer.verify(other.issue_access_token(1, "alice", "user", ttl=60))


def test_garbage_is_malformed(issuer):
    with pytest.raises(TokenMalformedError):
        issuer.verify("not.a.jwt")


def test_refresh_token_cannot_be_used_as_access_token(issuer):
    with pytest.raises(TokenMalformedError):
        issuer.verify_access(issuer.issue_refresh_token(1, ttl=60))


def test_access_token_cannot_be_used_as_refresh_token(issuer):
    with pytest.raises(TokenMalformedError):
        issuer.verify_refresh(issuer.issue_access_token(1, "alice", "user", ttl=60))
