"""Unit tests for auth/authenticator.py -- bearer token guards.

Covers:
- extract_bearer_token() edge cases
- guard order: no_token, invalid_token / token_expired, session_invalid,
  account_disabled
- success returns an Identity with the CURRENT role and bumps last_activity
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.authenticator import Authenticator, extract_bearer_token
from auth.models import Session
from core.errors import AuthenticationError, AuthorizationError


@pytest.fixture
def authenticator(issuer, session_store):
    return Authenticator(issuer, session_store)


@pytest.fixture
def live_token(make_user, issuer, session_store):
    """(user, token, session_id) for a user with one live session."""
    user = make_user("alice", role="user")
    token = issuer.issue_access_token(user.id, user.username, user.role, ttl=3600)
    session_id = session_store.create(
        Session(
            user_id=user.id,
            access_token=token,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )
    )
    return user, token, session_id


@pytest.mark.parametrize(
    "header,expected",
    [
        (None, None),
        ("", None),
        ("Bearer ", None),
        ("Basic abc", None),
        ("bearer abc", None),
        ("Bearer abc", "abc"),
    ],
)
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected


def test_missing_header_is_no_token(authenticator):
    with pytest.raises(AuthenticationError) as exc_info:
        authenticator.authenticate(None)
    assert exc_info.value.error_code == "no_token"
    assert exc_info.value.status_code == 401


def test_garbage_token_is_invalid(authenticator):
    with pytest.raises(AuthenticationError) as exc_info:
        authenticator.authenticate("Bearer garbage")
    assert exc_info.value.error_code == "invalid_token"


def test_expired_token(authenticator, issuer, make_user):
    user = make_user("alice")
    token = issuer.issue_access_token(user.id, user.username, user.role, ttl=-5)
    with pytest.raises(AuthenticationError) as exc_info:
        authenticator.authenticate(f"Bearer {token}")
    assert exc_info.value.error_code == "token_expired"


def test_valid_signature_without_session_is_rejected(authenticator, issuer, make_user):
    user = make_user("alice")
    token = issuer.issue_access_token(user.id, user.username, user.role, ttl=3600)
    with pytest.raises(AuthenticationError) as exc_info:
        authenticator.authenticate(f"Bearer {token}")
    assert exc_info.value.error_code == "session_invalid"
    assert exc_info.value.message == "Session expired or invalid."


def test_refresh_token_is_not_a_bearer_token(authenticator, issuer, make_user):
    user = make_user("alice")
    with pytest.raises(AuthenticationError) as exc_info:
        authenticator.authenticate(f"Bearer {issuer.issue_refresh_token(user.id, ttl=3600)}")
    assert exc_info.value.error_code == "invalid_token"


def test_disabled_account_is_forbidden(authenticator, live_token, user_store):
    user, token, _ = live_token
    user_store.update_user(user.id, is_active=False)
    with pytest.raises(AuthorizationError) as exc_info:
        authenticator.authenticate(f"Bearer {token}")
    assert exc_info.value.status_code == 403
    assert exc_info.value.error_code == "account_disabled"


def test_success_returns_identity_with_current_role(authenticator, live_token, user_store):
    user, token, session_id = live_token
    user_store.update_user(user.id, role="admin")
    identity = authenticator.authenticate(f"Bearer {token}")
    assert identity.user_id == user.id
    assert identity.username == "alice"
    assert identity.role == "admin", "role must come from the user row, not the token"
    assert identity.session_id == session_id


def test_success_updates_last_activity(authenticator, live_token, session_store):
    _, token, _ = live_token
    before = session_store.find_by_access_token(token).last_activity
    authenticator.authenticate(f"Bearer {token}")
    after = session_store.find_by_access_token(token).last_activity
    assert after >= before
