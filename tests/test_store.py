"""Unit tests for auth/store.py and auth/sessions.py.

Covers:
- create_user / duplicate username raises IntegrityError
- inactive users are invisible to find_active_user_by_username()
- failed-attempt and successful-login bookkeeping
- timestamps come back timezone-aware UTC
- session lookups honour access / refresh expiry
- session lookups reflect the user's CURRENT role and active flag
- deleting a user cascades to its sessions
- replace_access_token() never moves expiry backward
- list_active_for_user() ordering, purge_expired()
- driver failures surface as InternalError
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Session, User
from auth.store import sessions_table, users_table
from auth.tokens import hash_password
from core.errors import InternalError


def _now():
    return datetime.now(timezone.utc)


def _session(user_id, token, expires_in=3600, refresh=None, refresh_in=None):
    now = _now()
    return Session(
        user_id=user_id,
        access_token=token,
        expires_at=now + timedelta(seconds=expires_in),
        refresh_token=refresh,
        refresh_expires_at=now + timedelta(seconds=refresh_in) if refresh_in is not None else None,
        ip_address="10.0.0.1",
        user_agent="pytest",
    )


# ---------------------------------------------------------------------------
# UserStore
# ---------------------------------------------------------------------------


def test_create_and_find_user(make_user, user_store):
    created = make_user("alice", "alicepass", role="admin")
    found = user_store.find_active_user_by_username("alice")
    assert found is not None
    assert found.id == created.id
    assert found.role == "admin"
    assert found.failed_login_attempts == 0
    assert found.created_at.tzinfo is not None


def test_username_lookup_is_case_sensitive(make_user, user_store):
    make_user("alice")
    assert user_store.find_active_user_by_username("Alice") is None


def test_duplicate_username_raises_integrity_error(make_user, user_store):
    make_user("alice")
    with pytest.raises(IntegrityError):
        user_store.create_user(
            User(username="alice", email="other@example.com", role="user", hashed_password=hash_password("x"))
        )


def test_inactive_user_is_not_found(make_user, user_store):
    user = make_user("alice")
    assert user_store.update_user(user.id, is_active=False) is True
    assert user_store.find_active_user_by_username("alice") is None
    assert user_store.get_by_id(user.id).is_active is False


def test_update_user_rejects_unknown_fields(make_user, user_store):
    user = make_user("alice")
    with pytest.raises(ValueError):
        user_store.update_user(user.id, username="bob")


def test_failed_attempt_then_success_resets(make_user, user_store):
    user = make_user("alice")
    lock = _now() + timedelta(minutes=30)
    user_store.record_failed_attempt(user.id, 5, lock)
    stored = user_store.get_by_id(user.id)
    assert stored.failed_login_attempts == 5
    assert abs((stored.locked_until - lock).total_seconds()) < 1

    user_store.record_successful_login(user.id)
    stored = user_store.get_by_id(user.id)
    assert stored.failed_login_attempts == 0
    assert stored.locked_until is None
    assert stored.last_login is not None


# ---------------------------------------------------------------------------
# SessionStore
# ---------------------------------------------------------------------------


def test_find_by_access_token_joins_user(make_user, session_store):
    user = make_user("alice", role="user")
    session_id = session_store.create(_session(user.id, "tok-1"))
    found = session_store.find_by_access_token("tok-1")
    assert found.id == session_id
    assert found.username == "alice"
    assert found.role == "user"
    assert found.user_active is True


def test_expired_access_token_is_not_found(make_user, session_store):
    user = make_user("alice")
    session_store.create(_session(user.id, "tok-old", expires_in=-1))
    assert session_store.find_by_access_token("tok-old") is None


def test_lookup_reflects_current_role_and_active_flag(make_user, user_store, session_store):
    user = make_user("alice", role="user")
    session_store.create(_session(user.id, "tok-1"))
    user_store.update_user(user.id, role="admin", is_active=False)
    found = session_store.find_by_access_token("tok-1")
    assert found.role == "admin"
    assert found.user_active is False


def test_refresh_lookup_ignores_access_expiry(make_user, session_store):
    user = make_user("alice")
    session_store.create(_session(user.id, "tok-1", expires_in=-10, refresh="ref-1", refresh_in=600))
    found = session_store.find_by_refresh_token("ref-1")
    assert found is not None
    assert found.access_token == "tok-1"


def test_expired_refresh_window_is_not_found(make_user, session_store):
    user = make_user("alice")
    session_store.create(_session(user.id, "tok-1", refresh="ref-1", refresh_in=-1))
    assert session_store.find_by_refresh_token("ref-1") is None


def test_replace_access_token_extends_expiry(make_user, session_store):
    user = make_user("alice")
    session_id = session_store.create(_session(user.id, "tok-1", expires_in=-5, refresh="ref-1", refresh_in=600))
    new_expiry = _now() + timedelta(hours=1)
    assert session_store.replace_access_token(session_id, "tok-2", new_expiry) is True
    assert session_store.find_by_access_token("tok-1") is None
    found = session_store.find_by_access_token("tok-2")
    assert abs((found.expires_at - new_expiry).total_seconds()) < 1
    assert found.refresh_token == "ref-1"


def test_replace_access_token_never_shortens_expiry(make_user, session_store):
    user = make_user("alice")
    session_id = session_store.create(_session(user.id, "tok-1", expires_in=7 * 24 * 3600))
    original = session_store.find_by_access_token("tok-1").expires_at
    session_store.replace_access_token(session_id, "tok-2", _now() + timedelta(hours=1))
    found = session_store.find_by_access_token("tok-2")
    assert found.expires_at == original


def test_delete_by_id_is_idempotent(make_user, session_store):
    user = make_user("alice")
    session_id = session_store.create(_session(user.id, "tok-1"))
    assert session_store.delete_by_id(session_id) is True
    assert session_store.delete_by_id(session_id) is False
    assert session_store.find_by_access_token("tok-1") is None


def test_delete_all_for_user_leaves_other_users(make_user, session_store):
    alice = make_user("alice")
    bob = make_user("bob")
    session_store.create(_session(alice.id, "a-1"))
    session_store.create(_session(alice.id, "a-2"))
    session_store.create(_session(bob.id, "b-1"))
    assert session_store.delete_all_for_user(alice.id) == 2
    assert session_store.find_by_access_token("a-1") is None
    assert session_store.find_by_access_token("b-1") is not None


def test_deleting_user_cascades_to_sessions(make_user, engine, session_store):
    user = make_user("alice")
    session_store.create(_session(user.id, "tok-1"))
    with engine.connect() as conn:
        conn.execute(users_table.delete().where(users_table.c.id == user.id))
        conn.commit()
        remaining = conn.execute(sessions_table.select().where(sessions_table.c.user_id == user.id)).fetchall()
    assert remaining == []


def test_list_active_orders_by_last_activity(make_user, session_store):
    user = make_user("alice")
    first = session_store.create(_session(user.id, "tok-1"))
    second = session_store.create(_session(user.id, "tok-2"))
    session_store.create(_session(user.id, "tok-expired", expires_in=-1))
    session_store.touch_activity(first)

    ids = [s.id for s in session_store.list_active_for_user(user.id)]
    assert ids == [first, second]


def test_purge_expired_keeps_refreshable_sessions(make_user, session_store):
    user = make_user("alice")
    session_store.create(_session(user.id, "dead", expires_in=-1))
    session_store.create(_session(user.id, "refreshable", expires_in=-1, refresh="ref", refresh_in=600))
    session_store.create(_session(user.id, "live"))
    assert session_store.purge_expired() == 1
    assert session_store.find_by_refresh_token("ref") is not None


def test_store_failure_raises_internal_error(user_store, engine):
    with engine.connect() as conn:
        conn.exec_driver_sql("DROP TABLE IF EXISTS audit_logs")
        conn.exec_driver_sql("DROP TABLE sessions")
        conn.exec_driver_sql("DROP TABLE users")
        conn.commit()
    with pytest.raises(InternalError):
        user_store.find_active_user_by_username("alice")
