"""
auth/sessions.py -- SQLAlchemy Core persistence for sessions.

Pattern: Repository + Data Mapper, same as auth/store.py.

Every lookup joins the owning user so the returned Session carries the
user's CURRENT role and active flag. Authorization must reflect the state
now, not the state at login time.

Expiry rules enforced in SQL:
  find_by_access_token()  -- only rows with expires_at in the future
  find_by_refresh_token() -- only rows with refresh_expires_at in the future
  replace_access_token()  -- expires_at never moves backward (CASE in the
                             UPDATE keeps the later of old and new)

Deletes are hard deletes. There is no revoked state.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, literal, select
from sqlalchemy.engine import Engine

from auth.models import Session
from auth.store import UTCDateTime, guarded_connection, sessions_table, users_table, utcnow

_s = sessions_table
_u = users_table

_JOINED = select(
    _s,
    _u.c.username,
    _u.c.email,
    _u.c.role,
    _u.c.active.label("user_active"),
).select_from(_s.join(_u, _s.c.user_id == _u.c.id))


class SessionStore:
    """Repository for Session records.

    Usage:
        sessions = SessionStore(engine)
        session_id = sessions.create(Session(user_id=1, access_token=tok, expires_at=exp))
        live = sessions.find_by_access_token(tok)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, session: Session) -> int:
        now = utcnow()
        with guarded_connection(self.engine, "session_create") as conn:
            result = conn.execute(
                _s.insert().values(
                    user_id=session.user_id,
                    token=session.access_token,
                    refresh_token=session.refresh_token,
                    expires_at=session.expires_at,
                    refresh_expires_at=session.refresh_expires_at,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    created_at=now,
                    last_activity=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_by_access_token(self, token: str) -> Session | None:
        """Return the live session holding this access token, or None."""
        stmt = _JOINED.where((_s.c.token == token) & (_s.c.expires_at > utcnow()))
        with guarded_connection(self.engine, "session_find_by_access_token") as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_by_refresh_token(self, token: str) -> Session | None:
        """Return the session holding this refresh token if the refresh window is open.

        The access expiry is irrelevant here -- refreshing an expired access
        token is the whole point.
        """
        stmt = _JOINED.where(
            (_s.c.refresh_token == token)
            & _s.c.refresh_expires_at.is_not(None)
            & (_s.c.refresh_expires_at > utcnow())
        )
        with guarded_connection(self.engine, "session_find_by_refresh_token") as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_session(row) if row is not None else None

    def touch_activity(self, session_id: int) -> None:
        with guarded_connection(self.engine, "session_touch_activity") as conn:
            conn.execute(_s.update().where(_s.c.id == session_id).values(last_activity=utcnow()))
            conn.commit()

    def replace_access_token(self, session_id: int, new_token: str, new_expiry: datetime) -> bool:
        """Swap in a freshly minted access token and bump activity.

        The refresh token and its expiry are left untouched. If the existing
        access expiry is later than new_expiry (e.g. a remember-me session
        refreshed early) the later value is kept.
        """
        later_expiry = case(
            (_s.c.expires_at > new_expiry, _s.c.expires_at),
            else_=literal(new_expiry, UTCDateTime()),
        )
        with guarded_connection(self.engine, "session_replace_access_token") as conn:
            result = conn.execute(
                _s.update()
                .where(_s.c.id == session_id)
                .values(token=new_token, expires_at=later_expiry, last_activity=utcnow())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_by_id(self, session_id: int) -> bool:
        """Delete one session. Returns False (not an error) if it was already gone."""
        with guarded_connection(self.engine, "session_delete_by_id") as conn:
            result = conn.execute(_s.delete().where(_s.c.id == session_id))
            conn.commit()
        return result.rowcount > 0

    def delete_all_for_user(self, user_id: int) -> int:
        with guarded_connection(self.engine, "session_delete_all_for_user") as conn:
            result = conn.execute(_s.delete().where(_s.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def list_active_for_user(self, user_id: int) -> list[Session]:
        """Return the user's non-expired sessions, most recently active first."""
        stmt = (
            _JOINED.where((_s.c.user_id == user_id) & (_s.c.expires_at > utcnow()))
            .order_by(_s.c.last_activity.desc(), _s.c.id.desc())
        )
        with guarded_connection(self.engine, "session_list_active_for_user") as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_session(r) for r in rows]

    def purge_expired(self) -> int:
        """Delete rows that can no longer be used for access or refresh.

        Called periodically by the lifespan purge task and by `main.py
        purge-sessions`. Returns the number of rows removed.
        """
        now = utcnow()
        with guarded_connection(self.engine, "session_purge_expired") as conn:
            result = conn.execute(
                _s.delete().where(
                    (_s.c.expires_at <= now)
                    & (_s.c.refresh_expires_at.is_(None) | (_s.c.refresh_expires_at <= now))
                )
            )
            conn.commit()
        return result.rowcount


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        access_token=row.token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        refresh_expires_at=row.refresh_expires_at,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
        last_activity=row.last_activity,
        username=row.username,
        email=row.email,
        role=row.role,
        user_active=bool(row.user_active),
    )
