"""
audit/store.py -- Append-only audit log (the audit sink).

Writes are fire-and-forget: log_action() and log_request() hand the INSERT
to a single background worker thread and return immediately. A failed write
is logged locally and dropped -- it never reaches, slows, or fails the request
that produced it.

background=False performs the write inline (still swallowing failures). The
test suite uses it so records are visible as soon as the call returns.

Reads (query, stats) are ordinary repository calls for the audit endpoints
and DO surface store failures as InternalError.

Layer rule: may import from auth/ (shared schema) and core/; never from api/.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from audit.models import AuditFilter, AuditRecord
from audit.redaction import redact
from auth.store import UTCDateTime, guarded_connection, metadata, users_table, utcnow

logger = logging.getLogger("gateway.audit")

audit_logs_table = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True),
    Column("action", String(255), nullable=False, index=True),
    Column("resource_type", String(100)),
    Column("resource_id", String(255)),
    Column("details", JSON),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("status", String(50)),
    Column("created_at", UTCDateTime, nullable=False, index=True),
)

_a = audit_logs_table
_u = users_table


class AuditLog:
    """Audit sink and audit query repository.

    Usage:
        audit = AuditLog(engine)
        audit.log_action(user.id, "LOGIN_SUCCESS", "user", user.username, {"ip": ip})
        records, total = audit.query(AuditFilter(user_id=user.id))
        audit.close()   # drains pending writes
    """

    def __init__(self, engine: Engine, enabled: bool = True, background: bool = True) -> None:
        self.engine = engine
        self.enabled = enabled
        metadata.create_all(engine, tables=[audit_logs_table])
        self._executor: ThreadPoolExecutor | None = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit") if background else None
        )

    # ------------------------------------------------------------------
    # Sink (fire-and-forget)
    # ------------------------------------------------------------------

    def log_action(
        self,
        user_id: Optional[int],
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
        status: str = "success",
    ) -> None:
        self._submit(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=redact(details or {}),
            status=status,
        )

    def log_request(
        self,
        user_id: Optional[int],
        method: str,
        path: str,
        query: dict[str, Any],
        status_code: int,
        duration_ms: float,
        ip_address: Optional[str],
        user_agent: Optional[str],
        body: Any = None,
    ) -> None:
        """Record one handled request. body is the parsed JSON body, or None."""
        self._submit(
            user_id=user_id,
            action=f"{method} {path}",
            resource_type=None,
            resource_id=None,
            details=redact(
                {
                    "method": method,
                    "path": path,
                    "query": query,
                    "body": body,
                    "status_code": status_code,
                    "duration_ms": round(duration_ms, 1),
                }
            ),
            ip_address=ip_address,
            user_agent=user_agent,
            status="success" if 200 <= status_code < 300 else "error",
        )

    def _submit(self, **values: Any) -> None:
        if not self.enabled:
            return
        values["created_at"] = utcnow()
        if self._executor is None:
            self._write(values)
            return
        try:
            self._executor.submit(self._write, values)
        except RuntimeError:
            # Executor already shut down (application is stopping).
            logger.warning("Audit record dropped during shutdown: %s", values.get("action"))

    def _write(self, values: dict[str, Any]) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(_a.insert().values(**values))
                conn.commit()
        except (SQLAlchemyError, TypeError, ValueError):
            logger.exception("Failed to write audit record: %s", values.get("action"))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, flt: AuditFilter) -> tuple[list[AuditRecord], int]:
        """Return (page of records newest first, total matching count)."""
        conditions = []
        if flt.user_id is not None:
            conditions.append(_a.c.user_id == flt.user_id)
        if flt.action:
            conditions.append(_a.c.action.ilike(f"%{flt.action}%"))
        if flt.status:
            conditions.append(_a.c.status == flt.status)
        if flt.start_date is not None:
            conditions.append(_a.c.created_at >= flt.start_date)
        if flt.end_date is not None:
            conditions.append(_a.c.created_at <= flt.end_date)

        count_stmt = select(func.count()).select_from(_a).where(*conditions)
        page_stmt = (
            select(_a, _u.c.username, _u.c.email)
            .select_from(_a.outerjoin(_u, _a.c.user_id == _u.c.id))
            .where(*conditions)
            .order_by(_a.c.created_at.desc(), _a.c.id.desc())
            .limit(flt.limit)
            .offset(flt.offset)
        )
        with guarded_connection(self.engine, "audit_query") as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(page_stmt).fetchall()
        return [_row_to_record(r) for r in rows], total

    def stats(self, days: int = 7) -> dict[str, Any]:
        """Totals, top 10 actions, top 10 users and per-day counts (newest day first)
        over the last `days` days."""
        since = utcnow() - timedelta(days=days)
        count_col = func.count().label("hits")
        with guarded_connection(self.engine, "audit_stats") as conn:
            total = conn.execute(select(func.count()).select_from(_a).where(_a.c.created_at >= since)).scalar() or 0
            by_action = conn.execute(
                select(_a.c.action, count_col)
                .where(_a.c.created_at >= since)
                .group_by(_a.c.action)
                .order_by(count_col.desc())
                .limit(10)
            ).fetchall()
            by_user = conn.execute(
                select(_u.c.username, count_col)
                .select_from(_a.outerjoin(_u, _a.c.user_id == _u.c.id))
                .where(_a.c.created_at >= since)
                .group_by(_u.c.username)
                .order_by(count_col.desc())
                .limit(10)
            ).fetchall()
            by_status = conn.execute(
                select(_a.c.status, count_col).where(_a.c.created_at >= since).group_by(_a.c.status)
            ).fetchall()
            day_col = func.date(_a.c.created_at).label("day")
            by_day = conn.execute(
                select(day_col, count_col).where(_a.c.created_at >= since).group_by(day_col).order_by(day_col.desc())
            ).fetchall()
        return {
            "period_days": days,
            "total": total,
            "top_actions": [{"action": r.action, "count": r.hits} for r in by_action],
            "top_users": [{"username": r.username, "count": r.hits} for r in by_user],
            "by_status": {r.status: r.hits for r in by_status if r.status is not None},
            # SQLite returns the day as text, PostgreSQL as a date.
            "daily_activity": [{"date": str(r.day), "count": r.hits} for r in by_day],
        }

    def close(self) -> None:
        """Wait for queued writes, then stop the worker."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)


def pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


def _row_to_record(row) -> AuditRecord:
    return AuditRecord(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        details=row.details or {},
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        status=row.status,
        created_at=row.created_at,
        username=row.username,
        email=row.email,
    )
