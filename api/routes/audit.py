"""
api/routes/audit.py -- Read access to the audit log.

Routes (mounted under /api/audit):
  GET /logs   -- paginated audit records (requires auth). Non-admins only ever
                 see their own records; the userId filter is honoured for
                 admins only.
  GET /stats  -- activity summary over the last N days (admin only)
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import AuditLogEntry, AuditLogResponse, AuditStatsResponse, Pagination
from audit.models import AuditFilter
from audit.store import AuditLog, pages
from auth.dependencies import get_current_identity, require_admin
from auth.models import Identity

router = APIRouter()


@router.get("/logs", response_model=AuditLogResponse)
def list_logs(
    request: Request,
    identity: Identity = Depends(get_current_identity),
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    action: Annotated[Optional[str], Query(max_length=255)] = None,
    status: Annotated[Optional[str], Query(max_length=50)] = None,
    user_id: Annotated[Optional[int], Query(alias="userId")] = None,
    start_date: Annotated[Optional[datetime], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[datetime], Query(alias="endDate")] = None,
) -> JSONResponse:
    """Return audit records newest first with pagination metadata."""
    audit: AuditLog = request.app.state.audit
    scoped_user = user_id if identity.role == "admin" else identity.user_id
    records, total = audit.query(
        AuditFilter(
            user_id=scoped_user,
            action=action,
            status=status,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
    )
    payload = AuditLogResponse(
        logs=[AuditLogEntry.from_record(r) for r in records],
        pagination=Pagination(total=total, limit=limit, offset=offset, pages=pages(total, limit)),
    )
    return JSONResponse(content=payload.model_dump(mode="json", by_alias=True))


@router.get("/stats", response_model=AuditStatsResponse)
def stats(
    request: Request,
    identity: Identity = Depends(require_admin),
    days: Annotated[int, Query(ge=1, le=365)] = 7,
) -> JSONResponse:
    """Summarize audit activity. Admin only."""
    audit: AuditLog = request.app.state.audit
    summary = audit.stats(days=days)
    payload = AuditStatsResponse(
        period_days=summary["period_days"],
        total=summary["total"],
        top_actions=summary["top_actions"],
        top_users=summary["top_users"],
        by_status=summary["by_status"],
        daily_activity=summary["daily_activity"],
    )
    return JSONResponse(content=payload.model_dump(mode="json", by_alias=True))
