"""
Internal jobs, triggered by an external scheduler calling these endpoints.

Jobs:
  - cleanup-audit-events: daily; removes non-critical audit events older than
    AUDIT_RETENTION_DAYS.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.config import settings
from reqflow.database import get_db
from reqflow.services.audit_service import cleanup_old_audit_events

logger = structlog.get_logger()
router = APIRouter()


async def require_internal_auth(request: Request):
    """X-Internal-Secret must match INTERNAL_JOB_SECRET (open only in DEBUG when unset)."""
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@router.post("/cleanup-audit-events")
async def cleanup_audit_events(
    retention_days: Optional[int] = Query(None, ge=1, le=3650),
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(require_internal_auth),
):
    days = retention_days or settings.AUDIT_RETENTION_DAYS
    deleted = await cleanup_old_audit_events(db, days)
    return {"job": "cleanup-audit-events", "deleted": deleted, "retention_days": days}
