import uuid
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from reqflow.database import get_db
from reqflow.middleware.authorization import require_org_admin
from reqflow.models.audit_event import AuditEvent
from reqflow.models.enums import Severity
from reqflow.schemas.audit_event import AuditEventResponse
from reqflow.schemas.common import PaginatedResponse, build_pagination, page_offset
from reqflow.services.tenant_service import TenantContext

router = APIRouter()


def _opt_str(value) -> Optional[str]:
    return str(value) if value else None


@router.get("", response_model=PaginatedResponse[AuditEventResponse])
async def list_audit_events(
    severity: Optional[Severity] = Query(None),
    event_type: Optional[str] = Query(None),
    resource_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    ctx: TenantContext = Depends(require_org_admin),
    db: AsyncSession = Depends(get_db),
):
    # Events raised by this organization's actors, and attempts aimed at it.
    filters = [or_(AuditEvent.org_id == ctx.org_id, AuditEvent.target_org_id == ctx.org_id)]
    if severity:
        filters.append(AuditEvent.severity == severity.value)
    if event_type:
        filters.append(AuditEvent.event_type == event_type)
    if resource_id:
        filters.append(AuditEvent.resource_id == resource_id)
    if from_date:
        filters.append(AuditEvent.created_at >= datetime.combine(from_date, datetime.min.time()))
    if to_date:
        filters.append(AuditEvent.created_at <= datetime.combine(to_date, datetime.max.time()))

    total = (
        await db.execute(select(func.count(AuditEvent.id)).where(*filters))
    ).scalar() or 0
    result = await db.execute(
        select(AuditEvent)
        .where(*filters)
        .order_by(AuditEvent.created_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    items = [
        AuditEventResponse(
            id=str(ev.id),
            event_type=ev.event_type,
            severity=ev.severity,
            message=ev.message,
            actor_id=_opt_str(ev.actor_id),
            actor_email=ev.actor_email,
            org_id=_opt_str(ev.org_id),
            target_org_id=_opt_str(ev.target_org_id),
            resource_type=ev.resource_type,
            resource_id=_opt_str(ev.resource_id),
            action=ev.action,
            before_state=ev.before_state,
            after_state=ev.after_state,
            details=ev.details,
            source_identifier=ev.source_identifier,
            was_blocked=bool(ev.was_blocked),
            created_at=ev.created_at.isoformat() if ev.created_at else "",
        )
        for ev in result.scalars().all()
    ]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))
