"""
Audit trail: append-only AuditEvent records.

Two write paths:
  create_audit_event()    flushes inside the caller's transaction, so a status
                          change and its audit row commit or roll back together.
  record_security_event() writes through its own session and commits before
                          returning. Used for isolation violations and
                          rate-limit hits, whose evidence must survive the
                          rollback of the request that is being denied.
"""

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Optional
import uuid

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.database import AsyncSessionLocal
from reqflow.models.audit_event import AuditEvent
from reqflow.models.enums import Severity

if TYPE_CHECKING:
    from reqflow.services.tenant_service import TenantContext

logger = structlog.get_logger()

CROSS_ORG_ACCESS = "cross_org_access_attempt"
RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
STATUS_CHANGED = "requisition_status_changed"
DECISION_RECORDED = "approval_decision_recorded"


def _to_uuid(value: Any, field_name: str) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        logger.warning("audit_invalid_uuid", field=field_name, value=str(value))
        return None


def _build_event(
    event_type: str,
    severity: Severity,
    message: str,
    actor_id: Any = None,
    actor_email: Optional[str] = None,
    org_id: Any = None,
    target_org_id: Any = None,
    resource_type: Optional[str] = None,
    resource_id: Any = None,
    action: Optional[str] = None,
    before_state: Optional[dict] = None,
    after_state: Optional[dict] = None,
    details: Optional[dict] = None,
    source_identifier: Optional[str] = None,
    was_blocked: bool = False,
) -> AuditEvent:
    return AuditEvent(
        event_type=event_type,
        severity=Severity(severity).value,
        message=message,
        actor_id=_to_uuid(actor_id, "actor_id"),
        actor_email=actor_email,
        org_id=_to_uuid(org_id, "org_id"),
        target_org_id=_to_uuid(target_org_id, "target_org_id"),
        resource_type=resource_type,
        resource_id=_to_uuid(resource_id, "resource_id"),
        action=action,
        before_state=before_state,
        after_state=after_state,
        details=details or {},
        source_identifier=source_identifier,
        was_blocked=was_blocked,
        created_at=datetime.utcnow(),
    )


async def create_audit_event(
    session: AsyncSession,
    event_type: str,
    severity: Severity,
    message: str,
    **fields: Any,
) -> AuditEvent:
    """Add an audit event to the caller's transaction (flush, no commit)."""
    event = _build_event(event_type, severity, message, **fields)
    session.add(event)
    await session.flush()

    logger.info(
        "audit_event_created",
        event_type=event_type,
        severity=event.severity,
        resource_type=event.resource_type,
        resource_id=str(event.resource_id) if event.resource_id else None,
    )
    return event


async def record_security_event(
    event_type: str,
    severity: Severity,
    message: str,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
    **fields: Any,
) -> AuditEvent:
    """
    Durably record a security event in an independent transaction.

    Returns only after the commit succeeded; a failure here propagates, so a
    denial is never returned without its evidence on disk.
    """
    factory = session_factory or AsyncSessionLocal
    event = _build_event(
        event_type, severity, message, was_blocked=True, **fields
    )
    async with factory() as audit_session:
        audit_session.add(event)
        await audit_session.commit()

    log = logger.critical if event.severity == Severity.CRITICAL.value else logger.warning
    log(
        "security_event_recorded",
        event_type=event_type,
        severity=event.severity,
        actor_id=str(event.actor_id) if event.actor_id else None,
        org_id=str(event.org_id) if event.org_id else None,
        target_org_id=str(event.target_org_id) if event.target_org_id else None,
        resource_type=event.resource_type,
    )
    return event


async def record_cross_org_access(
    ctx: Optional["TenantContext"],
    resource_type: str,
    resource_id: Any,
    resource_org_id: Any,
    action: str,
    actor_id: Any = None,
    actor_email: Optional[str] = None,
) -> AuditEvent:
    """Critical event for an attempt to touch another organization's data."""
    current_org_id = ctx.org_id if ctx else None
    return await record_security_event(
        CROSS_ORG_ACCESS,
        Severity.CRITICAL,
        (
            f"Attempted to {action} {resource_type} {resource_id} belonging to "
            f"org {resource_org_id} while acting in org {current_org_id}"
        ),
        actor_id=ctx.user_id if ctx else actor_id,
        actor_email=ctx.email if ctx else actor_email,
        org_id=current_org_id,
        target_org_id=resource_org_id,
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        details={"detection_method": "api_validation"},
    )


async def cleanup_old_audit_events(
    session: AsyncSession, retention_days: int
) -> int:
    """Retention sweep. Critical events are never removed."""
    cutoff = datetime.utcnow() - timedelta(days=retention_days)
    result = await session.execute(
        delete(AuditEvent).where(
            AuditEvent.created_at < cutoff,
            AuditEvent.severity != Severity.CRITICAL.value,
        )
    )
    deleted = result.rowcount or 0
    logger.info(
        "audit_events_cleaned",
        deleted=deleted,
        retention_days=retention_days,
    )
    return deleted
