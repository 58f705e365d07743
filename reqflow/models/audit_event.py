import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    Text,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from reqflow.database import Base


class AuditEvent(Base):
    """
    Append-only event record: isolation violations, rate-limit hits and
    requisition status changes.

    org_id is the actor's organization; target_org_id is set only when the
    resource belonged to a different one (a cross-tenant attempt).
    """

    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    actor_email: Mapped[Optional[str]] = mapped_column(String(255))
    org_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    target_org_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    resource_type: Mapped[Optional[str]] = mapped_column(String(50))
    resource_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    action: Mapped[Optional[str]] = mapped_column(String(50))
    message: Mapped[str] = mapped_column(Text, nullable=False)
    before_state: Mapped[Optional[dict]] = mapped_column(JSONB)
    after_state: Mapped[Optional[dict]] = mapped_column(JSONB)
    # "metadata" is reserved on declarative classes, so the attribute differs
    details: Mapped[Optional[dict]] = mapped_column("metadata", JSONB, default=dict)
    source_identifier: Mapped[Optional[str]] = mapped_column(String(255))
    was_blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "severity IN ('info', 'warning', 'critical')",
            name="chk_audit_severity",
        ),
        Index("idx_audit_org_created", "org_id", "created_at"),
        Index("idx_audit_org_severity", "org_id", "severity"),
        Index("idx_audit_target_org", "target_org_id"),
        Index("idx_audit_resource", "resource_type", "resource_id"),
        Index("idx_audit_created", "created_at"),
    )
