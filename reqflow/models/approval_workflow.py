import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    Numeric,
    DateTime,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID, ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from reqflow.database import Base


class ApprovalWorkflow(Base):
    __tablename__ = "approval_workflows"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    workflow_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    amount_threshold_min: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False
    )
    # NULL = unbounded
    amount_threshold_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    required_approvers_count: Mapped[int] = mapped_column(
        Integer, default=1, nullable=False
    )
    approval_roles: Mapped[list[str]] = mapped_column(
        ARRAY(String(30)), default=list, nullable=False
    )
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("amount_threshold_min >= 0", name="chk_workflow_min"),
        CheckConstraint(
            "amount_threshold_max IS NULL OR amount_threshold_max > amount_threshold_min",
            name="chk_workflow_max",
        ),
        CheckConstraint(
            "required_approvers_count > 0", name="chk_workflow_approvers"
        ),
        Index("idx_workflows_org_active", "org_id", "is_active", "priority"),
        Index(
            "idx_workflows_amounts", "amount_threshold_min", "amount_threshold_max"
        ),
    )
