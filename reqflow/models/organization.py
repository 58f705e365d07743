import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from reqflow.database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="trial")
    plan: Mapped[str] = mapped_column(String(20), default="free")
    # -1 means unlimited
    max_users: Mapped[int] = mapped_column(Integer, default=3)
    max_projects: Mapped[int] = mapped_column(Integer, default=2)
    max_requisitions_per_month: Mapped[int] = mapped_column(Integer, default=25)
    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('trial', 'active', 'suspended', 'cancelled')",
            name="chk_org_status",
        ),
        CheckConstraint(
            "plan IN ('free', 'starter', 'professional', 'enterprise')",
            name="chk_org_plan",
        ),
        Index("idx_org_status", "status"),
    )


class OrganizationMember(Base):
    __tablename__ = "organization_members"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), default="member")
    workflow_role: Mapped[str] = mapped_column(String(30), default="submitter")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("org_id", "user_id", name="uq_org_member"),
        CheckConstraint(
            "role IN ('owner', 'admin', 'member')", name="chk_org_member_role"
        ),
        Index("idx_org_members_user", "user_id", "is_active"),
        Index("idx_org_members_workflow_role", "org_id", "user_id", "workflow_role"),
    )
