"""snapshot_approval_chain_terms

Revision ID: c41e7d2b9a05
Revises: 8d4e6b0a2c71
Create Date: 2026-10-18 10:04:51.226817+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'c41e7d2b9a05'
down_revision: Union[str, None] = '8d4e6b0a2c71'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "requisitions",
        sa.Column("approval_roles", postgresql.ARRAY(sa.String(length=30)), nullable=True),
    )
    op.add_column(
        "requisitions",
        sa.Column("required_approvers_count", sa.Integer(), nullable=True),
    )
    op.execute(
        "UPDATE requisitions r "
        "SET approval_roles = w.approval_roles, "
        "required_approvers_count = w.required_approvers_count "
        "FROM approval_workflows w WHERE r.workflow_id = w.id"
    )

    op.drop_constraint("uq_decision_idempotency", "approval_decisions", type_="unique")
    op.create_unique_constraint(
        "uq_decision_idempotency",
        "approval_decisions",
        ["requisition_id", "approver_id", "idempotency_key"],
    )


def downgrade() -> None:
    op.drop_constraint("uq_decision_idempotency", "approval_decisions", type_="unique")
    op.create_unique_constraint(
        "uq_decision_idempotency",
        "approval_decisions",
        ["requisition_id", "idempotency_key"],
    )
    op.drop_column("requisitions", "required_approvers_count")
    op.drop_column("requisitions", "approval_roles")
