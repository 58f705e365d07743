"""enable_rls_policies

Revision ID: 8d4e6b0a2c71
Revises: 3f1a9c2e7b10
Create Date: 2026-10-17 09:20:03.402917+00:00

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8d4e6b0a2c71'
down_revision: Union[str, None] = '3f1a9c2e7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Org-scoped tables. organization_members is read before the org is known,
# so it stays outside RLS with audit_events, users and organizations.
RLS_TABLES = [
    "projects", "expense_accounts",
    "approval_workflows", "requisitions", "requisition_items",
    "approval_decisions",
]


def upgrade() -> None:
    for table in RLS_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY org_isolation ON {table} "
            f"USING (org_id = current_setting('app.current_org_id', true)::uuid)"
        )

    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_requisitions_org_status_date "
        "ON requisitions(org_id, status, created_at DESC)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_audit_org_created_desc "
        "ON audit_events(org_id, created_at DESC)"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_audit_org_created_desc")
    op.execute("DROP INDEX IF EXISTS idx_requisitions_org_status_date")
    for table in reversed(RLS_TABLES):
        op.execute(f"DROP POLICY IF EXISTS org_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
