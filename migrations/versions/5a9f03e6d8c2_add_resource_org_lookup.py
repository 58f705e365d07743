"""add_resource_org_lookup

Revision ID: 5a9f03e6d8c2
Revises: c41e7d2b9a05
Create Date: 2026-10-18 10:31:07.904112+00:00

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '5a9f03e6d8c2'
down_revision: Union[str, None] = 'c41e7d2b9a05'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Returns only the owning org_id of a row, bypassing org_isolation, so a miss
# under the policy can be told apart from a row that does not exist.
LOOKUP_TABLES = ["projects", "expense_accounts", "approval_workflows", "requisitions"]


def upgrade() -> None:
    allowed = ", ".join(f"'{t}'" for t in LOOKUP_TABLES)
    op.execute(f"""
        CREATE OR REPLACE FUNCTION public.resource_org_id(tbl text, rid uuid)
        RETURNS uuid
        LANGUAGE plpgsql
        STABLE
        SECURITY DEFINER
        SET search_path = ''
        AS $$
        DECLARE
            owner_org uuid;
        BEGIN
            IF tbl NOT IN ({allowed}) THEN
                RAISE EXCEPTION 'resource_org_id: unsupported table %', tbl;
            END IF;
            EXECUTE format('SELECT org_id FROM public.%I WHERE id = $1', tbl)
                INTO owner_org USING rid;
            RETURN owner_org;
        END;
        $$
    """)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS public.resource_org_id(text, uuid)")
