"""Central model registry: import all models so Alembic autodiscover works."""

from reqflow.database import Base  # noqa: F401

from reqflow.models.organization import Organization, OrganizationMember  # noqa: F401
from reqflow.models.user import User  # noqa: F401
from reqflow.models.project import Project  # noqa: F401
from reqflow.models.expense_account import ExpenseAccount  # noqa: F401
from reqflow.models.approval_workflow import ApprovalWorkflow  # noqa: F401
from reqflow.models.requisition import Requisition, RequisitionItem  # noqa: F401
from reqflow.models.approval_decision import ApprovalDecision  # noqa: F401
from reqflow.models.audit_event import AuditEvent  # noqa: F401
