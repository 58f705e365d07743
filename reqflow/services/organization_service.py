"""
Organizations, plans and the org-scoped catalog (projects, expense accounts).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.exceptions import (
    PlanLimitExceeded,
    ResourceConflict,
    ResourceNotFound,
    RoleNotEligible,
)
from reqflow.models.enums import OrganizationStatus, OrgRole, Plan, WorkflowRole
from reqflow.models.expense_account import ExpenseAccount
from reqflow.models.organization import Organization, OrganizationMember
from reqflow.models.project import Project
from reqflow.models.user import User
from reqflow.services.tenant_service import TenantContext, ensure_same_tenant

logger = structlog.get_logger()

TRIAL_DAYS = 14
UNLIMITED = -1


@dataclass(frozen=True)
class PlanLimits:
    max_users: int
    max_projects: int
    max_requisitions_per_month: int


PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(3, 2, 25),
    Plan.STARTER: PlanLimits(10, 10, 200),
    Plan.PROFESSIONAL: PlanLimits(25, 25, 500),
    Plan.ENTERPRISE: PlanLimits(UNLIMITED, UNLIMITED, UNLIMITED),
}


def limit_reached(limit: Optional[int], used: int) -> bool:
    if limit is None or limit == UNLIMITED:
        return False
    return used >= limit


async def _ensure_user(
    session: AsyncSession, user_id: str, email: str
) -> User:
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(id=uuid.UUID(str(user_id)), email=email)
        session.add(user)
        await session.flush()
    return user


async def signup_organization(
    session: AsyncSession,
    user_id: str,
    email: str,
    name: str,
    slug: str,
    plan: Plan = Plan.FREE,
) -> tuple[Organization, OrganizationMember]:
    """Create a trial organization with the caller as owner and super_admin."""
    plan = Plan(plan)
    existing = await session.execute(
        select(Organization.id).where(Organization.slug == slug)
    )
    if existing.scalar_one_or_none() is not None:
        raise ResourceConflict("Organization slug is already taken")

    user = await _ensure_user(session, user_id, email)
    limits = PLAN_LIMITS[plan]
    now = datetime.utcnow()

    org = Organization(
        id=uuid.uuid4(),
        name=name,
        slug=slug,
        status=OrganizationStatus.TRIAL.value,
        plan=plan.value,
        max_users=limits.max_users,
        max_projects=limits.max_projects,
        max_requisitions_per_month=limits.max_requisitions_per_month,
        trial_ends_at=now + timedelta(days=TRIAL_DAYS),
    )
    session.add(org)
    await session.flush()

    member = OrganizationMember(
        org_id=org.id,
        user_id=user.id,
        role=OrgRole.OWNER.value,
        workflow_role=WorkflowRole.SUPER_ADMIN.value,
        is_active=True,
    )
    session.add(member)
    await session.flush()

    logger.info(
        "organization_created",
        org_id=str(org.id),
        slug=slug,
        plan=plan.value,
        owner_id=str(user.id),
    )
    return org, member


async def get_organization(session: AsyncSession, org_id: uuid.UUID) -> Organization:
    result = await session.execute(
        select(Organization).where(Organization.id == org_id)
    )
    return result.scalar_one()


async def create_project(
    session: AsyncSession,
    ctx: TenantContext,
    code: str,
    name: str,
    budget,
    description: Optional[str] = None,
) -> Project:
    org = await get_organization(session, ctx.org_id)
    count_result = await session.execute(
        select(func.count(Project.id)).where(
            Project.org_id == ctx.org_id,
            Project.is_active == True,  # noqa: E712
        )
    )
    if limit_reached(org.max_projects, count_result.scalar() or 0):
        logger.warning(
            "plan_limit_reached",
            org_id=str(ctx.org_id),
            limit_name="max_projects",
            limit=org.max_projects,
        )
        raise PlanLimitExceeded(
            f"Project limit of {org.max_projects} reached for plan {org.plan}",
            limit=org.max_projects,
        )

    dupe = await session.execute(
        select(Project.id).where(Project.org_id == ctx.org_id, Project.code == code)
    )
    if dupe.scalar_one_or_none() is not None:
        raise ResourceConflict(f"Project code {code} already exists")

    project = Project(
        id=uuid.uuid4(),
        org_id=ctx.org_id,
        code=code,
        name=name,
        description=description,
        budget=budget,
        is_active=True,
    )
    session.add(project)
    await session.flush()
    logger.info(
        "project_created",
        org_id=str(ctx.org_id),
        project_id=str(project.id),
        budget=str(budget),
    )
    return project


async def create_expense_account(
    session: AsyncSession,
    ctx: TenantContext,
    code: str,
    name: str,
    description: Optional[str] = None,
) -> ExpenseAccount:
    dupe = await session.execute(
        select(ExpenseAccount.id).where(
            ExpenseAccount.org_id == ctx.org_id, ExpenseAccount.code == code
        )
    )
    if dupe.scalar_one_or_none() is not None:
        raise ResourceConflict(f"Expense account {code} already exists")

    account = ExpenseAccount(
        id=uuid.uuid4(),
        org_id=ctx.org_id,
        code=code,
        name=name,
        description=description,
        is_active=True,
    )
    session.add(account)
    await session.flush()
    logger.info(
        "expense_account_created",
        org_id=str(ctx.org_id),
        expense_account_id=str(account.id),
    )
    return account


async def add_member(
    session: AsyncSession,
    ctx: TenantContext,
    email: str,
    role: OrgRole = OrgRole.MEMBER,
    workflow_role: WorkflowRole = WorkflowRole.SUBMITTER,
) -> OrganizationMember:
    """Add an existing user to the acting organization, within max_users."""
    org = await get_organization(session, ctx.org_id)
    count_result = await session.execute(
        select(func.count(OrganizationMember.id)).where(
            OrganizationMember.org_id == ctx.org_id,
            OrganizationMember.is_active == True,  # noqa: E712
        )
    )
    if limit_reached(org.max_users, count_result.scalar() or 0):
        raise PlanLimitExceeded(
            f"User limit of {org.max_users} reached for plan {org.plan}",
            limit=org.max_users,
        )

    user_result = await session.execute(select(User).where(User.email == email))
    user = user_result.scalar_one_or_none()
    if user is None:
        raise ResourceNotFound("No user with that email")

    existing = await session.execute(
        select(OrganizationMember).where(
            OrganizationMember.org_id == ctx.org_id,
            OrganizationMember.user_id == user.id,
        )
    )
    member = existing.scalar_one_or_none()
    if member is not None and member.is_active:
        raise ResourceConflict("User is already a member")
    if member is None:
        member = OrganizationMember(org_id=ctx.org_id, user_id=user.id)
        session.add(member)

    member.role = OrgRole(role).value
    member.workflow_role = WorkflowRole(workflow_role).value
    member.is_active = True
    await session.flush()
    logger.info(
        "organization_member_added",
        org_id=str(ctx.org_id),
        user_id=str(user.id),
        workflow_role=member.workflow_role,
    )
    return member


async def update_member(
    session: AsyncSession,
    ctx: TenantContext,
    member_id,
    role: Optional[OrgRole] = None,
    workflow_role: Optional[WorkflowRole] = None,
    is_active: Optional[bool] = None,
) -> OrganizationMember:
    result = await session.execute(
        select(OrganizationMember).where(OrganizationMember.id == member_id)
    )
    member = result.scalar_one_or_none()
    if member is None:
        raise ResourceNotFound("Member not found")
    await ensure_same_tenant(
        ctx, member.org_id, "organization_member", member.id, "update"
    )
    if member.role == OrgRole.OWNER.value and (
        is_active is False or (role is not None and OrgRole(role) != OrgRole.OWNER)
    ):
        raise RoleNotEligible("The organization owner cannot be demoted or removed")

    if role is not None:
        member.role = OrgRole(role).value
    if workflow_role is not None:
        member.workflow_role = WorkflowRole(workflow_role).value
    if is_active is not None:
        member.is_active = is_active
    await session.flush()
    logger.info(
        "organization_member_updated",
        org_id=str(ctx.org_id),
        member_id=str(member.id),
        role=member.role,
        workflow_role=member.workflow_role,
        is_active=member.is_active,
    )
    return member
