"""
Error taxonomy for the requisition core.

Every error is an HTTPException carrying a stable machine code, so services can
raise them directly and the global handler in main.py renders
{"error": {"code": ..., "message": ...}} without translation.
"""

from typing import Any, Optional

from fastapi import HTTPException, status


class ReqflowError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "REQFLOW_ERROR"
    message: str = "Request could not be processed"

    def __init__(
        self,
        message: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        **extra: Any,
    ):
        self.message = message or type(self).message
        super().__init__(
            status_code=type(self).status_code,
            detail={"error": {"code": self.code, "message": self.message, **extra}},
            headers=headers,
        )


class InvalidTransition(ReqflowError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"
    message = "This status change is not allowed"


class AccessDenied(ReqflowError):
    # Message is deliberately generic: never echo the other tenant's identifiers.
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACCESS_DENIED"
    message = "Access denied"

    def __init__(self):
        super().__init__()


class TenantMismatch(AccessDenied):
    pass


class NoOrganizationSelected(ReqflowError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "NO_ORGANIZATION_SELECTED"
    message = "No organization selected for this request"


class OrganizationInactive(ReqflowError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ORGANIZATION_INACTIVE"
    message = "Organization is suspended or cancelled"


class NoApplicableWorkflow(ReqflowError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "NO_APPLICABLE_WORKFLOW"
    message = (
        "No active approval workflow covers this amount; "
        "an administrator must configure one"
    )


class ChainAlreadyResolved(ReqflowError):
    status_code = status.HTTP_409_CONFLICT
    code = "CHAIN_ALREADY_RESOLVED"
    message = "The approval chain for this requisition is already resolved"


class RoleNotEligible(ReqflowError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ROLE_NOT_ELIGIBLE"
    message = "Your role cannot perform this action"


class EmptyLineItems(ReqflowError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "EMPTY_LINE_ITEMS"
    message = "A requisition needs at least one line item and a positive total"


class BudgetExceeded(ReqflowError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "BUDGET_EXCEEDED"
    message = "Insufficient project budget"


class PlanLimitExceeded(ReqflowError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "PLAN_LIMIT_EXCEEDED"
    message = "Your plan limit has been reached"


class RateLimitExceeded(ReqflowError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMITED"
    message = "Too many attempts, try again later"

    def __init__(self, retry_after: int):
        super().__init__(
            headers={"Retry-After": str(retry_after)},
            retry_after=retry_after,
        )


class ResourceNotFound(ReqflowError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    message = "Resource not found"


class ResourceConflict(ReqflowError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    message = "Resource already exists"


class InvalidWorkflowDefinition(ReqflowError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_WORKFLOW"
    message = "Approval workflow definition is invalid"


class IdempotencyConflict(ReqflowError):
    status_code = status.HTTP_409_CONFLICT
    code = "IDEMPOTENCY_CONFLICT"
    message = "Idempotency key was already used for a different decision"
