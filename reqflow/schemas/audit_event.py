from typing import Any, Optional

from pydantic import BaseModel


class AuditEventResponse(BaseModel):
    id: str
    event_type: str
    severity: str
    message: Optional[str] = None
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    org_id: Optional[str] = None
    target_org_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    action: Optional[str] = None
    before_state: Optional[dict[str, Any]] = None
    after_state: Optional[dict[str, Any]] = None
    details: Optional[dict[str, Any]] = None
    source_identifier: Optional[str] = None
    was_blocked: bool = False
    created_at: str

    model_config = {"from_attributes": True}
