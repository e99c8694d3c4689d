from datetime import datetime
from typing import Any, List
from uuid import UUID

from pydantic import BaseModel

from afe_approval.schemas.common import IDModel


class AuditEventRead(IDModel):
    created_at: datetime
    entity_type: str
    entity_id: UUID
    action: str
    actor_id: UUID | None
    ip_address: str | None
    user_agent: str | None
    details: dict[str, Any] | None


class AuditEventList(BaseModel):
    items: List[AuditEventRead]
    total: int
    page: int
    page_size: int
