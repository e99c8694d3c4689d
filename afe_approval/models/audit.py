from enum import Enum
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from afe_approval.models.base import RecordBase


class AuditEntity(str, Enum):
    AFE = "AFE"
    USER = "USER"
    SIGNER = "SIGNER"


class AuditLog(RecordBase, table=True):
    __tablename__ = "audit_logs"

    entity_type: str = Field(index=True)
    # not a foreign key: entries outlive deleted AFEs
    entity_id: UUID = Field(index=True)
    action: str = Field(index=True)
    actor_id: UUID | None = Field(default=None, foreign_key="users.id")
    ip_address: str | None = Field(default=None)
    user_agent: str | None = Field(default=None)
    details: dict | None = Field(default_factory=dict, sa_type=JSON)
