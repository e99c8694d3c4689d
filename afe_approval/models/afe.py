from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from afe_approval.models.base import RecordBase


class AfeStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PARTIALLY_SIGNED = "PARTIALLY_SIGNED"
    FULLY_SIGNED = "FULLY_SIGNED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({AfeStatus.FULLY_SIGNED, AfeStatus.REJECTED, AfeStatus.CANCELLED})
SIGNABLE_STATUSES = frozenset({AfeStatus.PENDING, AfeStatus.PARTIALLY_SIGNED})


class SignerStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SIGNED = "SIGNED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


class Afe(RecordBase, table=True):
    __tablename__ = "afes"

    name: str = Field(max_length=255)
    afe_number: str | None = Field(default=None, max_length=100, index=True)
    status: AfeStatus = Field(default=AfeStatus.DRAFT, index=True)
    original_pdf_url: str
    final_pdf_url: str | None = Field(default=None)
    created_by_id: UUID = Field(foreign_key="users.id", index=True)
    # bumped on every status transition; guarded updates compare against it
    version: int = Field(default=1, nullable=False)


class AfeSigner(RecordBase, table=True):
    __tablename__ = "afe_signers"
    __table_args__ = (UniqueConstraint("afe_id", "signing_order", name="uq_afe_signers_afe_order"),)

    afe_id: UUID = Field(foreign_key="afes.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    signing_order: int
    status: SignerStatus = Field(default=SignerStatus.PENDING)

    # PDF points, bottom-left origin
    signature_x: Optional[float] = Field(default=None)
    signature_y: Optional[float] = Field(default=None)
    signature_width: Optional[float] = Field(default=None)
    signature_height: Optional[float] = Field(default=None)
    title_x: Optional[float] = Field(default=None)
    title_y: Optional[float] = Field(default=None)
    title_width: Optional[float] = Field(default=None)
    title_height: Optional[float] = Field(default=None)
    date_x: Optional[float] = Field(default=None)
    date_y: Optional[float] = Field(default=None)
    date_width: Optional[float] = Field(default=None)
    date_height: Optional[float] = Field(default=None)

    signature_image: str | None = Field(default=None)
    signed_at: Optional[datetime] = Field(default=None)
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None)
    reject_reason: str | None = Field(default=None, max_length=1000)
