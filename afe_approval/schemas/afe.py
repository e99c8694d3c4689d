from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from afe_approval.models.afe import AfeStatus, SignerStatus
from afe_approval.schemas.common import IDModel, ORMModel, RecordRead
from afe_approval.schemas.user import UserSummary


class AfeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    afe_number: str | None = Field(default=None, max_length=100)
    original_pdf_url: str = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("AFE name is required")
        return value


class SignerAssign(BaseModel):
    """One slot of a signer chain; every coordinate is already in PDF points."""

    user_id: UUID
    signing_order: int = Field(gt=0)
    signature_x: float | None = None
    signature_y: float | None = None
    signature_width: float | None = Field(default=None, gt=0)
    signature_height: float | None = Field(default=None, gt=0)
    title_x: float | None = None
    title_y: float | None = None
    title_width: float | None = Field(default=None, gt=0)
    title_height: float | None = Field(default=None, gt=0)
    date_x: float | None = None
    date_y: float | None = None
    date_width: float | None = Field(default=None, gt=0)
    date_height: float | None = Field(default=None, gt=0)


class SignersAssignRequest(BaseModel):
    signers: list[SignerAssign]


class SignRequest(BaseModel):
    confirmed: Literal[True]
    signature_image: str | None = None
    signature_x: float | None = None
    signature_y: float | None = None
    signature_width: float | None = Field(default=None, gt=0)
    signature_height: float | None = Field(default=None, gt=0)


class RejectRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class SignerRead(IDModel):
    user_id: UUID
    signing_order: int
    status: SignerStatus
    signature_x: float | None
    signature_y: float | None
    signature_width: float | None
    signature_height: float | None
    title_x: float | None
    title_y: float | None
    title_width: float | None
    title_height: float | None
    date_x: float | None
    date_y: float | None
    date_width: float | None
    date_height: float | None
    signed_at: datetime | None
    reject_reason: str | None = None
    user: UserSummary | None = None


class AfeRead(RecordRead):
    name: str
    afe_number: str | None
    status: AfeStatus
    original_pdf_url: str
    final_pdf_url: str | None
    created_by_id: UUID
    created_by: UserSummary | None = None
    signers: list[SignerRead] = []


class AfeList(BaseModel):
    items: list[AfeRead]
    total: int
    page: int
    page_size: int
    total_pages: int


class PageInfoRead(BaseModel):
    page_count: int
    width: float
    height: float
    rotation: int
    title: str | None = None
    author: str | None = None


class PlacementRequest(BaseModel):
    """A click (``point``) or drag (``box``) on the canvas the first page was rendered to."""

    kind: Literal["point", "box"]
    render_width: float = Field(gt=0)
    render_height: float = Field(gt=0)
    x: float
    y: float
    width: float | None = None
    height: float | None = None

    @model_validator(mode="after")
    def box_needs_size(self) -> "PlacementRequest":
        if self.kind == "box" and (self.width is None or self.height is None):
            raise ValueError("A box placement needs width and height")
        return self


class PlacementRead(ORMModel):
    x: float
    y: float
    width: float | None = None
    height: float | None = None
    pdf_width: float
    pdf_height: float


class UploadRead(BaseModel):
    url: str
    filename: str
    size: int
    page_count: int
