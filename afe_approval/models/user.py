from enum import Enum

from sqlmodel import Field

from afe_approval.models.base import RecordBase


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    SIGNER = "SIGNER"
    VIEWER = "VIEWER"


class User(RecordBase, table=True):
    __tablename__ = "users"

    email: str = Field(index=True, unique=True)
    full_name: str
    title: str | None = Field(default=None, max_length=255)
    role: UserRole = Field(default=UserRole.SIGNER)
    external_id: str | None = Field(default=None, index=True, max_length=255)
    # PNG data URL kept for reuse on later signatures
    signature_image: str | None = Field(default=None)
    is_active: bool = Field(default=True)
