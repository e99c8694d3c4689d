from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from afe_approval.models.user import UserRole
from afe_approval.schemas.common import IDModel, RecordRead


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=255)
    title: str | None = Field(default=None, max_length=255)
    role: UserRole = UserRole.SIGNER

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        return value


class UserRead(RecordRead):
    email: EmailStr
    full_name: str
    title: str | None
    role: UserRole
    is_active: bool
    has_signature: bool = False


class UserSummary(IDModel):
    email: str
    full_name: str
    title: str | None = None


class UserUpdate(BaseModel):
    role: UserRole | None = None
    title: str | None = Field(default=None, max_length=255)


class UserList(BaseModel):
    items: list[UserRead]
    total: int


class SavedSignature(BaseModel):
    signature_image: str | None


class SavedSignatureUpdate(BaseModel):
    signature_image: str = Field(min_length=1)
