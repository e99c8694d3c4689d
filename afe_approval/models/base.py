from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class RecordBase(SQLModel):
    """UUID key plus creation and last-change timestamps, shared by every table."""

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), nullable=False)
    # None until the row is first changed
    updated_at: datetime | None = Field(default=None, nullable=True)
