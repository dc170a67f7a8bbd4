"""Project entity - Container that generation requests are filed under."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from mediagen.core.timezone import utcnow


class Project(SQLModel, table=True):
    """Project owned by a user. The media core only checks that it exists."""

    __tablename__ = "projects"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(max_length=255, index=True)
    name: str = Field(max_length=255)
    created_at: datetime = Field(default_factory=utcnow)
