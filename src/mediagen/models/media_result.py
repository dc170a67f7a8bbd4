"""MediaResult entity - One produced artifact of a generation request."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from mediagen.core.timezone import utcnow


class MediaResult(SQLModel, table=True):
    """MediaResult stores the storage-native identifier (gs://...) of an artifact.

    Signed URLs are never written here; they are derived at read time.
    ``(media_generation_id, position)`` is unique so a redelivered job cannot
    insert the same artifact twice.
    """

    __tablename__ = "media_results"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint(
            "media_generation_id", "position", name="uq_media_results_generation_position"
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    media_generation_id: UUID = Field(foreign_key="media_generations.id", index=True)
    position: int = Field(default=0, ge=0)
    result_url: str = Field(sa_column=Column(Text, nullable=False))
    result_metadata: dict = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=utcnow)
