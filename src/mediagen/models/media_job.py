"""MediaJob entity - Durable queue row for the asynchronous video job chain."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from mediagen.core.timezone import utcnow


class MediaJobType(str, Enum):
    """Job kinds processed by the media job worker."""

    INITIATE_VIDEO_GENERATION = "initiate-video-generation"
    POLL_VIDEO_GENERATION = "poll-video-generation"


class MediaJobStatus(str, Enum):
    """Queue row lifecycle status."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class MediaJob(SQLModel, table=True):
    """MediaJob is one queued unit of work, eligible to run once ``run_at`` has passed."""

    __tablename__ = "media_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_type: MediaJobType = Field(index=True)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    status: MediaJobStatus = Field(default=MediaJobStatus.QUEUED, index=True)
    run_at: datetime = Field(default_factory=utcnow, index=True)
    attempts: int = Field(default=0, ge=0)  # deliveries, including redeliveries after a crash
    last_error: Optional[str] = Field(default=None, max_length=4000)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = Field(default=None)
    finished_at: Optional[datetime] = Field(default=None)
