"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from mediagen.models.media_generation import (
    InvalidStateTransition,
    MediaGeneration,
    MediaType,
    RequestStatus,
)
from mediagen.models.media_job import MediaJob, MediaJobStatus, MediaJobType
from mediagen.models.media_result import MediaResult
from mediagen.models.project import Project

__all__ = [
    "Project",
    "MediaGeneration",
    "MediaType",
    "RequestStatus",
    "InvalidStateTransition",
    "MediaResult",
    "MediaJob",
    "MediaJobStatus",
    "MediaJobType",
]
