"""Repositories for mediagen entities."""

from mediagen.repositories.media_generation import MediaGenerationRepository
from mediagen.repositories.media_job import MediaJobRepository
from mediagen.repositories.media_result import MediaResultRepository
from mediagen.repositories.project import ProjectRepository

__all__ = [
    "MediaGenerationRepository",
    "MediaJobRepository",
    "MediaResultRepository",
    "ProjectRepository",
]
