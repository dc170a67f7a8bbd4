"""Project repository.

Provides data access methods for Project entities.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.models.project import Project


class ProjectRepository:
    """Repository for Project entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, project: Project) -> Project:
        """Persist new project to database."""
        self.session.add(project)
        await self.session.flush()
        return project

    async def get_by_id(self, project_id: UUID) -> Project | None:
        """Retrieve project by UUID.

        Returns:
            Project if found, None otherwise
        """
        result = await self.session.execute(
            select(Project).where(Project.id == project_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()
