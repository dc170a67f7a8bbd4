"""Unit of Work pattern for mediagen.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediagen.repositories.media_generation import MediaGenerationRepository
from mediagen.repositories.media_job import MediaJobRepository
from mediagen.repositories.media_result import MediaResultRepository
from mediagen.repositories.project import ProjectRepository

logger = structlog.get_logger(__name__)


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages one database transaction and exposes every repository bound to it.
    Use as async context manager for automatic commit/rollback.

    Example:
        async with await uow_factory() as uow:
            generation = await uow.generations.get_by_id(generation_id)
            generation.mark_processing()
            # Commits on successful exit, rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        self.session = session

        self.projects = ProjectRepository(session)
        self.generations = MediaGenerationRepository(session)
        self.results = MediaResultRepository(session)
        self.jobs = MediaJobRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit when the block succeeded, otherwise roll back; always close the session.

        Returns:
            False: Exceptions are always re-raised after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Async callable that creates a UnitOfWork over a new session

    Example:
        session_factory = setup_db_session(db_url)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            await uow.projects.add(project)
    """

    async def _create_uow():
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
