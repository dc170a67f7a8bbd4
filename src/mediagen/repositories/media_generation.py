"""MediaGeneration repository.

Provides data access methods for MediaGeneration entities, including the
operation lookups used by the video job chain and the filtered history query.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.core.timezone import utcnow
from mediagen.models.media_generation import (
    ERROR_MESSAGE_MAX_LENGTH,
    TERMINAL_STATUSES,
    MediaGeneration,
    MediaType,
    RequestStatus,
)

OPEN_STATUSES = [status for status in RequestStatus if status not in TERMINAL_STATUSES]


class MediaGenerationRepository:
    """Repository for MediaGeneration entities.

    Lookups that precede a status transition take ``for_update=True`` so the
    job chain and the stale sweep never interleave a read-then-write on the
    same row.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, generation: MediaGeneration) -> MediaGeneration:
        """Persist new generation request to database.

        Args:
            generation: MediaGeneration entity to persist

        Returns:
            Persisted generation with generated ID
        """
        self.session.add(generation)
        await self.session.flush()
        return generation

    async def save(self, generation: MediaGeneration) -> MediaGeneration:
        """Flush pending changes on an existing generation and reload it."""
        self.session.add(generation)
        await self.session.flush()
        await self.session.refresh(generation)
        return generation

    async def get_by_id(
        self, generation_id: UUID, owner_id: str | None = None, for_update: bool = False
    ) -> MediaGeneration | None:
        """Retrieve generation by UUID, optionally scoped to its owner.

        Args:
            generation_id: Generation's unique identifier
            owner_id: When given, records of other owners are not returned
            for_update: Lock the row until the transaction ends

        Returns:
            MediaGeneration if found, None otherwise
        """
        query = select(MediaGeneration).where(MediaGeneration.id == generation_id)  # type: ignore[arg-type]
        if owner_id is not None:
            query = query.where(MediaGeneration.owner_id == owner_id)  # type: ignore[arg-type]
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_operation_id(self, owner_id: str, operation_id: str) -> MediaGeneration | None:
        """Retrieve generation by the locally generated async job id."""
        result = await self.session.execute(
            select(MediaGeneration)
            .where(MediaGeneration.owner_id == owner_id)  # type: ignore[arg-type]
            .where(MediaGeneration.operation_id == operation_id)  # type: ignore[arg-type]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_operation_name(
        self, owner_id: str, operation_name: str, for_update: bool = False
    ) -> MediaGeneration | None:
        """Retrieve generation by the Vertex AI long-running operation handle."""
        query = (
            select(MediaGeneration)
            .where(MediaGeneration.owner_id == owner_id)  # type: ignore[arg-type]
            .where(MediaGeneration.operation_name == operation_name)  # type: ignore[arg-type]
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def search(
        self,
        owner_id: str,
        *,
        media_type: MediaType | None = None,
        status: RequestStatus | None = None,
        project_id: UUID | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> list[MediaGeneration]:
        """Retrieve the owner's generations with optional filters, newest first.

        Args:
            owner_id: Owner whose history is listed
            media_type: Optional media type filter
            status: Optional status filter
            project_id: Optional project filter
            search: Optional case-insensitive substring match on the prompt
            offset: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            List of generations ordered by created_at (newest first)
        """
        query = _filtered(
            select(MediaGeneration), owner_id, media_type, status, project_id, search
        )
        query = (
            query.order_by(MediaGeneration.created_at.desc())  # type: ignore[attr-defined]
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(
        self,
        owner_id: str,
        *,
        media_type: MediaType | None = None,
        status: RequestStatus | None = None,
        project_id: UUID | None = None,
        search: str | None = None,
    ) -> int:
        """Count the owner's generations matching the same filters as search()."""
        query = _filtered(
            select(func.count(MediaGeneration.id)),  # type: ignore[arg-type]
            owner_id,
            media_type,
            status,
            project_id,
            search,
        )
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def get_stale(
        self, statuses: list[RequestStatus], created_before: datetime, limit: int = 500
    ) -> list[MediaGeneration]:
        """Lock non-terminal generations created before a cutoff, oldest first.

        Used by the stale generation sweep to close records whose job chain died.

        Query explanation:
        - WHERE status IN (:statuses) AND created_at < :cutoff
        - FOR UPDATE SKIP LOCKED: Rows a job is transitioning right now are left out
        """
        result = await self.session.execute(
            select(MediaGeneration)
            .where(MediaGeneration.status.in_(statuses))  # type: ignore[attr-defined]
            .where(MediaGeneration.created_at < created_before)  # type: ignore[arg-type]
            .order_by(MediaGeneration.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def fail_if_open(self, generation: MediaGeneration, error_message: str) -> bool:
        """Mark a generation FAILED only while it is still PENDING or PROCESSING.

        Query:
            UPDATE media_generations
            SET status = 'FAILED', error_message = :message, updated_at = :now
            WHERE id = :id AND status IN ('PENDING', 'PROCESSING')

        The status check is part of the UPDATE, so a terminal state committed
        by another transaction after ``generation`` was read is kept.

        Returns:
            True if the row transitioned; ``generation`` is reloaded either way
        """
        result = await self.session.execute(
            update(MediaGeneration)
            .where(MediaGeneration.id == generation.id)  # type: ignore[arg-type]
            .where(MediaGeneration.status.in_(OPEN_STATUSES))  # type: ignore[attr-defined]
            .values(
                status=RequestStatus.FAILED,
                error_message=error_message[:ERROR_MESSAGE_MAX_LENGTH],
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(generation)
        return bool(result.rowcount)  # type: ignore[attr-defined]


def _filtered(query, owner_id, media_type, status, project_id, search):
    query = query.where(MediaGeneration.owner_id == owner_id)  # type: ignore[arg-type]
    if media_type is not None:
        query = query.where(MediaGeneration.media_type == media_type)  # type: ignore[arg-type]
    if status is not None:
        query = query.where(MediaGeneration.status == status)  # type: ignore[arg-type]
    if project_id is not None:
        query = query.where(MediaGeneration.project_id == project_id)  # type: ignore[arg-type]
    if search:
        query = query.where(MediaGeneration.prompt.ilike(f"%{search}%"))  # type: ignore[attr-defined]
    return query
