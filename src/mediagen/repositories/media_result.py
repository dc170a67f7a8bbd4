"""MediaResult repository.

Provides data access methods for MediaResult entities.
"""

from collections import defaultdict
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.models.media_result import MediaResult


class MediaResultRepository:
    """Repository for MediaResult entities.

    Rows are immutable once created; there is no update method.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, result: MediaResult) -> MediaResult:
        """Persist new media result to database.

        Args:
            result: MediaResult entity to persist (result_url must be storage-native)

        Returns:
            Persisted result with generated ID
        """
        self.session.add(result)
        await self.session.flush()
        return result

    async def exists(self, generation_id: UUID, position: int) -> bool:
        """Check whether a result was already stored at this position (dedup key)."""
        result = await self.session.execute(
            select(MediaResult.id)
            .where(MediaResult.media_generation_id == generation_id)  # type: ignore[arg-type]
            .where(MediaResult.position == position)  # type: ignore[arg-type]
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_by_generation(self, generation_id: UUID) -> list[MediaResult]:
        """Retrieve all results of a generation ordered by position."""
        result = await self.session.execute(
            select(MediaResult)
            .where(MediaResult.media_generation_id == generation_id)  # type: ignore[arg-type]
            .order_by(MediaResult.position.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def get_by_generations(self, generation_ids: list[UUID]) -> dict[UUID, list[MediaResult]]:
        """Retrieve results for several generations in one query.

        Returns:
            Mapping of generation id to its results (ordered by position);
            generations without results are absent from the mapping
        """
        if not generation_ids:
            return {}

        result = await self.session.execute(
            select(MediaResult)
            .where(MediaResult.media_generation_id.in_(generation_ids))  # type: ignore[attr-defined]
            .order_by(MediaResult.position.asc())  # type: ignore[attr-defined]
        )
        grouped: dict[UUID, list[MediaResult]] = defaultdict(list)
        for row in result.scalars().all():
            grouped[row.media_generation_id].append(row)
        return dict(grouped)
