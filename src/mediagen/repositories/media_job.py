"""MediaJob repository.

Provides the durable queue operations used by the media job worker.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.core.timezone import utcnow
from mediagen.models.media_job import MediaJob, MediaJobStatus, MediaJobType


class MediaJobRepository:
    """Repository for MediaJob queue rows."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def enqueue(
        self, job_type: MediaJobType, payload: dict, delay_ms: int = 0
    ) -> MediaJob:
        """Queue a job that becomes eligible after ``delay_ms`` milliseconds.

        Args:
            job_type: Handler the job is dispatched to
            payload: JSON-serializable job payload
            delay_ms: Minimum delay before the job may run

        Returns:
            Persisted queued job
        """
        job = MediaJob(
            job_type=job_type,
            payload=payload,
            run_at=utcnow() + timedelta(milliseconds=max(delay_ms, 0)),
        )
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> MediaJob | None:
        """Retrieve job by UUID."""
        result = await self.session.execute(
            select(MediaJob).where(MediaJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_by_type(
        self, job_type: MediaJobType, status: MediaJobStatus | None = None
    ) -> list[MediaJob]:
        """Retrieve jobs of a type, optionally filtered by status, oldest first."""
        query = select(MediaJob).where(MediaJob.job_type == job_type)  # type: ignore[arg-type]
        if status is not None:
            query = query.where(MediaJob.status == status)  # type: ignore[arg-type]
        result = await self.session.execute(
            query.order_by(MediaJob.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def claim_due(self, limit: int = 10) -> list[MediaJob]:
        """Lock due queued jobs and mark them running.

        Query explanation:
        - WHERE status = 'queued' AND run_at <= now
        - ORDER BY run_at ASC: Oldest due first
        - FOR UPDATE SKIP LOCKED: Concurrent workers never claim the same row

        The caller commits so the RUNNING status is visible to other workers.

        Args:
            limit: Maximum number of jobs to claim

        Returns:
            Jobs now owned by this worker
        """
        now = utcnow()
        result = await self.session.execute(
            select(MediaJob)
            .where(MediaJob.status == MediaJobStatus.QUEUED)  # type: ignore[arg-type]
            .where(MediaJob.run_at <= now)  # type: ignore[arg-type]
            .order_by(MediaJob.run_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        jobs = list(result.scalars().all())

        for job in jobs:
            job.status = MediaJobStatus.RUNNING
            job.attempts += 1
            job.started_at = now
            self.session.add(job)
        await self.session.flush()
        return jobs

    async def mark_completed(self, job: MediaJob) -> None:
        """Mark a running job as completed."""
        job.status = MediaJobStatus.COMPLETED
        job.finished_at = utcnow()
        self.session.add(job)
        await self.session.flush()

    async def mark_failed(self, job: MediaJob, error_message: str) -> None:
        """Mark a running job as failed with its error (truncated to 4000 chars)."""
        job.status = MediaJobStatus.FAILED
        job.last_error = error_message[:4000]
        job.finished_at = utcnow()
        self.session.add(job)
        await self.session.flush()

    async def recover_orphaned(self, started_before: datetime) -> int:
        """Reset jobs left running by a crashed worker back to queued.

        Query:
            UPDATE media_jobs SET status = 'queued'
            WHERE status = 'running'
              AND (started_at IS NULL OR started_at < :started_before)

        Jobs started after the cutoff may belong to another live worker
        process and are left alone.

        Args:
            started_before: Only jobs claimed before this instant are requeued

        Returns:
            Number of jobs requeued
        """
        result = await self.session.execute(
            update(MediaJob)
            .where(MediaJob.status == MediaJobStatus.RUNNING)  # type: ignore[arg-type]
            .where(
                or_(
                    MediaJob.started_at.is_(None),  # type: ignore[union-attr]
                    MediaJob.started_at < started_before,  # type: ignore[operator]
                )
            )
            .values(status=MediaJobStatus.QUEUED)
        )
        return result.rowcount or 0  # type: ignore[attr-defined]
