"""Row locking and migrated schema tests on PostgreSQL.

SQLite ignores FOR UPDATE, so these run against the testcontainer database
built by ``alembic upgrade head``.

Tests cover:
- The migrated schema accepts every table and enforces result position uniqueness
- Concurrent claimers receive disjoint job sets (SKIP LOCKED)
- The stale sweep skips a record whose transition holds the row lock
"""

from datetime import timedelta

import pytest
from conftest import OWNER_ID
from sqlalchemy.exc import IntegrityError

from mediagen.cli.fail_stale_generations import fail_stale_generations
from mediagen.core.timezone import utcnow
from mediagen.models.media_generation import MediaGeneration, MediaType, RequestStatus
from mediagen.models.media_job import MediaJobType
from mediagen.models.media_result import MediaResult
from mediagen.models.project import Project
from mediagen.repositories.media_job import MediaJobRepository

OPERATION_NAME = "projects/test-project/locations/us-central1/operations/op-9"


async def seed_video(uow_factory, age: timedelta) -> MediaGeneration:
    async with await uow_factory() as uow:
        project = await uow.projects.add(Project(owner_id=OWNER_ID, name="Trailer"))
        return await uow.generations.add(
            MediaGeneration(
                owner_id=OWNER_ID,
                project_id=project.id,
                media_type=MediaType.VIDEO,
                prompt="A fox",
                status=RequestStatus.PROCESSING,
                operation_id="op-local-9",
                operation_name=OPERATION_NAME,
                created_at=utcnow() - age,
            )
        )


@pytest.mark.asyncio
async def test_migrated_schema_stores_generation_and_results(pg_uow_factory):
    generation = await seed_video(pg_uow_factory, timedelta(0))

    async with await pg_uow_factory() as uow:
        await uow.results.add(
            MediaResult(
                media_generation_id=generation.id,
                position=0,
                result_url="gs://gen-bucket/videos/fox.mp4",
                result_metadata={"mimeType": "video/mp4"},
            )
        )

    with pytest.raises(IntegrityError):
        async with await pg_uow_factory() as uow:
            await uow.results.add(
                MediaResult(
                    media_generation_id=generation.id,
                    position=0,
                    result_url="gs://gen-bucket/videos/fox-again.mp4",
                    result_metadata={},
                )
            )

    async with await pg_uow_factory() as uow:
        found = await uow.generations.get_by_operation_name(OWNER_ID, OPERATION_NAME)
        results = await uow.results.get_by_generation(generation.id)

    assert found.id == generation.id
    assert found.status == RequestStatus.PROCESSING
    assert [r.result_url for r in results] == ["gs://gen-bucket/videos/fox.mp4"]


@pytest.mark.asyncio
async def test_concurrent_claims_receive_disjoint_jobs(pg_session_factory, pg_uow_factory):
    async with await pg_uow_factory() as uow:
        for _ in range(4):
            await uow.jobs.enqueue(MediaJobType.POLL_VIDEO_GENERATION, {})

    async with pg_session_factory() as first, pg_session_factory() as second:
        # The first claim stays uncommitted, so its rows remain locked
        first_jobs = await MediaJobRepository(first).claim_due(limit=2)
        second_jobs = await MediaJobRepository(second).claim_due(limit=10)
        await first.commit()
        await second.commit()

    first_ids = {job.id for job in first_jobs}
    second_ids = {job.id for job in second_jobs}
    assert len(first_ids) == 2
    assert len(second_ids) == 2
    assert first_ids.isdisjoint(second_ids)


@pytest.mark.asyncio
async def test_sweep_skips_record_locked_by_completion(pg_uow_factory):
    generation = await seed_video(pg_uow_factory, timedelta(hours=2))

    async with await pg_uow_factory() as completing:
        locked = await completing.generations.get_by_operation_name(
            OWNER_ID, OPERATION_NAME, for_update=True
        )

        swept = await fail_stale_generations(pg_uow_factory, older_than_minutes=30)

        locked.mark_succeeded()
        await completing.generations.save(locked)

    assert swept == []
    async with await pg_uow_factory() as uow:
        record = await uow.generations.get_by_id(generation.id)
    assert record.status == RequestStatus.SUCCEEDED
