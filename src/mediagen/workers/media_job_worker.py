"""Media job worker: drains the durable ``media_jobs`` queue.

Claims due jobs with FOR UPDATE SKIP LOCKED, runs each through the
MediaGenerationProcessor with its own transactions, then completes the job and
enqueues its follow-ups together. A handler exception marks the job failed;
jobs are not retried, except for redelivery of jobs left running past the
orphan timeout by a crashed process.
"""

import asyncio
import time
from datetime import timedelta
from uuid import UUID

import structlog

from mediagen.core.config import Settings
from mediagen.core.timezone import utcnow
from mediagen.services.media.processor import MediaGenerationProcessor

logger = structlog.get_logger(__name__)


async def process_single_job(
    job_id: UUID,
    uow_factory,
    processor: MediaGenerationProcessor,
) -> None:
    """Run one claimed job to completion or failure.

    Args:
        job_id: Claimed (running) job
        uow_factory: Factory producing UnitOfWork instances
        processor: Job handler dispatcher
    """
    start_time = time.time()

    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
    if job is None:
        raise ValueError(f"Job {job_id} not found")

    log = logger.bind(job_id=str(job_id), job_type=job.job_type.value, attempt=job.attempts)
    log.debug("job.started")

    try:
        follow_ups = await processor.handle(job)
    except Exception as e:
        async with await uow_factory() as uow:
            attached = await uow.jobs.get_by_id(job_id)
            if attached is not None:
                await uow.jobs.mark_failed(attached, str(e) or type(e).__name__)
        log.error(
            "job.failed",
            error_type=type(e).__name__,
            error_message=str(e),
            duration_seconds=time.time() - start_time,
            exc_info=True,
        )
        return

    async with await uow_factory() as uow:
        attached = await uow.jobs.get_by_id(job_id)
        if attached is not None:
            await uow.jobs.mark_completed(attached)
        for follow_up in follow_ups:
            await uow.jobs.enqueue(
                follow_up.job_type,
                follow_up.payload.model_dump(mode="json"),
                follow_up.delay_ms,
            )

    log.info(
        "job.completed",
        follow_up_count=len(follow_ups),
        duration_seconds=time.time() - start_time,
    )


async def process_batch(
    uow_factory,
    processor: MediaGenerationProcessor,
    batch_size: int = 10,
) -> int:
    """Claim due jobs and process them concurrently.

    The claim transaction commits before processing so other workers see the
    jobs as running; each job then runs in its own sessions.

    Returns:
        Number of jobs claimed
    """
    async with await uow_factory() as uow:
        jobs = await uow.jobs.claim_due(limit=batch_size)
        job_ids = [job.id for job in jobs]

    if not job_ids:
        return 0

    results = await asyncio.gather(
        *[process_single_job(job_id, uow_factory, processor) for job_id in job_ids],
        return_exceptions=True,
    )

    for job_id, result in zip(job_ids, results):
        if isinstance(result, Exception):
            logger.error(
                "job.processing_error",
                job_id=str(job_id),
                error=str(result),
                error_type=type(result).__name__,
            )

    return len(job_ids)


async def recover_orphaned_jobs(uow_factory, orphan_timeout_seconds: float) -> int:
    """Requeue jobs left running longer than the orphan timeout.

    A job still running after the timeout belongs to a worker process that
    died; younger running jobs may belong to another live process.
    """
    started_before = utcnow() - timedelta(seconds=orphan_timeout_seconds)
    async with await uow_factory() as uow:
        recovered = await uow.jobs.recover_orphaned(started_before)

    if recovered > 0:
        logger.info("worker.recovery", orphaned_jobs_requeued=recovered)
    return recovered


async def run_media_job_worker(
    uow_factory,
    processor: MediaGenerationProcessor,
    settings: Settings,
) -> None:
    """Main worker loop.

    Workflow:
    1. Requeue orphaned jobs, then again once per JOB_ORPHAN_TIMEOUT_SECONDS
    2. Poll at JOB_WORKER_POLL_INTERVAL_SECONDS, processing a batch each time
    3. Propagate CancelledError for graceful shutdown
    """
    orphan_timeout = settings.job_orphan_timeout_seconds
    await recover_orphaned_jobs(uow_factory, orphan_timeout)
    last_recovery = time.monotonic()

    logger.info(
        "worker.started",
        worker="media_jobs",
        poll_interval=settings.job_worker_poll_interval_seconds,
        batch_size=settings.job_worker_batch_size,
    )

    try:
        while True:
            try:
                if time.monotonic() - last_recovery >= orphan_timeout:
                    await recover_orphaned_jobs(uow_factory, orphan_timeout)
                    last_recovery = time.monotonic()

                await process_batch(uow_factory, processor, settings.job_worker_batch_size)
                await asyncio.sleep(settings.job_worker_poll_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker="media_jobs",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="media_jobs")
        raise
