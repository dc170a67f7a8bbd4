"""Handlers for queued media jobs.

Each handler returns the follow-up jobs to enqueue; the worker enqueues them
in the same transaction that completes the current job, so a poll chain for
one operation never has two jobs in flight.
"""

import structlog

from mediagen.core.config import Settings
from mediagen.models.media_job import MediaJob, MediaJobType
from mediagen.services.exceptions import (
    PermanentError,
    PollingAttemptsExceededError,
    TransientError,
    UnknownJobTypeError,
)
from mediagen.services.media.jobs import InitiateVideoJob, JobRequest, PollVideoJob
from mediagen.services.media.service import MediaService
from mediagen.services.media.video_lifecycle import PollAction, advance, attempts_exhausted

logger = structlog.get_logger(__name__)


class MediaGenerationProcessor:
    """Runs initiate and poll steps of the video generation job chain."""

    def __init__(self, service: MediaService, settings: Settings):
        self.service = service
        self.poll_interval_ms = settings.video_poll_interval_ms
        self.max_polling_attempts = settings.video_max_polling_attempts

    async def handle(self, job: MediaJob) -> list[JobRequest]:
        """Dispatch a claimed job to its handler.

        Raises:
            UnknownJobTypeError: No handler for the job type
        """
        if job.job_type == MediaJobType.INITIATE_VIDEO_GENERATION:
            return await self.handle_initiate(InitiateVideoJob.model_validate(job.payload))
        if job.job_type == MediaJobType.POLL_VIDEO_GENERATION:
            return await self.handle_poll(PollVideoJob.model_validate(job.payload))
        raise UnknownJobTypeError(f"No handler for job type: {job.job_type}")

    async def handle_initiate(self, payload: InitiateVideoJob) -> list[JobRequest]:
        operation_name = await self.service.initiate_video_generation(
            payload.owner_id,
            payload.project_id,
            payload.prompt,
            payload.parameters,
            payload.operation_id,
        )
        return [self._poll(PollVideoJob(owner_id=payload.owner_id, operation_name=operation_name))]

    async def handle_poll(self, payload: PollVideoJob) -> list[JobRequest]:
        """Check the operation once and decide what happens next.

        Raises:
            PollingAttemptsExceededError: retry_count reached the ceiling (record marked FAILED)
            PermanentError: Status check was rejected upstream (record marked FAILED)
        """
        log = logger.bind(operation_name=payload.operation_name, retry_count=payload.retry_count)

        if attempts_exhausted(payload, self.max_polling_attempts):
            error = PollingAttemptsExceededError(payload.operation_name, self.max_polling_attempts)
            await self.service.mark_video_generation_failed(
                payload.owner_id, payload.operation_name, str(error)
            )
            raise error

        try:
            status = await self.service.check_video_generation_status(payload.operation_name)
        except TransientError as e:
            # Counts as an attempt so a flapping upstream still hits the ceiling.
            log.warning("video.poll.transient_error", error_message=str(e))
            return [self._poll(payload.model_copy(update={"retry_count": payload.retry_count + 1}))]
        except PermanentError as e:
            await self.service.mark_video_generation_failed(
                payload.owner_id, payload.operation_name, f"Failed to check operation status: {e}"
            )
            raise

        outcome = advance(payload, status)

        if outcome.action == PollAction.RESCHEDULE:
            log.debug("video.poll.rescheduled", delay_ms=self.poll_interval_ms)
            assert outcome.next_job is not None
            return [self._poll(outcome.next_job)]

        if outcome.action == PollAction.FAILED:
            log.error("video.poll.operation_failed", error_message=outcome.error_message)
            await self.service.mark_video_generation_failed(
                payload.owner_id, payload.operation_name, outcome.error_message or "Unknown error"
            )
            return []

        log.info("video.poll.completed", prediction_count=len(outcome.predictions))
        await self.service.handle_completed_video_generation(
            payload.owner_id, payload.operation_name, outcome.predictions
        )
        return []

    def _poll(self, payload: PollVideoJob) -> JobRequest:
        return JobRequest(
            job_type=MediaJobType.POLL_VIDEO_GENERATION,
            payload=payload,
            delay_ms=self.poll_interval_ms,
        )
