"""Job payloads and the enqueue side of the durable media job queue."""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from mediagen.models.media_job import MediaJobType

logger = structlog.get_logger(__name__)


class InitiateVideoJob(BaseModel):
    """Start a Veo operation for a request accepted by the API.

    ``operation_id`` is generated locally and identifies the record until the
    gateway's own operation handle is known.
    """

    owner_id: str
    project_id: UUID
    prompt: str
    operation_id: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class PollVideoJob(BaseModel):
    """Check one Veo operation; ``retry_count`` counts polls already made."""

    owner_id: str
    operation_name: str
    retry_count: int = Field(default=0, ge=0)


@dataclass(frozen=True)
class JobRequest:
    """Follow-up job returned by a handler, enqueued by the worker."""

    job_type: MediaJobType
    payload: BaseModel
    delay_ms: int = 0


class JobQueue:
    """Enqueues jobs into the ``media_jobs`` table, one transaction per call."""

    def __init__(self, uow_factory):
        self.uow_factory = uow_factory

    async def enqueue(
        self, job_type: MediaJobType, payload: BaseModel, delay_ms: int = 0
    ) -> UUID:
        """Queue a job and return its id.

        Args:
            job_type: Handler the job is dispatched to
            payload: Pydantic payload (stored as JSON)
            delay_ms: Minimum delay before the job becomes due
        """
        async with await self.uow_factory() as uow:
            job = await uow.jobs.enqueue(job_type, payload.model_dump(mode="json"), delay_ms)
            job_id = job.id

        logger.info("job.enqueued", job_id=str(job_id), job_type=job_type.value, delay_ms=delay_ms)
        return job_id
