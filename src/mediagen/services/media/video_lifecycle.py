"""Poll step of the video generation job chain as a pure state transition.

    IN_FLIGHT --(not done)-------------> IN_FLIGHT (reschedule, retry_count + 1)
    IN_FLIGHT --(done, success)--------> COMPLETED
    IN_FLIGHT --(done, error)----------> FAILED
    IN_FLIGHT --(retry_count >= max)---> FAILED (fatal)

The ceiling is checked with ``attempts_exhausted`` before the gateway is
called; ``advance`` maps an operation status to the next step.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from mediagen.services.media.jobs import PollVideoJob
from mediagen.services.vertex_ai.types import OperationStatus, Prediction


class PollAction(str, Enum):
    RESCHEDULE = "reschedule"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PollOutcome:
    action: PollAction
    next_job: Optional[PollVideoJob] = None
    predictions: list[Prediction] = field(default_factory=list)
    error_message: Optional[str] = None


def attempts_exhausted(job: PollVideoJob, max_attempts: int) -> bool:
    return job.retry_count >= max_attempts


def advance(job: PollVideoJob, status: OperationStatus) -> PollOutcome:
    """Decide the next step of a poll chain from the latest operation status."""
    if not status.done:
        return PollOutcome(
            action=PollAction.RESCHEDULE,
            next_job=job.model_copy(update={"retry_count": job.retry_count + 1}),
        )

    if status.error is not None:
        code = f" ({status.error.code})" if status.error.code is not None else ""
        return PollOutcome(
            action=PollAction.FAILED,
            error_message=f"Video generation failed{code}: {status.error.message}",
        )

    return PollOutcome(action=PollAction.COMPLETED, predictions=list(status.predictions))
