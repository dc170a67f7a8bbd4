"""MediaGeneration entity - One user-initiated media generation with status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel

from mediagen.core.timezone import utcnow

ERROR_MESSAGE_MAX_LENGTH = 4000


class MediaType(str, Enum):
    """Kind of media a generation request produces."""

    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    MUSIC = "MUSIC"
    AUDIO = "AUDIO"


class RequestStatus(str, Enum):
    """Generation request lifecycle status."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({RequestStatus.SUCCEEDED, RequestStatus.FAILED})


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid generation state transition."""

    pass


class MediaGeneration(SQLModel, table=True):
    """MediaGeneration tracks a generation request from submission to a terminal state.

    ``operation_id`` (locally generated job id) and ``operation_name`` (Vertex AI
    long-running operation handle) are first-class indexed columns so the video
    job chain can find its record by direct equality.
    """

    __tablename__ = "media_generations"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(max_length=255, index=True)
    project_id: UUID = Field(foreign_key="projects.id", index=True)
    media_type: MediaType = Field(index=True)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    parameters: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    status: RequestStatus = Field(default=RequestStatus.PENDING, index=True)
    error_message: Optional[str] = Field(default=None, max_length=ERROR_MESSAGE_MAX_LENGTH)
    operation_id: Optional[str] = Field(default=None, max_length=255, index=True)
    operation_name: Optional[str] = Field(default=None, max_length=1024, index=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        """True once the request reached SUCCEEDED or FAILED."""
        return self.status in TERMINAL_STATUSES

    def mark_processing(self) -> None:
        """Transition from pending to processing.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != RequestStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. "
                "Generation must be in PENDING state."
            )
        self.status = RequestStatus.PROCESSING
        self.updated_at = utcnow()

    def mark_succeeded(self) -> None:
        """Transition from pending/processing to succeeded.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark succeeded from terminal state {self.status.value}."
            )
        self.status = RequestStatus.SUCCEEDED
        self.error_message = None
        self.updated_at = utcnow()

    def mark_failed(self, error_message: str) -> None:
        """Transition from any non-terminal state to failed.

        Args:
            error_message: Failure description (truncated to 4000 characters)

        Raises:
            InvalidStateTransition: If current status is already terminal
            ValueError: If error_message is empty
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        if not error_message:
            raise ValueError("error_message is required")
        self.status = RequestStatus.FAILED
        self.error_message = error_message[:ERROR_MESSAGE_MAX_LENGTH]
        self.updated_at = utcnow()

    def record_operation_name(self, operation_name: str) -> None:
        """Attach the Vertex AI operation handle to this request.

        The handle is written to the indexed column and echoed into
        ``parameters`` (a new dict, so the JSON column change is detected).
        """
        if not operation_name:
            raise ValueError("operation_name is required")
        self.operation_name = operation_name
        self.parameters = {**(self.parameters or {}), "operation_name": operation_name}
        self.updated_at = utcnow()
