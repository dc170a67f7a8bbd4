"""Service error hierarchy for media generation.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)

The orchestration layer raises the distinguishable kinds below; the API layer
maps them to HTTP statuses (not-found, bad-gateway, internal).
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (500, 502, 503, 504)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Malformed upstream responses
    """

    pass


# Lookup errors
class NotFoundError(PermanentError):
    """Referenced entity does not exist (or is not visible to the owner)."""

    pass


class ProjectNotFoundError(NotFoundError):
    """Project referenced by a generation request does not exist."""

    def __init__(self, project_id: object):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class MediaGenerationNotFoundError(NotFoundError):
    """Media generation record not found for the owner."""

    pass


# Gateway (Vertex AI) errors
class GatewayError(ServiceError):
    """Upstream generation failure.

    Attributes:
        status_code: Upstream HTTP status (None for network-level failures)
        model_type: Which model family failed ("image", "video", "music", "speech")
    """

    def __init__(
        self, message: str, status_code: int | None = None, model_type: str | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.model_type = model_type


class GatewayTransientError(GatewayError, TransientError):
    """Rate limit, timeout, or upstream unavailability."""

    pass


class GatewayPermanentError(GatewayError, PermanentError):
    """Authentication, validation, or malformed upstream response."""

    pass


# Persistence errors
class PersistenceError(ServiceError):
    """Saving a generation result failed."""

    pass


class NoResultsError(ServiceError):
    """Gateway returned no usable predictions."""

    def __init__(self, message: str = "No valid results returned from AI service"):
        super().__init__(message)


# Signing errors
class SigningError(ServiceError):
    """Signed URL could not be produced for a storage identifier."""

    pass


class InvalidStorageUriError(SigningError):
    """Identifier is not of the form gs://<bucket>/<path>."""

    pass


# Job errors
class PollingAttemptsExceededError(PermanentError):
    """Video operation did not complete within the polling attempt ceiling."""

    def __init__(self, operation_name: str, attempts: int):
        super().__init__(
            f"Maximum polling attempts ({attempts}) reached for operation: {operation_name}"
        )
        self.operation_name = operation_name
        self.attempts = attempts


class UnknownJobTypeError(PermanentError):
    """Queued job carries a job type no handler is registered for."""

    pass
