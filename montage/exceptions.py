"""Custom exceptions for the montage render service.

Every exception carries a machine-readable code (see
``montage.constants.error_codes``) and the HTTP status it maps to when it
escapes a request handler. Render failures never escape: the job manager
catches them and records the message on the job.
"""

from typing import Any

from montage.constants.error_codes import get_error_spec


class MontageError(Exception):
    """Base exception for all montage application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return get_error_spec(self.code).get("retryable", False)

    def to_error_body(self) -> dict[str, Any]:
        """Convert exception to the ``{"error": ...}`` response body."""
        return {"error": self.message}


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(MontageError):
    """Missing or malformed request fields. Raised before any job exists."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Missing required design data or options"


class MissingParametersError(ValidationError):
    """Status query without an id or with the wrong discriminator."""

    code = "MISSING_PARAMETERS"
    message = "Missing required parameters"


# =============================================================================
# Resource Errors
# =============================================================================


class JobNotFoundError(MontageError):
    """Unknown (or expired) render job id."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        self.job_id = job_id
        super().__init__(message)


class JobNotCancellableError(MontageError):
    """Cancellation requested for a job that already reached a terminal state."""

    code = "JOB_NOT_CANCELLABLE"
    status_code = 409
    message = "Job is already finished"

    def __init__(self, job_id: str | None = None, status: str | None = None):
        message = self.message
        if job_id and status:
            message = f"Job {job_id} is already {status}"
        super().__init__(message)


class InvalidJobTransitionError(MontageError):
    """A status change that the job lifecycle does not allow."""

    code = "INTERNAL_ERROR"
    message = "Invalid job status transition"

    def __init__(self, job_id: str, current: str, requested: str):
        super().__init__(f"Job {job_id}: cannot move from {current} to {requested}")


# =============================================================================
# Render Errors (contained inside the job manager)
# =============================================================================


class RenderFailure(MontageError):
    """Any failure while bundling, resolving the composition or encoding."""

    code = "RENDER_FAILED"
    message = "Render failed"


class RenderCancelled(RenderFailure):
    """The job's cancellation token was triggered mid-render."""

    code = "RENDER_CANCELLED"
    message = "Render cancelled"


class RenderStalled(RenderFailure):
    """The render engine stopped reporting progress within the stall window."""

    code = "RENDER_TIMEOUT"
    message = "Render stalled"

    def __init__(self, timeout_s: float | None = None):
        message = self.message
        if timeout_s is not None:
            message = f"Render made no progress for {timeout_s:g}s"
        super().__init__(message)


class MediaProbeError(MontageError):
    """Media metadata/frame extraction failed for a single source file."""

    code = "MEDIA_PROBE_FAILED"
    status_code = 422
    message = "Failed to read media file"

    def __init__(self, source: str | None = None, detail: str | None = None):
        message = self.message
        if source:
            message = f"Failed to read media file: {source}"
        if detail:
            message = f"{message} ({detail})"
        self.source = source
        super().__init__(message)
