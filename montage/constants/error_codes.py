"""Error codes dictionary for the render API.

Single source of truth for all error codes and their retryability. Used by
the exception classes and HTTP handlers to produce consistent error bodies.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Request errors (not retryable, fix input)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Send a JSON body with both 'design' and 'options'",
    },
    "BAD_REQUEST": {
        "retryable": False,
    },
    "MISSING_PARAMETERS": {
        "retryable": False,
        "suggested_fix": "Pass both 'id' and 'type=VIDEO_RENDERING' query parameters",
    },
    # ==========================================================================
    # Resource errors
    # ==========================================================================
    "JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Submit a new render job; finished jobs expire after the retention window",
    },
    "JOB_NOT_CANCELLABLE": {
        "retryable": False,
    },
    # ==========================================================================
    # Render/media errors (contained inside jobs, retryable by resubmitting)
    # ==========================================================================
    "RENDER_FAILED": {
        "retryable": True,
    },
    "RENDER_CANCELLED": {
        "retryable": True,
    },
    "RENDER_TIMEOUT": {
        "retryable": True,
    },
    "MEDIA_PROBE_FAILED": {
        "retryable": False,
    },
    # ==========================================================================
    # System errors
    # ==========================================================================
    "INTERNAL_ERROR": {
        "retryable": True,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and optional fix hint
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    return get_error_spec(code).get("retryable", False)
