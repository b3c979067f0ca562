"""Error codes dictionary for the render API.

Single source of truth for error codes, their retryability and suggested
recovery actions. Used by exception handlers to build machine-readable
error responses.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str
    parameters: dict[str, Any]


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Input errors (caller must fix the request)
    # ==========================================================================
    "INPUT_VIDEO_NOT_FOUND": {
        "retryable": False,
        "suggested_action": "upload_video",
        "suggested_endpoint": "POST /api/video/upload",
        "suggested_fix": "Upload the video again or pass a videoUrl returned by the upload endpoint",
    },
    "INVALID_INPUT_VIDEO": {
        "retryable": False,
        "suggested_fix": "Provide a file that contains a video stream",
    },
    "INVALID_OVERLAY": {
        "retryable": False,
        "suggested_fix": "Overlays must be 'text' or 'timer' with startTime < endTime and x/y in 0-100",
    },
    # ==========================================================================
    # Render errors
    # ==========================================================================
    "BADGE_GENERATION_FAILED": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 1000, "max_retries": 2},
    },
    "ENGINE_EXECUTION_FAILED": {
        "retryable": False,
        "suggested_fix": "Check the source video and overlay texts; the engine diagnostic is in the message",
    },
    "RENDER_FAILED": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    # ==========================================================================
    # Request errors
    # ==========================================================================
    "BAD_REQUEST": {
        "retryable": False,
    },
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "NOT_FOUND": {
        "retryable": False,
    },
    "PAYLOAD_TOO_LARGE": {
        "retryable": False,
        "suggested_fix": "Video exceeds the maximum upload size",
    },
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})

