"""Custom exceptions for the render backend.

These exceptions integrate with the API error handling system, providing
machine-readable error codes and suggested recovery actions.
"""

from src.constants.error_codes import get_error_spec
from src.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class RenderServiceError(Exception):
    """Base exception for all render service errors.

    Provides structured error information for API responses.
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        retryable = spec.get("retryable", False)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            action = SuggestedAction(
                action=spec["suggested_action"],
                endpoint=spec.get("suggested_endpoint"),
                parameters=spec.get("parameters", {}),
            )
            suggested_actions.append(action)

        # Use suggested_fix from spec, or explicit override from exception
        suggested_fix = self.suggested_fix or spec.get("suggested_fix")

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=retryable,
            suggested_fix=suggested_fix,
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Input Errors (400/404)
# =============================================================================


class InputVideoNotFoundError(RenderServiceError):
    """Source video does not exist."""

    code = "INPUT_VIDEO_NOT_FOUND"
    status_code = 404
    message = "Input video not found"

    def __init__(self, path: str | None = None):
        message = f"Input video not found: {path}" if path else self.message
        super().__init__(message)


class InvalidInputVideoError(RenderServiceError):
    """Source file exists but is not a usable video."""

    code = "INVALID_INPUT_VIDEO"
    status_code = 400
    message = "Input file is not a video"

    def __init__(self, path: str | None = None, reason: str | None = None):
        message = self.message
        if path:
            message = f"Input file is not a video: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidOverlayError(RenderServiceError):
    """Overlay list is malformed or contains an unknown overlay kind."""

    code = "INVALID_OVERLAY"
    status_code = 400
    message = "Invalid overlay"

    def __init__(
        self,
        message: str | None = None,
        *,
        index: int | None = None,
        field: str | None = None,
        overlay_id: str | None = None,
    ):
        msg = message or self.message
        location = None
        if index is not None or field or overlay_id:
            location = ErrorLocation(index=index, field=field, overlay_id=overlay_id)
        super().__init__(msg, location=location)


class PayloadTooLargeError(RenderServiceError):
    """Uploaded video exceeds the configured size limit."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    message = "Upload exceeds the maximum size"


# =============================================================================
# Render Errors (500)
# =============================================================================


class BadgeGenerationError(RenderServiceError):
    """Timer badge image could not be produced."""

    code = "BADGE_GENERATION_FAILED"
    status_code = 500
    message = "Failed to generate timer badge"


class EngineExecutionError(RenderServiceError):
    """The transcoding engine exited with an error."""

    code = "ENGINE_EXECUTION_FAILED"
    status_code = 500
    message = "FFmpeg execution failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        returncode: int | None = None,
        diagnostics: str = "",
    ):
        msg = message or self.message
        if returncode is not None:
            msg = f"{msg} (code {returncode})"
        if diagnostics:
            msg = f"{msg}:\n{diagnostics}"
        self.returncode = returncode
        self.diagnostics = diagnostics
        super().__init__(msg)


class RenderFailedError(RenderServiceError):
    """Render job failed for an unexpected reason."""

    code = "RENDER_FAILED"
    status_code = 500
    message = "Render failed"
