from src.schemas.envelope import ErrorInfo, ErrorLocation, ErrorResponse
from src.schemas.render import EditVideoData, EditVideoResponse, HardwareInfo, UploadVideoResponse

# Overlay models live in src.schemas.overlay; they raise src.exceptions errors,
# which in turn import the envelope models above.

__all__ = [
    "EditVideoData",
    "EditVideoResponse",
    "HardwareInfo",
    "UploadVideoResponse",
    "ErrorInfo",
    "ErrorLocation",
    "ErrorResponse",
]
