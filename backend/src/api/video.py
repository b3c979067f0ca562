"""Video overlay API endpoints.

- POST /video/edit: render overlays onto an uploaded or previously stored video
- POST /video/upload: store a video for later edits
- WS /video/progress/{session_id}: live progress for a client session
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, File, Form, UploadFile, WebSocket, WebSocketDisconnect, status

from src.api.deps import PipelineDep, StorageDep, get_ws_manager
from src.exceptions import RenderServiceError
from src.schemas.overlay import clamp_overlays, parse_overlays
from src.schemas.render import EditVideoData, EditVideoResponse, HardwareInfo, UploadVideoResponse
from src.utils.media_info import duration_seconds, probe_media

router = APIRouter()
logger = logging.getLogger(__name__)


def _parse_exercises(raw: Optional[str]) -> list[Any]:
    if not raw:
        return []
    try:
        exercises = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RenderServiceError(
            "Invalid exercises JSON", code="BAD_REQUEST", status_code=400
        ) from e
    if not isinstance(exercises, list):
        raise RenderServiceError(
            "Exercises must be a JSON array", code="BAD_REQUEST", status_code=400
        )
    return exercises


@router.post("/video/edit", response_model=EditVideoResponse)
async def edit_video(
    pipeline: PipelineDep,
    storage: StorageDep,
    video: Optional[UploadFile] = File(default=None),
    video_url: Optional[str] = Form(default=None, alias="videoUrl"),
    overlays: Optional[str] = Form(default=None),
    exercises: Optional[str] = Form(default=None),
    session_id: Optional[str] = Form(default=None, alias="sessionId"),
) -> EditVideoResponse:
    """
    Render overlays onto a video.

    Exactly one of ``video`` (multipart upload) or ``videoUrl`` (a URL
    returned by the upload endpoint) is required. Uploaded files are
    temporary and removed once the job ends; referenced files are kept.
    """
    if (video is None) == (not video_url):
        raise RenderServiceError(
            "Provide either a video file or a videoUrl",
            code="BAD_REQUEST",
            status_code=400,
        )

    parsed_overlays = parse_overlays(overlays)
    parsed_exercises = _parse_exercises(exercises)

    if video is not None:
        input_path = await storage.save_upload(video)
        cleanup_input = True
    else:
        input_path = storage.resolve_reference(video_url or "")
        cleanup_input = False

    try:
        info = await probe_media(str(input_path))
    except RuntimeError:
        # The pipeline reports an unreadable input as INVALID_INPUT_VIDEO
        info = {}
    duration = duration_seconds(info)
    if duration:
        parsed_overlays = clamp_overlays(parsed_overlays, duration)

    logger.info(
        f"[VIDEO API] Edit request: {len(parsed_overlays)} overlays, "
        f"{len(parsed_exercises)} exercises, session={session_id or '-'}"
    )

    result = await pipeline.run(
        input_path,
        parsed_overlays,
        session_id,
        cleanup_input=cleanup_input,
        metadata={"exercises": parsed_exercises},
    )

    return EditVideoResponse(
        data=EditVideoData(
            url=result.output_url,
            job_id=result.job_id,
            mode=result.mode.value,
            hardware=HardwareInfo(**result.hardware.to_dict()),
        )
    )


@router.post(
    "/video/upload",
    response_model=UploadVideoResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_video(storage: StorageDep, video: UploadFile = File(...)) -> UploadVideoResponse:
    """Store a video and return the URL to reference it in later edits."""
    path = await storage.save_upload(video)
    return UploadVideoResponse(file_url=storage.public_url(path))


@router.websocket("/video/progress/{session_id}")
async def progress_socket(websocket: WebSocket, session_id: str) -> None:
    """Subscribe to progress events for a client session."""
    manager = get_ws_manager(websocket)
    await manager.connect(websocket, session_id)
    logger.info(f"[PROGRESS] Client subscribed to session {session_id}")
    try:
        while True:
            # Client messages are ignored; receiving keeps the socket alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"[PROGRESS] Client left session {session_id}")
    finally:
        manager.disconnect(websocket, session_id)
