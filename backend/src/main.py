import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from src.api import video
from src.api.websocket import ProgressBroadcaster, WebSocketManager
from src.config import Settings, get_settings
from src.constants.error_codes import get_error_spec
from src.exceptions import RenderServiceError
from src.render.hardware import HardwareCapabilityDetector
from src.render.pipeline import OverlayRenderPipeline
from src.schemas.envelope import ErrorInfo, ErrorResponse
from src.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)


def _http_error_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        413: "PAYLOAD_TOO_LARGE",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
    }
    return mapping.get(status_code, "HTTP_ERROR")


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    envelope = ErrorResponse(error=error)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(envelope.model_dump(exclude_none=True)),
    )


def _spec_error(code: str, message: str) -> ErrorInfo:
    spec = get_error_spec(code)
    return ErrorInfo(
        code=code,
        message=message,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup: one detector, broadcaster and pipeline per process
        storage = LocalStorageService(settings)
        detector = HardwareCapabilityDetector(
            ffmpeg_path=settings.ffmpeg_path,
            timeout_s=settings.hw_detect_timeout_s,
            max_output_bytes=settings.hw_detect_max_output_bytes,
        )
        broadcaster = ProgressBroadcaster(WebSocketManager())
        app.state.storage = storage
        app.state.broadcaster = broadcaster
        app.state.pipeline = OverlayRenderPipeline(
            detector=detector,
            broadcaster=broadcaster,
            storage=storage,
            settings=settings,
        )
        logger.info(f"[VIDEO API] {settings.app_name} {settings.app_version} started")
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RenderServiceError)
    async def render_service_exception_handler(
        request: Request, exc: RenderServiceError
    ) -> JSONResponse:
        return _error_response(exc.status_code, exc.to_error_info())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle FastAPI request validation errors (422) with the error envelope."""
        # Build a human-readable message from validation errors
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            loc = " -> ".join(str(x) for x in first_error.get("loc", []))
            msg = first_error.get("msg", "Validation error")
            message = f"{loc}: {msg}" if loc else msg
        else:
            message = "Request validation failed"
        return _error_response(422, _spec_error("VALIDATION_ERROR", message))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        error_code = _http_error_code(exc.status_code)
        return _error_response(exc.status_code, _spec_error(error_code, str(exc.detail)))

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return _error_response(500, _spec_error("INTERNAL_ERROR", "Internal server error"))

    # Routers
    app.include_router(video.router, prefix="/api", tags=["video"])

    # Rendered outputs (and stored uploads) are served as static files
    uploads_dir = Path(settings.uploads_dir)
    uploads_dir.mkdir(parents=True, exist_ok=True)
    app.mount(
        "/" + settings.uploads_url_prefix.strip("/"),
        StaticFiles(directory=uploads_dir),
        name="uploads",
    )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version, "git_hash": settings.git_hash}

    @app.get("/api/version")
    async def get_version() -> dict[str, str]:
        """Return the backend version info."""
        return {"version": settings.app_version, "git_hash": settings.git_hash}

    return app


app = create_app()
