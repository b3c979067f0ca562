"""
Overlay render pipeline.

This module orchestrates one render job:
1. Validate the source video
2. Detect the hardware encoder path
3. Generate the timer badge (only when timers are present)
4. Compile the overlay filter graph
5. Execute single-pass or batched rendering
6. Report progress, completion or failure to the client session

Every file a job creates lives in its own work directory, which is removed
before run() returns or raises, together with the uploaded source when the
caller hands over ownership of it.
"""

import asyncio
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol, Union
from uuid import uuid4

from src.config import Settings, get_settings
from src.exceptions import (
    InputVideoNotFoundError,
    InvalidInputVideoError,
    RenderFailedError,
    RenderServiceError,
)
from src.render.badge import create_badge
from src.render.engine import FFmpegEngine
from src.render.executor import RenderExecutor, RenderMode
from src.render.filter_graph import FilterGraphCompiler
from src.render.hardware import HardwareCapability, HardwareCapabilityDetector
from src.render.progress import ProgressEvent, ProgressReporter
from src.schemas.overlay import TextOverlay, TimerOverlay, has_timer_overlays
from src.services.storage_service import LocalStorageService
from src.utils.fs import remove_file, remove_tree
from src.utils.media_info import probe_media

logger = logging.getLogger(__name__)


# ============================================================================
# Enums
# ============================================================================


class RenderStatus(Enum):
    """Render job status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


FINISHED_STATUSES = (RenderStatus.COMPLETED, RenderStatus.FAILED)


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass
class RenderJob:
    """Render job information."""

    id: str
    input_path: str
    output_path: str
    overlays: list[Union[TextOverlay, TimerOverlay]] = field(default_factory=list)
    session_id: Optional[str] = None
    capability: Optional[HardwareCapability] = None
    work_dir: Optional[str] = None
    badge_path: Optional[str] = None
    mode: Optional[RenderMode] = None
    status: RenderStatus = RenderStatus.PENDING
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    # Caller data carried through unchanged (e.g. exercise metadata)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "input_path": self.input_path,
            "output_path": self.output_path,
            "overlay_count": len(self.overlays),
            "session_id": self.session_id,
            "hardware": self.capability.to_dict() if self.capability else None,
            "mode": self.mode.value if self.mode else None,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
            "metadata": self.metadata,
        }


@dataclass
class RenderResult:
    """Outcome of a successful render."""

    job_id: str
    output_url: str
    output_path: str
    mode: RenderMode
    hardware: HardwareCapability

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "url": self.output_url,
            "mode": self.mode.value,
            "hardware": self.hardware.to_dict(),
        }


class Broadcaster(Protocol):
    async def emit(self, session_id: Optional[str], event: ProgressEvent) -> None: ...

    async def emit_complete(self, session_id: Optional[str], output_url: str) -> None: ...

    async def emit_error(
        self, session_id: Optional[str], error_message: str, error_code: Optional[str] = None
    ) -> None: ...


# ============================================================================
# Pipeline
# ============================================================================


class OverlayRenderPipeline:
    """Runs overlay render jobs, a bounded number at a time."""

    def __init__(
        self,
        detector: HardwareCapabilityDetector,
        broadcaster: Broadcaster,
        executor: Optional[RenderExecutor] = None,
        compiler: Optional[FilterGraphCompiler] = None,
        storage: Optional[LocalStorageService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.detector = detector
        self.broadcaster = broadcaster
        self.compiler = compiler or FilterGraphCompiler(
            font_path=self.settings.overlay_font_path,
            inline_limit=self.settings.render_inline_filter_limit,
            badge_size=self.settings.badge_size,
        )
        self.executor = executor or RenderExecutor(
            FFmpegEngine(
                nominal_fps=self.settings.render_nominal_fps,
                timeout_s=self.settings.render_engine_timeout_s,
            ),
            self.compiler,
            self.settings,
        )
        self.storage = storage or LocalStorageService(self.settings)
        self._semaphore = asyncio.Semaphore(self.settings.render_max_concurrent_jobs)
        self._jobs: dict[str, RenderJob] = {}

    def get_job(self, job_id: str) -> Optional[RenderJob]:
        """Look up an in-flight or recently finished job."""
        return self._jobs.get(job_id)

    async def run(
        self,
        input_path: Union[str, Path],
        overlays: list[Union[TextOverlay, TimerOverlay]],
        session_id: Optional[str],
        *,
        cleanup_input: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ) -> RenderResult:
        """Render ``overlays`` onto ``input_path``.

        Args:
            input_path: Source video
            overlays: Validated overlays in compositing order
            session_id: Client session receiving progress events
            cleanup_input: Delete the source afterwards (temporary uploads)
            metadata: Passed through on the job unchanged

        Returns:
            RenderResult with the output's public URL

        Raises:
            RenderServiceError: On any job failure (unexpected errors are
                wrapped in RenderFailedError)
        """
        job_id = str(uuid4())
        job = RenderJob(
            id=job_id,
            input_path=str(input_path),
            output_path=str(self.storage.new_output_path(job_id)),
            overlays=list(overlays),
            session_id=session_id,
            created_at=datetime.now(timezone.utc),
            metadata=metadata or {},
        )
        self._jobs[job.id] = job
        reporter = ProgressReporter(
            self.broadcaster,
            session_id,
            interval_ms=self.settings.progress_throttle_ms,
        )
        logger.info(
            f"[RENDER] Job {job.id} accepted: {len(job.overlays)} overlays, "
            f"session={session_id or '-'}"
        )

        try:
            async with self._semaphore:
                return await self._run_job(job, reporter)
        except RenderServiceError as e:
            await self._fail(job, e)
            raise
        except Exception as e:
            logger.exception(f"[RENDER] Job {job.id} failed unexpectedly")
            error = RenderFailedError(f"Render failed: {e}")
            await self._fail(job, error)
            raise error from e
        except asyncio.CancelledError:
            job.status = RenderStatus.FAILED
            job.completed_at = datetime.now(timezone.utc)
            job.error_message = "Render cancelled"
            remove_file(job.output_path)
            logger.warning(f"[RENDER] Job {job.id} cancelled")
            raise
        finally:
            remove_tree(job.work_dir)
            if cleanup_input:
                remove_file(job.input_path)
            self._forget_finished_jobs()

    async def _run_job(self, job: RenderJob, reporter: ProgressReporter) -> RenderResult:
        job.status = RenderStatus.PROCESSING
        job.started_at = datetime.now(timezone.utc)

        await self._validate_input(job.input_path)

        capability = await self.detector.detect()
        job.capability = capability

        await reporter.start()

        temp_root = Path(self.settings.render_temp_dir)
        temp_root.mkdir(parents=True, exist_ok=True)
        job.work_dir = tempfile.mkdtemp(prefix=f"render_{job.id[:8]}_", dir=temp_root)

        if has_timer_overlays(job.overlays):
            badge = await asyncio.to_thread(
                create_badge,
                Path(job.work_dir) / "badge.png",
                self.settings.badge_size,
                self.settings.badge_color,
                self.settings.badge_opacity,
            )
            job.badge_path = str(badge)

        plan = self.compiler.compile(job.overlays, job.badge_path, capability)
        job.mode = await self.executor.execute(job, plan, capability, on_progress=reporter.report)

        if not Path(job.output_path).is_file():
            raise RenderFailedError("Render finished without producing an output file")

        await reporter.complete()
        output_url = self.storage.public_url(job.output_path)
        await self.broadcaster.emit_complete(job.session_id, output_url)

        job.status = RenderStatus.COMPLETED
        job.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"[RENDER] Job {job.id} complete: {output_url} "
            f"(mode={job.mode.value}, hardware={capability.type.value})"
        )
        return RenderResult(
            job_id=job.id,
            output_url=output_url,
            output_path=job.output_path,
            mode=job.mode,
            hardware=capability,
        )

    async def _validate_input(self, input_path: str) -> None:
        path = Path(input_path)
        if not path.is_file():
            raise InputVideoNotFoundError(input_path)

        try:
            info = await probe_media(str(path))
        except RuntimeError as e:
            raise InvalidInputVideoError(input_path, str(e)) from e

        if not info.get("has_video"):
            raise InvalidInputVideoError(input_path, "no video stream")

    async def _fail(self, job: RenderJob, error: RenderServiceError) -> None:
        job.status = RenderStatus.FAILED
        job.completed_at = datetime.now(timezone.utc)
        job.error_message = error.message
        remove_file(job.output_path)
        logger.error(f"[RENDER] Job {job.id} failed ({error.code}): {error.message}")
        await self.broadcaster.emit_error(job.session_id, error.message, error.code)

    def _forget_finished_jobs(self) -> None:
        """Forget the oldest finished jobs beyond ``render_job_history_size``."""
        finished = [job_id for job_id, job in self._jobs.items() if job.status in FINISHED_STATUSES]
        excess = len(finished) - self.settings.render_job_history_size
        for job_id in finished[:max(excess, 0)]:
            del self._jobs[job_id]
