"""Progress events and per-job throttling."""

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """Progress sample sent to a client session."""

    percent: int
    stage: str
    frame: Optional[int] = None
    total_frames: Optional[int] = None
    fps: Optional[float] = None
    speed: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with wire field names, omitting absent values."""
        data: dict[str, Any] = {"percent": self.percent, "stage": self.stage}
        optional = {
            "frame": self.frame,
            "totalFrames": self.total_frames,
            "fps": self.fps,
            "speed": self.speed,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


class ProgressSink(Protocol):
    async def emit(self, session_id: Optional[str], event: ProgressEvent) -> None: ...


class ProgressReporter:
    """Throttled, monotonic progress for one job.

    At most one event per ``interval_ms``. Forced events (job start and
    completion) always go out. Percent never decreases across the job, so a
    restart of the work (single pass falling back to batches) does not move
    the bar backwards.
    """

    def __init__(
        self,
        sink: ProgressSink,
        session_id: Optional[str],
        interval_ms: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sink = sink
        self.session_id = session_id
        self.interval_s = interval_ms / 1000
        self.clock = clock
        self._last_emit_at: Optional[float] = None
        self._last_percent = 0

    @property
    def last_percent(self) -> int:
        return self._last_percent

    async def report(self, event: ProgressEvent, force: bool = False) -> bool:
        """Send ``event`` unless throttled. Returns whether it was sent."""
        if not self.session_id:
            return False

        now = self.clock()
        if not force:
            if self._last_emit_at is not None and now - self._last_emit_at < self.interval_s:
                return False
            # Only the forced completion event may report 100
            percent = max(min(99, event.percent), self._last_percent)
        else:
            percent = min(100, max(event.percent, self._last_percent))

        if percent != event.percent:
            event = replace(event, percent=percent)

        self._last_emit_at = now
        self._last_percent = percent
        await self.sink.emit(self.session_id, event)
        return True

    async def start(self) -> None:
        await self.report(ProgressEvent(percent=0, stage="Starting"), force=True)

    async def complete(self) -> None:
        await self.report(ProgressEvent(percent=100, stage="Complete"), force=True)
