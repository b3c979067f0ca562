"""Transcoding engine runner.

Runs ffmpeg as an asyncio subprocess and exposes its ``-progress pipe:1``
output as an async stream of progress samples. stderr is drained
concurrently: it carries the input duration announcement and the
diagnostic text reported on failure.
"""

import asyncio
import contextlib
import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from src.exceptions import EngineExecutionError
from src.render.command import FFmpegCommand

logger = logging.getLogger(__name__)

DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
DIAGNOSTIC_TAIL_LINES = 40


def parse_duration(line: str) -> Optional[float]:
    """Parse ``Duration: HH:MM:SS.ff`` from an engine log line, in seconds."""
    match = DURATION_RE.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def _parse_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value.strip().rstrip("x"))
    except ValueError:
        return None


@dataclass
class EngineProgress:
    """One ``-progress`` block."""

    frame: int = 0
    fps: Optional[float] = None
    speed: Optional[float] = None
    total_frames: Optional[int] = None
    finished: bool = False

    @property
    def percent(self) -> int:
        if not self.total_frames:
            return 0
        return min(99, round(self.frame / self.total_frames * 100))


class _StderrState:
    def __init__(self) -> None:
        self.duration_s: Optional[float] = None
        self.tail: deque[str] = deque(maxlen=DIAGNOSTIC_TAIL_LINES)

    def text(self) -> str:
        return "\n".join(self.tail)


class FFmpegEngine:
    """Async runner for FFmpegCommands."""

    def __init__(self, nominal_fps: int = 30, timeout_s: float = 7200):
        self.nominal_fps = nominal_fps
        self.timeout_s = timeout_s

    async def stream(self, command: FFmpegCommand) -> AsyncIterator[EngineProgress]:
        """Run ``command`` and yield a sample per progress block.

        The stream is finite and cannot be restarted. Abandoning it kills the
        engine process.

        Raises:
            EngineExecutionError: On spawn failure, timeout or non-zero exit
        """
        args = command.to_args()
        logger.debug(f"[ENGINE] Running: {command.describe()}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineExecutionError(f"Failed to start {command.binary}: {e}") from e

        stderr_state = _StderrState()
        stderr_task = asyncio.create_task(self._drain_stderr(proc, stderr_state))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_s

        try:
            assert proc.stdout is not None
            block: dict[str, str] = {}
            while True:
                raw_line = await asyncio.wait_for(
                    proc.stdout.readline(), timeout=max(0.0, deadline - loop.time())
                )
                if not raw_line:
                    break
                line = raw_line.decode("utf-8", errors="replace").strip()
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                block[key] = value
                if key == "progress":
                    yield self._sample(block, stderr_state.duration_s)
                    block = {}

            returncode = await asyncio.wait_for(
                proc.wait(), timeout=max(0.0, deadline - loop.time())
            )
            await asyncio.wait_for(stderr_task, timeout=max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError as e:
            logger.error(f"[ENGINE] Timed out after {self.timeout_s}s")
            raise EngineExecutionError(
                f"FFmpeg timed out after {self.timeout_s}s",
                diagnostics=stderr_state.text(),
            ) from e
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await stderr_task

        if returncode != 0:
            logger.error(f"[ENGINE] FFmpeg exited with code {returncode}")
            raise EngineExecutionError(
                "FFmpeg execution failed",
                returncode=returncode,
                diagnostics=stderr_state.text(),
            )

    def _sample(self, block: dict[str, str], duration_s: Optional[float]) -> EngineProgress:
        try:
            frame = int(block.get("frame", "0"))
        except ValueError:
            frame = 0
        total_frames = round(duration_s * self.nominal_fps) if duration_s else None
        return EngineProgress(
            frame=frame,
            fps=_parse_float(block.get("fps")),
            speed=_parse_float(block.get("speed")),
            total_frames=total_frames,
            finished=block.get("progress") == "end",
        )

    @staticmethod
    async def _drain_stderr(proc: asyncio.subprocess.Process, state: _StderrState) -> None:
        assert proc.stderr is not None
        async for raw_line in proc.stderr:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            if state.duration_s is None:
                state.duration_s = parse_duration(line)
            state.tail.append(line)
