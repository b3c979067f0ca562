"""
Pytest fixtures for render backend tests.

Most tests run against a fake engine that records the commands it is given
and writes placeholder output files, so no ffmpeg binary is needed.

CI/CD Note:
Tests that drive the real ffmpeg binary are marked with @requires_ffmpeg and
skipped when it is not on PATH.
"""

import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

import pytest

from src.config import Settings
from src.exceptions import EngineExecutionError
from src.render.command import FFmpegCommand
from src.render.engine import EngineProgress
from src.render.hardware import HardwareCapability
from src.render.progress import ProgressEvent


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring the ffmpeg binary (skipped when missing)",
    )


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="render_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def render_settings(temp_output_dir: Path) -> Settings:
    """Settings with uploads and work dirs inside a per-test temp area."""
    return Settings(
        _env_file=None,
        uploads_dir=str(temp_output_dir / "uploads"),
        render_temp_dir=str(temp_output_dir / "work"),
        overlay_font_path="/fonts/mono-bold.ttf",
    )


@pytest.fixture
def sample_video(render_settings: Settings) -> Path:
    """Placeholder source file inside the uploads dir (probing is patched)."""
    uploads = Path(render_settings.uploads_dir)
    uploads.mkdir(parents=True, exist_ok=True)
    path = uploads / "upload_1700000000000.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    return path


class FakeEngine:
    """Stand-in for FFmpegEngine.

    Yields ``samples`` for every invocation, then writes a placeholder
    output file. ``fail_when`` decides per command whether the invocation
    fails instead.
    """

    def __init__(
        self,
        samples: Optional[list[EngineProgress]] = None,
        fail_when: Optional[Callable[[FFmpegCommand], bool]] = None,
    ):
        self.samples = samples if samples is not None else [
            EngineProgress(frame=150, total_frames=300),
            EngineProgress(frame=300, total_frames=300, finished=True),
        ]
        self.fail_when = fail_when
        self.commands: list[FFmpegCommand] = []
        # Snapshot of the filesystem as seen by each invocation
        self.input_existed: list[bool] = []
        self.script_contents: list[Optional[str]] = []

    async def stream(self, command: FFmpegCommand) -> AsyncIterator[EngineProgress]:
        self.commands.append(command)
        self.input_existed.append(Path(command.inputs[0].path).exists())
        script = command.filter_script_path
        self.script_contents.append(Path(script).read_text() if script else None)

        if self.fail_when and self.fail_when(command):
            Path(command.output_path).write_bytes(b"partial")
            raise EngineExecutionError(
                "FFmpeg execution failed",
                returncode=1,
                diagnostics="Error initializing complex filters.",
            )

        for sample in self.samples:
            yield sample
        Path(command.output_path).write_bytes(b"rendered")


class RecordingBroadcaster:
    """Collects everything the pipeline sends to client sessions."""

    def __init__(self):
        self.events: list[tuple[Optional[str], ProgressEvent]] = []
        self.completed: list[tuple[Optional[str], str]] = []
        self.errors: list[tuple[Optional[str], str, Optional[str]]] = []

    async def emit(self, session_id: Optional[str], event: ProgressEvent) -> None:
        self.events.append((session_id, event))

    async def emit_complete(self, session_id: Optional[str], output_url: str) -> None:
        self.completed.append((session_id, output_url))

    async def emit_error(
        self,
        session_id: Optional[str],
        error_message: str,
        error_code: Optional[str] = None,
    ) -> None:
        self.errors.append((session_id, error_message, error_code))

    @property
    def percents(self) -> list[int]:
        return [event.percent for _, event in self.events]


class FakeDetector:
    def __init__(self, capability: Optional[HardwareCapability] = None):
        self.capability = capability or HardwareCapability.none()
        self.calls = 0

    async def detect(self) -> HardwareCapability:
        self.calls += 1
        return self.capability


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


def text_overlay(index: int = 0, **overrides: Any) -> dict[str, Any]:
    data = {
        "type": "text",
        "id": f"t{index}",
        "text": f"Caption {index}",
        "startTime": float(index),
        "endTime": float(index) + 2,
        "x": 50,
        "y": 80,
    }
    data.update(overrides)
    return data


def timer_overlay(index: int = 0, **overrides: Any) -> dict[str, Any]:
    data = {
        "type": "timer",
        "id": f"timer{index}",
        "text": "Plank",
        "startTime": 10.0,
        "endTime": 70.0,
        "x": 90,
        "y": 5,
        "fontSize": 18,
        "timerType": "elapsed",
        "timerFormat": "MM:SS",
    }
    data.update(overrides)
    return data


# -----------------------------------------------------------------------------
# Filter graph reader
#
# Mirrors how ffmpeg tokenises a filter graph so tests can check what each
# filter will actually receive, not just the serialised string.
# -----------------------------------------------------------------------------

FFMPEG_WHITESPACE = " \n\t\r"
OPTION_KEY_RE = re.compile(r"^([A-Za-z0-9_/.-]+)=")


def ffmpeg_get_token(buf: str, terms: str) -> tuple[str, str]:
    """Read one token the way av_get_token does; returns (token, rest).

    Backslash escapes the next character, single quotes protect a run, and
    unprotected trailing whitespace is dropped.
    """
    i, n = 0, len(buf)
    while i < n and buf[i] in FFMPEG_WHITESPACE:
        i += 1

    out: list[str] = []
    end = 0
    while i < n and buf[i] not in terms:
        c = buf[i]
        i += 1
        if c == "\\" and i < n:
            out.append(buf[i])
            i += 1
            end = len(out)
        elif c == "'":
            while i < n and buf[i] != "'":
                out.append(buf[i])
                i += 1
            if i < n:
                i += 1
                end = len(out)
        else:
            out.append(c)

    while len(out) > end and out[-1] in FFMPEG_WHITESPACE:
        out.pop()
    return "".join(out), buf[i:]


def parse_filter_options(args: str) -> dict[str, str]:
    """Split ``key=value:...`` filter arguments; positional values get "0", "1"..."""
    options: dict[str, str] = {}
    rest = args
    while rest:
        match = OPTION_KEY_RE.match(rest)
        if match:
            key = match.group(1)
            rest = rest[match.end():]
        else:
            key = str(len(options))
        value, rest = ffmpeg_get_token(rest, ":")
        options[key] = value
        if rest.startswith(":"):
            rest = rest[1:]
    return options


@dataclass
class ParsedFilter:
    inputs: list[str]
    name: str
    options: dict[str, str]
    outputs: list[str]


def _parse_link_labels(buf: str) -> tuple[list[str], str]:
    labels: list[str] = []
    buf = buf.lstrip(FFMPEG_WHITESPACE)
    while buf.startswith("["):
        label, buf = ffmpeg_get_token(buf[1:], "]")
        if not buf.startswith("]"):
            raise ValueError(f"Unterminated link label: {label!r}")
        labels.append(label)
        buf = buf[1:].lstrip(FFMPEG_WHITESPACE)
    return labels, buf


def parse_filter_graph(expression: str) -> list[ParsedFilter]:
    """Parse a filter graph into its filters, in order."""
    filters: list[ParsedFilter] = []
    rest = expression
    while rest.strip(FFMPEG_WHITESPACE):
        inputs, rest = _parse_link_labels(rest)
        name, rest = ffmpeg_get_token(rest, "=,;[")
        args = ""
        if rest.startswith("="):
            args, rest = ffmpeg_get_token(rest[1:], "[],;")
        outputs, rest = _parse_link_labels(rest)
        filters.append(ParsedFilter(inputs, name, parse_filter_options(args), outputs))
        if rest[:1] in (",", ";"):
            rest = rest[1:]
        elif rest:
            raise ValueError(f"Unexpected text after filter {name!r}: {rest!r}")
    return filters


def drawn_literal_text(text: str) -> str:
    """Characters drawtext draws for a ``text`` value with no ``%{...}`` sequences."""
    out: list[str] = []
    i = 0
    while i < len(text):
        c = text[i]
        if c == "\\" and i + 1 < len(text):
            out.append(text[i + 1])
            i += 2
        elif c == "%":
            raise ValueError(f"Stray % in drawtext text: {text!r}")
        else:
            out.append(c)
            i += 1
    return "".join(out)
