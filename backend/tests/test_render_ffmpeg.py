"""Renders driven through the real ffmpeg binary.

Features:
- Awkward caption text reaching filters byte-for-byte
- Text and timer overlays (MM:SS and seconds) rendered in a single pass
- The same overlays rendered in batches
- A full pipeline job against a generated clip
"""

import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest

from conftest import FakeDetector, RecordingBroadcaster, requires_ffmpeg, text_overlay, timer_overlay
from src.render.badge import create_badge
from src.render.engine import FFmpegEngine
from src.render.executor import RenderExecutor, RenderMode
from src.render.filter_graph import FilterGraphCompiler
from src.render.hardware import HardwareCapability
from src.render.pipeline import OverlayRenderPipeline, RenderJob
from src.render.text_renderer import format_filter, quote_option_value
from src.schemas.overlay import parse_overlays
from src.services.storage_service import LocalStorageService
from src.utils.media_info import get_media_info

pytestmark = requires_ffmpeg

FONT_DIRS = [
    "/usr/share/fonts",
    "/usr/local/share/fonts",
    "/Library/Fonts",
    "/System/Library/Fonts",
]

AWKWARD_CAPTION = "it's 50% off: a\\b, [x]; ok"

CAPTIONS = [
    "Let's go",
    "Round 1: Squats",
    "100% effort",
    "C:\\temp\\new",
    "a,b;c [0:v]",
    AWKWARD_CAPTION,
    "trailing\\",
]


def ffmpeg_lists(flag: str) -> str:
    result = subprocess.run(
        ["ffmpeg", "-hide_banner", flag], capture_output=True, text=True, timeout=30
    )
    return result.stdout


def find_font() -> str | None:
    fonts: list[Path] = []
    for root in FONT_DIRS:
        if Path(root).is_dir():
            fonts.extend(Path(root).rglob("*.ttf"))
    if not fonts:
        return None
    # Prefer a plain Latin face when one is installed
    fonts.sort(key=lambda p: ("DejaVuSans" not in p.name, p.name))
    return str(fonts[0])


@pytest.fixture(scope="module")
def font_path() -> str:
    if " drawtext " not in ffmpeg_lists("-filters"):
        pytest.skip("ffmpeg built without drawtext")
    if " libx264 " not in ffmpeg_lists("-encoders"):
        pytest.skip("ffmpeg built without libx264")
    font = find_font()
    if font is None:
        pytest.skip("no TrueType font installed")
    return font


@pytest.fixture
def source_clip(temp_output_dir: Path) -> Path:
    """3 second 320x240 clip with a tone on the audio track."""
    path = temp_output_dir / "source.mp4"
    subprocess.run(
        [
            "ffmpeg", "-hide_banner", "-y",
            "-f", "lavfi", "-i", "testsrc=duration=3:size=320x240:rate=30",
            "-f", "lavfi", "-i", "sine=frequency=440:duration=3",
            "-c:v", "mpeg4", "-c:a", "aac", "-shortest",
            str(path),
        ],
        check=True,
        capture_output=True,
        timeout=60,
    )
    return path


def overlay_set():
    return parse_overlays([
        text_overlay(0, text=AWKWARD_CAPTION, startTime=0, endTime=2),
        timer_overlay(1, text="Plank: 1's", startTime=0, endTime=3, timerFormat="MM:SS"),
        timer_overlay(2, text="100%", startTime=0.5, endTime=3, timerType="countdown", timerFormat="seconds"),
        timer_overlay(3, startTime=1, endTime=3, timerType="countdown", timerFormat="MM:SS"),
        text_overlay(4, text="[end]; 'done'", startTime=2, endTime=3),
    ])


async def render(settings, source: Path, font: str) -> tuple[RenderMode, Path, Path]:
    work_dir = Path(tempfile.mkdtemp(prefix="job_", dir=settings.render_temp_dir))
    output = Path(settings.uploads_dir) / "edited" / "out.mp4"
    output.parent.mkdir(parents=True, exist_ok=True)

    overlays = overlay_set()
    badge = create_badge(work_dir / "badge.png", settings.badge_size)
    compiler = FilterGraphCompiler(font_path=font, badge_size=settings.badge_size)
    executor = RenderExecutor(FFmpegEngine(timeout_s=120), compiler, settings)
    job = RenderJob(
        id="job-1",
        input_path=str(source),
        output_path=str(output),
        overlays=overlays,
        work_dir=str(work_dir),
        badge_path=str(badge),
    )
    capability = HardwareCapability.none()

    mode = await executor.execute(job, compiler.compile(overlays, badge, capability), capability)
    return mode, output, work_dir


class TestFilterArguments:
    """Serialised filter arguments arrive unchanged after ffmpeg parses them."""

    @pytest.mark.parametrize("caption", CAPTIONS)
    def test_option_value_round_trips(self, caption, temp_output_dir: Path):
        printed = temp_output_dir / "metadata.txt"
        graph = (
            "[0:v]"
            + format_filter("metadata", [
                ("mode", "add"),
                ("key", "caption"),
                ("value", quote_option_value(caption)),
            ])
            + ","
            + format_filter("metadata", [("mode", "print"), ("file", quote_option_value(str(printed)))])
            + "[out]"
        )

        subprocess.run(
            [
                "ffmpeg", "-hide_banner", "-y",
                "-f", "lavfi", "-i", "testsrc=duration=1:size=64x64:rate=1",
                "-filter_complex", graph, "-map", "[out]",
                "-frames:v", "1", "-f", "null", "-",
            ],
            check=True,
            capture_output=True,
            timeout=60,
        )

        assert f"caption={caption}" in printed.read_text().splitlines()


class TestRealRender:
    """Text and timer overlays rendered onto a generated clip."""

    @pytest.mark.asyncio
    async def test_single_pass(self, render_settings, source_clip, font_path):
        Path(render_settings.render_temp_dir).mkdir(parents=True, exist_ok=True)

        mode, output, _ = await render(render_settings, source_clip, font_path)

        assert mode == RenderMode.SINGLE_PASS
        info = get_media_info(str(output))
        assert info["has_video"] is True
        assert info["has_audio"] is True
        assert (info["width"], info["height"]) == (320, 240)
        assert 2800 <= info["duration_ms"] <= 3200

    @pytest.mark.asyncio
    async def test_batched(self, render_settings, source_clip, font_path):
        render_settings.render_single_pass_max_overlays = 0
        render_settings.render_batch_size = 2
        Path(render_settings.render_temp_dir).mkdir(parents=True, exist_ok=True)

        mode, output, work_dir = await render(render_settings, source_clip, font_path)

        assert mode == RenderMode.BATCHED
        info = get_media_info(str(output))
        assert info["has_video"] is True
        assert 2800 <= info["duration_ms"] <= 3200
        assert list(work_dir.glob("batch_*")) == []

    @pytest.mark.asyncio
    async def test_pipeline_job(self, render_settings, source_clip, font_path):
        render_settings.overlay_font_path = font_path
        upload = Path(render_settings.uploads_dir) / "upload_1700000000000.mp4"
        upload.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy(source_clip, upload)
        broadcaster = RecordingBroadcaster()
        pipeline = OverlayRenderPipeline(
            FakeDetector(),
            broadcaster,
            storage=LocalStorageService(render_settings),
            settings=render_settings,
        )

        result = await pipeline.run(upload, overlay_set(), "session-1", cleanup_input=True)

        assert result.mode == RenderMode.SINGLE_PASS
        assert Path(result.output_path).is_file()
        assert broadcaster.completed == [("session-1", result.output_url)]
        assert broadcaster.errors == []
        assert broadcaster.percents[-1] == 100
        assert not upload.exists()
        assert list(Path(render_settings.render_temp_dir).iterdir()) == []
