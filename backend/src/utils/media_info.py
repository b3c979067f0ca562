"""Source video probing using FFprobe."""

import asyncio
import json
import subprocess
from typing import Any, Optional

from src.config import get_settings


def _run_ffprobe(file_path: str, *args: str, timeout_s: float = 30.0) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_s)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise RuntimeError(f"ffprobe could not run: {e}") from e
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr.strip()}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}") from e


def _parse_rate(rate: str) -> Optional[float]:
    """Parse an ffprobe rational like ``30000/1001``."""
    if "/" not in rate:
        return None
    num, den = rate.split("/", 1)
    try:
        if int(den) == 0:
            return None
        return round(int(num) / int(den), 3)
    except ValueError:
        return None


def get_media_info(file_path: str) -> dict[str, Any]:
    """
    Probe a media file's container and first video/audio streams.

    Args:
        file_path: Path to media file

    Returns:
        Dictionary with duration_ms, width, height, fps, video_codec,
        audio_codec, has_video and has_audio

    Raises:
        RuntimeError: If ffprobe fails
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams")

    info: dict[str, Any] = {
        "duration_ms": None,
        "width": None,
        "height": None,
        "fps": None,
        "video_codec": None,
        "audio_codec": None,
        "has_video": False,
        "has_audio": False,
    }

    duration = data.get("format", {}).get("duration")
    if duration not in (None, "N/A"):
        info["duration_ms"] = int(float(duration) * 1000)

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")
        # Cover art is reported as a video stream
        is_picture = stream.get("disposition", {}).get("attached_pic") == 1

        if codec_type == "video" and not is_picture and not info["has_video"]:
            info["has_video"] = True
            info["width"] = stream.get("width")
            info["height"] = stream.get("height")
            info["video_codec"] = stream.get("codec_name")
            info["fps"] = _parse_rate(stream.get("avg_frame_rate") or stream.get("r_frame_rate", ""))
        elif codec_type == "audio" and not info["has_audio"]:
            info["has_audio"] = True
            info["audio_codec"] = stream.get("codec_name")

    return info


async def probe_media(file_path: str) -> dict[str, Any]:
    """Async wrapper around get_media_info for use inside request handlers."""
    # Use asyncio.to_thread to avoid blocking the event loop
    return await asyncio.to_thread(get_media_info, file_path)


def duration_seconds(info: dict[str, Any]) -> Optional[float]:
    if info.get("duration_ms") is None:
        return None
    return info["duration_ms"] / 1000
