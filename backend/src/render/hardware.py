"""Hardware encoder detection.

Probes the local ffmpeg build once for H.264 hardware encoders and remembers
the answer for the lifetime of the detector. Detection problems never fail a
render: they degrade to the software encoder.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class HardwareType(Enum):
    """Hardware encoder family."""

    NVIDIA = "nvidia"  # dedicated GPU
    INTEL_QSV = "intel_qsv"  # integrated GPU
    VAAPI = "vaapi"  # platform GPU (Linux VA path)
    NONE = "none"


# Priority order: first match wins
ENCODER_PRIORITY: list[tuple[str, HardwareType]] = [
    ("h264_nvenc", HardwareType.NVIDIA),
    ("h264_qsv", HardwareType.INTEL_QSV),
    ("h264_vaapi", HardwareType.VAAPI),
]


@dataclass(frozen=True)
class HardwareCapability:
    """Result of a hardware probe."""

    type: HardwareType
    available: bool

    @classmethod
    def none(cls) -> "HardwareCapability":
        return cls(type=HardwareType.NONE, available=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "available": self.available}


def parse_encoder_list(text: str) -> HardwareCapability:
    """Pick the preferred hardware encoder from ``ffmpeg -encoders`` output.

    Matching is case-insensitive. NVENC is preferred over QSV, QSV over
    VAAPI.
    """
    lowered = text.lower()
    for encoder_name, hw_type in ENCODER_PRIORITY:
        if encoder_name in lowered:
            return HardwareCapability(type=hw_type, available=True)
    return HardwareCapability.none()


class HardwareCapabilityDetector:
    """Memoising probe of the engine's hardware encoders.

    Build one per process and share it. Concurrent first callers wait on the
    same probe.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        timeout_s: float = 5.0,
        max_output_bytes: int = 10 * 1024 * 1024,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.timeout_s = timeout_s
        self.max_output_bytes = max_output_bytes
        self._cached: HardwareCapability | None = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> HardwareCapability | None:
        return self._cached

    async def detect(self) -> HardwareCapability:
        if self._cached is not None:
            return self._cached

        async with self._lock:
            if self._cached is None:
                self._cached = await self._probe()
                logger.info(
                    f"[HW] Detected encoder capability: {self._cached.type.value} "
                    f"(available={self._cached.available})"
                )
        return self._cached

    async def _probe(self) -> HardwareCapability:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-hide_banner",
                "-encoders",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning(f"[HW] Failed to spawn {self.ffmpeg_path}: {e}")
            return HardwareCapability.none()

        try:
            output = await asyncio.wait_for(self._read_capped(proc), timeout=self.timeout_s)
            returncode = await asyncio.wait_for(proc.wait(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"[HW] Encoder probe timed out after {self.timeout_s}s")
            await self._kill(proc)
            return HardwareCapability.none()

        # Killed for exceeding the cap: what was read is still usable
        if returncode != 0 and len(output) < self.max_output_bytes:
            logger.warning(f"[HW] Encoder probe exited with code {returncode}")
            return HardwareCapability.none()

        return parse_encoder_list(output.decode("utf-8", errors="replace"))

    async def _read_capped(self, proc: asyncio.subprocess.Process) -> bytes:
        assert proc.stdout is not None
        chunks: list[bytes] = []
        total = 0
        while total < self.max_output_bytes:
            chunk = await proc.stdout.read(65536)
            if not chunk:
                break
            chunks.append(chunk)
            total += len(chunk)
        if total >= self.max_output_bytes:
            logger.warning(f"[HW] Encoder list truncated at {self.max_output_bytes} bytes")
            await self._kill(proc)
        return b"".join(chunks)[: self.max_output_bytes]

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()
