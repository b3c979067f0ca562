"""Encoder option sets per hardware path.

Decoding always happens on the CPU; only the encoder changes. The profile is
chosen once per job and reused for every invocation of that job.
"""

from dataclasses import dataclass, field

from src.render.hardware import HardwareCapability, HardwareType

AUDIO_OPTIONS = ["-c:a", "copy"]
CONTAINER_OPTIONS = ["-movflags", "+faststart"]


@dataclass(frozen=True)
class EncoderProfile:
    hardware: HardwareType
    encoder: str
    video_options: list[str] = field(default_factory=list)
    global_options: list[str] = field(default_factory=list)

    @property
    def output_options(self) -> list[str]:
        return [*self.video_options, *AUDIO_OPTIONS, *CONTAINER_OPTIONS]


def encoder_profile_for(
    capability: HardwareCapability,
    quality: int = 23,
    vaapi_device: str = "/dev/dri/renderD128",
) -> EncoderProfile:
    q = str(quality)
    hw_type = capability.type if capability.available else HardwareType.NONE

    if hw_type == HardwareType.NVIDIA:
        return EncoderProfile(
            hardware=hw_type,
            encoder="h264_nvenc",
            video_options=["-c:v", "h264_nvenc", "-preset", "p4", "-rc", "vbr", "-cq", q, "-b:v", "0"],
        )
    if hw_type == HardwareType.INTEL_QSV:
        return EncoderProfile(
            hardware=hw_type,
            encoder="h264_qsv",
            video_options=["-c:v", "h264_qsv", "-global_quality", q, "-look_ahead", "0"],
        )
    if hw_type == HardwareType.VAAPI:
        return EncoderProfile(
            hardware=hw_type,
            encoder="h264_vaapi",
            video_options=["-c:v", "h264_vaapi", "-qp", q],
            global_options=["-vaapi_device", vaapi_device],
        )
    return EncoderProfile(
        hardware=HardwareType.NONE,
        encoder="libx264",
        video_options=[
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", q,
            "-threads", "0",
            "-pix_fmt", "yuv420p",
        ],
    )
