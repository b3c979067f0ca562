import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Practica Render API"
    app_version: str = "0.1.0"
    git_hash: str = "unknown"  # Set via GIT_HASH env var at build time
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:5174,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        # Try JSON first
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # Local storage (uploaded sources and rendered outputs)
    uploads_dir: str = "/tmp/practica-render/uploads"
    edited_subdir: str = "edited"
    uploads_url_prefix: str = "/uploads"
    max_upload_size_mb: int = 1024

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    vaapi_device: str = "/dev/dri/renderD128"
    overlay_font_path: str = "/usr/share/fonts/truetype/dejavu/DejaVuSansMono-Bold.ttf"

    # Hardware encoder detection
    hw_detect_timeout_s: float = 5.0
    hw_detect_max_output_bytes: int = 10 * 1024 * 1024

    # Render settings
    render_temp_dir: str = "/tmp/practica-render/work"
    # Filter expressions longer than this go to a script file (OS argv limits)
    render_inline_filter_limit: int = 7000
    render_single_pass_max_overlays: int = 100
    render_batch_size: int = 32
    # Frame-count estimate only; the real rate is not probed
    render_nominal_fps: int = 30
    render_quality: int = 23
    render_max_concurrent_jobs: int = 2
    render_engine_timeout_s: int = 7200
    # Finished jobs kept in memory for lookups; older ones are forgotten
    render_job_history_size: int = 100

    # Timer badge
    badge_size: int = 120
    badge_color: str = "#22c55e"
    badge_opacity: float = 0.9

    # Progress channel
    progress_throttle_ms: int = 500


@lru_cache
def get_settings() -> Settings:
    return Settings()
