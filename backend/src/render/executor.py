"""Render strategy execution.

Jobs with few enough overlays are first rendered in a single engine pass.
If that pass fails, or the job has too many overlays, the overlays are
rendered in fixed-size batches: each batch burns its overlays into an
intermediate file that the next batch reads, and the last batch writes the
job output.
"""

import logging
import time
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from src.config import Settings, get_settings
from src.exceptions import EngineExecutionError
from src.render.command import FFmpegCommand, InputSpec
from src.render.encoding import EncoderProfile, encoder_profile_for
from src.render.engine import EngineProgress, FFmpegEngine
from src.render.filter_graph import FilterGraphCompiler, FilterGraphPlan
from src.render.hardware import HardwareCapability
from src.render.progress import ProgressEvent
from src.schemas.overlay import TimerOverlay, has_timer_overlays
from src.utils.fs import remove_file

if TYPE_CHECKING:
    from src.render.pipeline import RenderJob

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], Awaitable[Any]]


class RenderMode(Enum):
    SINGLE_PASS = "single_pass"
    BATCHED = "batched"


def batch_percent(batch_number: int, batch_count: int, percent: int) -> int:
    """Overall percent while batch ``batch_number`` (1-based) is at ``percent``."""
    return round(((batch_number - 1) / batch_count) * 100 + percent / batch_count)


class RenderExecutor:
    """Runs compiled plans through the engine."""

    def __init__(
        self,
        engine: FFmpegEngine,
        compiler: FilterGraphCompiler,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.engine = engine
        self.compiler = compiler
        self.single_pass_max = self.settings.render_single_pass_max_overlays
        self.batch_size = self.settings.render_batch_size

    async def execute(
        self,
        job: "RenderJob",
        plan: FilterGraphPlan,
        capability: HardwareCapability,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RenderMode:
        """Render ``job`` to ``job.output_path``.

        Returns:
            The mode that produced the output

        Raises:
            EngineExecutionError: If batched execution fails
        """
        profile = encoder_profile_for(
            capability,
            quality=self.settings.render_quality,
            vaapi_device=self.settings.vaapi_device,
        )
        overlay_count = len(job.overlays)

        if overlay_count <= self.single_pass_max:
            logger.info(
                f"[RENDER] Job {job.id}: single pass with {overlay_count} overlays "
                f"({profile.encoder})"
            )

            async def single_progress(sample: EngineProgress) -> None:
                if on_progress:
                    await on_progress(self._event(sample.percent, "Rendering", sample))

            try:
                await self._run_plan(
                    job.input_path, job.output_path, plan, profile, job.work_dir, single_progress
                )
                return RenderMode.SINGLE_PASS
            except EngineExecutionError as e:
                logger.warning(
                    f"[RENDER] Job {job.id}: single pass failed, falling back to batches: "
                    f"{e.message.splitlines()[0]}"
                )
                remove_file(job.output_path)
        else:
            logger.info(
                f"[RENDER] Job {job.id}: {overlay_count} overlays exceed single-pass "
                f"limit {self.single_pass_max}, rendering in batches"
            )

        await self._run_batched(job, capability, profile, on_progress)
        return RenderMode.BATCHED

    async def _run_batched(
        self,
        job: "RenderJob",
        capability: HardwareCapability,
        profile: EncoderProfile,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        overlays = list(job.overlays)
        batches = [
            overlays[i : i + self.batch_size] for i in range(0, len(overlays), self.batch_size)
        ] or [[]]
        batch_count = len(batches)
        intermediates: list[Path] = []
        source: Union[str, Path] = job.input_path

        try:
            for number, batch in enumerate(batches, start=1):
                last = number == batch_count
                if last:
                    target: Union[str, Path] = job.output_path
                else:
                    target = Path(job.work_dir) / f"batch_{number}_{int(time.time() * 1000)}.mp4"
                    intermediates.append(target)

                badge = job.badge_path if has_timer_overlays(batch) else None
                plan = self.compiler.compile(batch, badge, capability)
                logger.info(
                    f"[BATCH] Job {job.id}: batch {number}/{batch_count} "
                    f"({len(batch)} overlays, {sum(isinstance(o, TimerOverlay) for o in batch)} timers)"
                )

                async def batch_progress(sample: EngineProgress, number: int = number) -> None:
                    if on_progress:
                        percent = batch_percent(number, batch_count, sample.percent)
                        stage = f"Rendering batch {number}/{batch_count}"
                        await on_progress(self._event(percent, stage, sample))

                await self._run_plan(source, target, plan, profile, job.work_dir, batch_progress)

                # The previous intermediate is only needed until this batch is done
                if number > 1:
                    remove_file(source)
                source = target
        finally:
            for path in intermediates:
                remove_file(path)

    async def _run_plan(
        self,
        input_path: Union[str, Path],
        output_path: Union[str, Path],
        plan: FilterGraphPlan,
        profile: EncoderProfile,
        work_dir: Union[str, Path],
        on_sample: Callable[[EngineProgress], Awaitable[None]],
    ) -> None:
        script_path: Optional[Path] = None
        if plan.use_script_file:
            script_path = Path(work_dir) / f"filter_{time.time_ns()}.txt"
            script_path.write_text(plan.expression, encoding="utf-8")

        command = FFmpegCommand(
            binary=self.settings.ffmpeg_path,
            global_options=list(profile.global_options),
            inputs=[InputSpec(str(input_path)), *(InputSpec(p) for p in plan.aux_inputs)],
            filter_graph=plan.expression or None,
            filter_script_path=str(script_path) if script_path else None,
            maps=[plan.video_map, "0:a?"],
            output_options=profile.output_options,
            output_path=str(output_path),
        )

        try:
            async for sample in self.engine.stream(command):
                await on_sample(sample)
        finally:
            remove_file(script_path)

    @staticmethod
    def _event(percent: int, stage: str, sample: EngineProgress) -> ProgressEvent:
        return ProgressEvent(
            percent=percent,
            stage=stage,
            frame=sample.frame,
            total_frames=sample.total_frames,
            fps=sample.fps,
            speed=sample.speed,
        )
