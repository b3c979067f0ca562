"""Filter graph compilation for overlay renders.

Turns an ordered overlay list into one linear chain of filter-graph stages
starting at the source video stream ``[0:v]`` and ending at ``[vout]``:

- text overlay: 1 drawtext stage (caption in a padded box)
- timer overlay: 3 stages (badge overlay, label drawtext, clock drawtext)
- QSV / VAAPI encoders: 1 trailing pixel-format stage for the whole chain

The badge image is a single auxiliary input in slot 1. Filter-graph inputs
can only be consumed once, so with several timers a ``split`` prelude fans
it out.
"""

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from src.exceptions import BadgeGenerationError
from src.render.hardware import HardwareCapability, HardwareType
from src.render.text_renderer import (
    DrawText,
    DrawTextStyle,
    TimerClock,
    build_drawtext,
    enable_between,
    format_filter,
    format_number,
)
from src.schemas.overlay import TextOverlay, TimerOverlay

logger = logging.getLogger(__name__)

SOURCE_LABEL = "0:v"
BADGE_INPUT_LABEL = "1:v"
OUTPUT_LABEL = "vout"

# Encoder families that need an explicit pixel format ahead of the encoder
PIXEL_FORMAT_FILTERS: dict[HardwareType, str] = {
    HardwareType.INTEL_QSV: "format=nv12",
    HardwareType.VAAPI: "format=nv12,hwupload",
}


@dataclass
class FilterStage:
    """One labelled stage of the chain."""

    expression: str
    kind: str  # badge_split | text | badge | label | timer | pixel_format
    overlay_index: Optional[int] = None


@dataclass
class FilterGraphPlan:
    """Compiled filter graph for one render invocation."""

    stages: list[FilterStage] = field(default_factory=list)
    aux_inputs: list[str] = field(default_factory=list)
    use_script_file: bool = False
    output_label: Optional[str] = None

    @property
    def expression(self) -> str:
        return ";".join(stage.expression for stage in self.stages)

    @property
    def video_map(self) -> str:
        """Stream to map into the output (source stream when nothing is filtered)."""
        return f"[{self.output_label}]" if self.output_label else SOURCE_LABEL

    def overlay_stage_count(self, overlay_index: int) -> int:
        """Number of stages emitted for the overlay at ``overlay_index``.

        A text overlay owns 1 stage and a timer owns 3. Plan-level stages
        (the badge ``split`` prelude and the QSV / VAAPI pixel-format stage)
        belong to no overlay and are never counted here; the pixel-format
        stage appears once per plan, so ``len(plan.stages)`` is the sum of
        these counts plus at most one split and one pixel-format stage.
        """
        return sum(1 for stage in self.stages if stage.overlay_index == overlay_index)


@dataclass
class _PendingStage:
    body: str
    kind: str
    overlay_index: Optional[int] = None
    extra_inputs: list[str] = field(default_factory=list)


class FilterGraphCompiler:
    """Compile overlay lists into FilterGraphPlans."""

    def __init__(
        self,
        font_path: str,
        inline_limit: int = 7000,
        badge_size: int = 120,
    ):
        self.font_path = font_path
        self.inline_limit = inline_limit
        self.badge_size = badge_size

    def compile(
        self,
        overlays: list[Union[TextOverlay, TimerOverlay]],
        badge_path: Optional[Union[str, Path]],
        capability: HardwareCapability,
    ) -> FilterGraphPlan:
        """Build the plan for ``overlays`` in list order.

        Raises:
            BadgeGenerationError: If timers are present without a badge image
        """
        timer_count = sum(1 for o in overlays if isinstance(o, TimerOverlay))
        if timer_count and badge_path is None:
            raise BadgeGenerationError("Timer overlays require a badge image")

        plan = FilterGraphPlan()
        badge_labels: list[str] = []
        if timer_count:
            plan.aux_inputs.append(str(badge_path))
            if timer_count == 1:
                badge_labels = [BADGE_INPUT_LABEL]
            else:
                badge_labels = [f"b{i}" for i in range(timer_count)]
                outputs = "".join(f"[{label}]" for label in badge_labels)
                plan.stages.append(
                    FilterStage(
                        expression=f"[{BADGE_INPUT_LABEL}]split={timer_count}{outputs}",
                        kind="badge_split",
                    )
                )

        pending: list[_PendingStage] = []
        next_badge = 0
        for index, overlay in enumerate(overlays):
            if isinstance(overlay, TimerOverlay):
                pending.extend(self._timer_stages(index, overlay, badge_labels[next_badge]))
                next_badge += 1
            else:
                pending.append(self._text_stage(index, overlay))

        pixel_format = PIXEL_FORMAT_FILTERS.get(capability.type) if capability.available else None
        if pixel_format:
            pending.append(_PendingStage(body=pixel_format, kind="pixel_format"))

        current = SOURCE_LABEL
        for position, stage in enumerate(pending):
            last = position == len(pending) - 1
            out_label = OUTPUT_LABEL if last else f"v{position + 1}"
            inputs = "".join(f"[{label}]" for label in [current, *stage.extra_inputs])
            plan.stages.append(
                FilterStage(
                    expression=f"{inputs}{stage.body}[{out_label}]",
                    kind=stage.kind,
                    overlay_index=stage.overlay_index,
                )
            )
            current = out_label

        if pending:
            plan.output_label = OUTPUT_LABEL
        plan.use_script_file = len(plan.expression) > self.inline_limit

        logger.info(
            f"[FILTER] Compiled {len(overlays)} overlays into {len(plan.stages)} stages "
            f"({len(plan.expression)} chars, script_file={plan.use_script_file})"
        )
        logger.debug(f"[FILTER] Expression: {plan.expression}")
        return plan

    def _text_stage(self, index: int, overlay: TextOverlay) -> _PendingStage:
        x, y = format_number(overlay.x), format_number(overlay.y)
        drawtext = DrawText(
            x=f"(w*{x}/100)-text_w/2",
            y=f"(h*{y}/100)-text_h/2",
            start_s=overlay.start_time,
            end_s=overlay.end_time,
            text=overlay.text,
            style=DrawTextStyle(
                font_file=self.font_path,
                font_size=overlay.font_size,
                font_color=overlay.font_color,
                box=True,
                box_color=overlay.background_color,
                box_border_w=10,
            ),
        )
        return _PendingStage(body=build_drawtext(drawtext), kind="text", overlay_index=index)

    def _timer_stages(
        self,
        index: int,
        overlay: TimerOverlay,
        badge_label: str,
    ) -> list[_PendingStage]:
        size = self.badge_size
        x, y = format_number(overlay.x), format_number(overlay.y)
        half = format_number(size / 2)
        enable = enable_between(overlay.start_time, overlay.end_time)

        badge = _PendingStage(
            body=format_filter("overlay", [
                ("x", f"main_w*{x}/100-{half}"),
                ("y", f"main_h*{y}/100+10"),
                ("enable", enable),
            ]),
            kind="badge",
            overlay_index=index,
            extra_inputs=[badge_label],
        )

        center_x = f"w*{x}/100"
        top = f"h*{y}/100+10"
        label = DrawText(
            x=f"{center_x}-text_w/2",
            y=f"{top}+{format_number(size * 0.35)}-text_h/2",
            start_s=overlay.start_time,
            end_s=overlay.end_time,
            # drawtext rejects an empty text option
            text=overlay.label or " ",
            style=DrawTextStyle(
                font_file=self.font_path,
                font_size=max(12, math.floor(overlay.font_size * 0.7)),
                font_color=overlay.font_color,
            ),
        )
        clock = TimerClock(
            timer_type=overlay.timer_type,
            timer_format=overlay.timer_format,
            start=overlay.start_time,
            end=overlay.end_time,
        )
        timer = DrawText(
            x=f"{center_x}-text_w/2",
            y=f"{top}+{format_number(size * 0.65)}-text_h/2",
            start_s=overlay.start_time,
            end_s=overlay.end_time,
            expansion=clock.drawtext_text(),
            style=DrawTextStyle(
                font_file=self.font_path,
                font_size=max(14, math.floor(overlay.font_size * 0.85)),
                font_color=overlay.font_color,
            ),
        )
        return [
            badge,
            _PendingStage(body=build_drawtext(label), kind="label", overlay_index=index),
            _PendingStage(body=build_drawtext(timer), kind="timer", overlay_index=index),
        ]
