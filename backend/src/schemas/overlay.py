"""Overlay schemas for render jobs.

Overlays form a closed tagged union on ``type``: ``text`` captions and
``timer`` badges. Anything else is rejected at ingestion. Accepts the
camelCase keys sent by the editor as well as snake_case.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from src.exceptions import InvalidOverlayError

# Hex (#RRGGBB / #RRGGBBAA) or a named colour, with optional @alpha.
# Anything else could smuggle filter-graph syntax into the engine.
COLOR_PATTERN = r"^(#[0-9A-Fa-f]{6}([0-9A-Fa-f]{2})?|[A-Za-z]{3,20})(@(0(\.\d+)?|1(\.0+)?))?$"


class OverlayBase(BaseModel):
    """Fields shared by every overlay kind."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str | None = None
    start_time: float = Field(..., alias="startTime", ge=0, description="Start time in seconds")
    end_time: float = Field(..., alias="endTime", gt=0, description="End time in seconds")
    x: float = Field(default=50, ge=0, le=100, description="Horizontal position (% of width)")
    y: float = Field(default=50, ge=0, le=100, description="Vertical position (% of height)")
    font_size: int = Field(default=48, alias="fontSize", gt=0, le=500)
    font_color: str = Field(default="#FFFFFF", alias="fontColor", pattern=COLOR_PATTERN)
    background_color: str = Field(
        default="black@0.6", alias="backgroundColor", pattern=COLOR_PATTERN
    )

    @model_validator(mode="after")
    def check_time_window(self) -> "OverlayBase":
        if self.start_time >= self.end_time:
            raise ValueError(
                f"startTime ({self.start_time}) must be before endTime ({self.end_time})"
            )
        return self


class TextOverlay(OverlayBase):
    """Caption drawn over the video inside a padded box."""

    type: Literal["text"] = "text"
    text: str = Field(..., min_length=1, max_length=500)


class TimerOverlay(OverlayBase):
    """Circular badge with a label and a live elapsed/countdown clock."""

    type: Literal["timer"] = "timer"
    timer_type: Literal["elapsed", "countdown"] = Field(default="elapsed", alias="timerType")
    timer_format: Literal["MM:SS", "seconds"] = Field(default="MM:SS", alias="timerFormat")
    text: str = Field(default="", max_length=100, description="Badge label")

    @field_validator("timer_format", mode="before")
    @classmethod
    def normalize_timer_format(cls, v: Any) -> Any:
        # The editor historically sent "SS" for the plain seconds format
        if isinstance(v, str) and v.upper() in ("SS", "SECONDS"):
            return "seconds"
        return v

    @property
    def label(self) -> str:
        return self.text


Overlay = Annotated[Union[TextOverlay, TimerOverlay], Field(discriminator="type")]

_overlay_list_adapter: TypeAdapter[list[Overlay]] = TypeAdapter(list[Overlay])


def parse_overlays(raw: str | list[Any] | None) -> list[TextOverlay | TimerOverlay]:
    """Validate a caller-supplied overlay list.

    Args:
        raw: JSON string, list of dicts, or None (treated as no overlays)

    Returns:
        Validated overlays in compositing order

    Raises:
        InvalidOverlayError: If the JSON is malformed or an entry is invalid
    """
    if raw is None or raw == "":
        return []

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidOverlayError(f"Invalid overlays JSON: {e.msg}") from e

    if not isinstance(raw, list):
        raise InvalidOverlayError("Overlays must be a JSON array")

    try:
        return _overlay_list_adapter.validate_python(raw)
    except ValidationError as e:
        first = e.errors()[0]
        loc = first.get("loc", ())
        index = loc[0] if loc and isinstance(loc[0], int) else None
        field = ".".join(str(p) for p in loc[2:]) if len(loc) > 2 else None
        entry = raw[index] if index is not None else None
        overlay_id = entry.get("id") if isinstance(entry, dict) else None
        if first.get("type") == "union_tag_invalid":
            message = f"Unsupported overlay type: {entry.get('type')!r} (expected 'text' or 'timer')"
        else:
            message = f"Overlay {index}: {first.get('msg', 'invalid value')}"
        raise InvalidOverlayError(
            message,
            index=index,
            field=field,
            overlay_id=str(overlay_id) if overlay_id is not None else None,
        ) from e


def has_timer_overlays(overlays: list[TextOverlay | TimerOverlay]) -> bool:
    return any(isinstance(o, TimerOverlay) for o in overlays)


def clamp_overlays(
    overlays: list[TextOverlay | TimerOverlay],
    duration_s: float,
) -> list[TextOverlay | TimerOverlay]:
    """Clamp overlay windows to the video duration.

    Overlays that start at or after the end of the video are dropped; the
    rest keep their order with ``end_time`` capped at ``duration_s``.
    """
    clamped: list[TextOverlay | TimerOverlay] = []
    for overlay in overlays:
        if overlay.start_time >= duration_s:
            continue
        if overlay.end_time > duration_s:
            overlay = overlay.model_copy(update={"end_time": duration_s})
        clamped.append(overlay)
    return clamped
