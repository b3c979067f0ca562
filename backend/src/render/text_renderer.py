"""Drawtext filter generation for caption and timer overlays.

Features:
- Escaping of user text for every level ffmpeg parses it at
- Deterministic drawtext option serialisation
- Live timer expansion (elapsed / countdown, MM:SS / seconds) evaluated by
  the engine per frame, with a Python mirror for previews

A drawtext ``text`` value is unescaped three times before it is drawn:

1. filtergraph parser: splits the graph on ``[ ] , ;``, honouring ``\\`` and ``'``
2. option parser: splits the filter arguments on ``:``, honouring ``\\`` and ``'``
3. drawtext expansion: ``%{...}`` sequences, with ``\\`` escaping ``%``

Literal text is escaped for level 3, quoted for level 2, and the whole
argument string is escaped for level 1.
"""

import math
from dataclasses import dataclass
from typing import Literal, Optional

TimerType = Literal["elapsed", "countdown"]
TimerFormat = Literal["MM:SS", "seconds"]

# Characters the filtergraph parser gives meaning to inside filter arguments
GRAPH_SPECIAL_CHARS = "\\'[],;"


def escape_text_expansion(value: str) -> str:
    """Make literal text safe for drawtext's ``%{...}`` expansion."""
    return value.replace("\\", "\\\\").replace("%", "\\%")


def quote_option_value(value: str) -> str:
    """Single-quote a value for the filter option parser.

    Quotes cannot be nested, so an embedded quote closes the quoted run,
    is emitted escaped, and a new run is opened.
    """
    return "'" + value.replace("'", "'\\''") + "'"


def escape_filter_args(args: str) -> str:
    """Escape a complete ``key=value:...`` string for the filtergraph parser."""
    return "".join(f"\\{c}" if c in GRAPH_SPECIAL_CHARS else c for c in args)


def format_filter(name: str, options: list[tuple[str, str]]) -> str:
    """Serialise ``name=key=value:...`` with the arguments graph-escaped."""
    args = ":".join(f"{key}={value}" for key, value in options)
    return f"{name}={escape_filter_args(args)}"


def format_number(value: float) -> str:
    """Render a number for filter expressions without float noise (10.0 -> 10)."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def enable_between(start_s: float, end_s: float) -> str:
    return f"between(t,{format_number(start_s)},{format_number(end_s)})"


@dataclass
class DrawTextStyle:
    """Text styling for a drawtext stage."""

    font_file: str
    font_size: int = 48
    font_color: str = "#FFFFFF"
    box: bool = False
    box_color: str = "black@0.6"
    box_border_w: int = 10


@dataclass
class DrawText:
    """One drawtext stage.

    Exactly one of ``text`` (literal, escaped on output) or ``expansion``
    (engine-evaluated ``%{...}`` text, only quoted on output) is used.
    """

    x: str
    y: str
    start_s: float
    end_s: float
    style: DrawTextStyle
    text: Optional[str] = None
    expansion: Optional[str] = None


def build_drawtext(drawtext: DrawText) -> str:
    """Serialise a DrawText to a ``drawtext=`` filter string.

    Options are always emitted in the same order so equal inputs produce
    byte-identical filters.
    """
    if drawtext.expansion is not None:
        text = drawtext.expansion
    else:
        text = escape_text_expansion(drawtext.text or "")

    style = drawtext.style
    options = [
        ("fontfile", quote_option_value(style.font_file)),
        ("text", quote_option_value(text)),
        ("fontcolor", style.font_color),
        ("fontsize", str(style.font_size)),
        ("x", drawtext.x),
        ("y", drawtext.y),
        ("enable", enable_between(drawtext.start_s, drawtext.end_s)),
    ]

    if style.box:
        options.extend([
            ("box", "1"),
            ("boxcolor", style.box_color),
            ("boxborderw", str(style.box_border_w)),
        ])

    return format_filter("drawtext", options)


@dataclass
class TimerClock:
    """Clock shown inside a timer badge.

    Elapsed timers count up from ``start``; countdown timers count down to
    ``end``. MM:SS pads both fields to two digits, seconds is unpadded.
    """

    timer_type: TimerType
    timer_format: TimerFormat
    start: float
    end: float

    def _delta_expr(self) -> str:
        if self.timer_type == "countdown":
            return f"{format_number(self.end)}-t"
        return f"t-{format_number(self.start)}"

    def drawtext_text(self) -> str:
        """Engine-side text expansion, as drawtext itself reads it."""
        delta = self._delta_expr()
        if self.timer_format == "MM:SS":
            return (
                f"%{{eif:floor(({delta})/60):d:2}}"
                f":%{{eif:mod(floor({delta}),60):d:2}}"
            )
        return f"%{{eif:floor({delta}):d}}"

    def evaluate(self, t: float) -> str:
        """Compute the string the engine renders at time ``t``."""
        if self.timer_type == "countdown":
            delta = self.end - t
        else:
            delta = t - self.start

        if self.timer_format == "MM:SS":
            minutes = math.floor(delta / 60)
            seconds = math.floor(delta) % 60
            return f"{minutes:02d}:{seconds:02d}"
        return str(math.floor(delta))
