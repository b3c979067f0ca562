"""Structured ffmpeg command lines."""

import shlex
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class InputSpec:
    path: str
    options: list[str] = field(default_factory=list)

    def to_args(self) -> list[str]:
        return [*self.options, "-i", self.path]


@dataclass
class FFmpegCommand:
    """One engine invocation.

    ``filter_graph`` and ``filter_script_path`` are mutually exclusive; the
    script path wins when both are set.
    """

    output_path: str
    inputs: list[InputSpec] = field(default_factory=list)
    binary: str = "ffmpeg"
    global_options: list[str] = field(default_factory=list)
    filter_graph: Optional[str] = None
    filter_script_path: Optional[str] = None
    maps: list[str] = field(default_factory=list)
    output_options: list[str] = field(default_factory=list)
    progress: bool = True

    def to_args(self) -> list[str]:
        args = [self.binary, "-hide_banner", "-y", *self.global_options]
        for input_spec in self.inputs:
            args.extend(input_spec.to_args())

        if self.filter_script_path:
            args.extend(["-filter_complex_script", self.filter_script_path])
        elif self.filter_graph:
            args.extend(["-filter_complex", self.filter_graph])

        for stream in self.maps:
            args.extend(["-map", stream])

        args.extend(self.output_options)
        if self.progress:
            args.extend(["-progress", "pipe:1", "-nostats"])
        args.append(self.output_path)
        return args

    def describe(self) -> str:
        return " ".join(shlex.quote(arg) for arg in self.to_args())
