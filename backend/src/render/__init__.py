from src.render.filter_graph import FilterGraphCompiler, FilterGraphPlan
from src.render.hardware import HardwareCapability, HardwareCapabilityDetector, HardwareType
from src.render.pipeline import OverlayRenderPipeline, RenderJob, RenderResult, RenderStatus

__all__ = [
    "OverlayRenderPipeline",
    "RenderJob",
    "RenderResult",
    "RenderStatus",
    "FilterGraphCompiler",
    "FilterGraphPlan",
    "HardwareCapability",
    "HardwareCapabilityDetector",
    "HardwareType",
]
