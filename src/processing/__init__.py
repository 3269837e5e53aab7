"""Image enhancement processing module for EZ-HD."""

from .buffer import PixelBuffer, EnhancementSettings
from .cancellation import CancellationToken
from .errors import PipelineError, InvalidDimensions, Cancelled, ResourceExhausted, StageFailed
from .pipeline import EnhancementPipeline, PipelineResult, PipelineRun, PipelineState, run_pipeline

__all__ = [
    "PixelBuffer", "EnhancementSettings", "CancellationToken",
    "PipelineError", "InvalidDimensions", "Cancelled", "ResourceExhausted", "StageFailed",
    "EnhancementPipeline", "PipelineResult", "PipelineRun", "PipelineState", "run_pipeline",
]
