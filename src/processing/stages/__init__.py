"""Processing stages for the enhancement pipeline."""

from .resample import ResampleStage, resample
from .denoise import DenoiseStage, denoise
from .sharpen import SharpenStage, sharpen
from .adjust import ColorAdjustStage, adjust

__all__ = [
    "ResampleStage", "DenoiseStage", "SharpenStage", "ColorAdjustStage",
    "resample", "denoise", "sharpen", "adjust",
]
