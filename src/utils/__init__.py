"""Utility modules for EZ-HD."""

from .imaging import (ImageDecodeError, image_to_buffer, buffer_to_image,
                      load_buffer, decode_buffer, encode_png, save_buffer)
from .display import show_image, show_before_after
from .testing import TestImageGenerator, BufferAnalyzer, validate_pipeline, benchmark_pipeline

__all__ = [
    "ImageDecodeError", "image_to_buffer", "buffer_to_image",
    "load_buffer", "decode_buffer", "encode_png", "save_buffer",
    "show_image", "show_before_after",
    "TestImageGenerator", "BufferAnalyzer", "validate_pipeline", "benchmark_pipeline"
]
