"""Progressive resampling stage."""

import logging
from typing import List, Tuple
from PIL import Image

from config.settings import SETTINGS
from ..buffer import PixelBuffer
from ..errors import InvalidDimensions, ResourceExhausted


class ResampleStage:
    """Grows a raster to a target size using repeated 2x magnification passes."""

    def __init__(self, settings=None):
        self.settings = settings or SETTINGS["processing"]
        self.logger = logging.getLogger(__name__)

    def process(self, source: PixelBuffer, target_width: int, target_height: int) -> PixelBuffer:
        """Resample a buffer to exactly ``target_width`` x ``target_height``.

        Args:
            source: Input buffer
            target_width: Output width, at least the source width
            target_height: Output height, at least the source height

        Returns:
            Newly allocated resampled buffer

        Raises:
            InvalidDimensions: If the source is empty or the target would shrink it
            ResourceExhausted: If the target exceeds the configured pixel limit
        """
        source.validate()

        if target_width < source.width or target_height < source.height:
            raise InvalidDimensions(
                f"Target {target_width}x{target_height} is smaller than source "
                f"{source.width}x{source.height}"
            )

        if target_width * target_height > self.settings.MAX_OUTPUT_PIXELS:
            raise ResourceExhausted(
                f"Target {target_width}x{target_height} exceeds the limit of "
                f"{self.settings.MAX_OUTPUT_PIXELS} pixels"
            )

        if (target_width, target_height) == (source.width, source.height):
            self.logger.debug("Target size equals source size, copying")
            return source.copy()

        resample_filter = self._get_resample_filter(self.settings.RESIZE_ALGORITHM)
        current = Image.fromarray(source.as_array())

        for size in self.plan_passes((source.width, source.height), (target_width, target_height)):
            self.logger.debug(f"Resampling pass {current.size} -> {size}")
            current = current.resize(size, resample_filter)

        return PixelBuffer.from_array(current)

    @staticmethod
    def plan_passes(source_size: Tuple[int, int], target_size: Tuple[int, int]) -> List[Tuple[int, int]]:
        """List the intermediate sizes visited on the way to the target.

        Doubling continues while either dimension is below half of its target;
        the last entry is always the target itself.
        """
        width, height = source_size
        target_width, target_height = target_size
        passes = []

        while width < target_width * 0.5 or height < target_height * 0.5:
            width = min(width * 2, target_width)
            height = min(height * 2, target_height)
            passes.append((width, height))

        if not passes or passes[-1] != (target_width, target_height):
            passes.append((target_width, target_height))
        return passes

    def _get_resample_filter(self, algorithm: str) -> Image.Resampling:
        """Get PIL resampling filter from algorithm name.

        Args:
            algorithm: Algorithm name string

        Returns:
            PIL resampling filter, never nearest-neighbour
        """
        algorithm_map = {
            "BILINEAR": Image.Resampling.BILINEAR,
            "BICUBIC": Image.Resampling.BICUBIC,
            "LANCZOS": Image.Resampling.LANCZOS,
            "HAMMING": Image.Resampling.HAMMING,
        }

        if algorithm.upper() not in algorithm_map:
            self.logger.warning(f"Unsupported resampling algorithm: {algorithm}, using LANCZOS")
        return algorithm_map.get(algorithm.upper(), Image.Resampling.LANCZOS)

    def get_stage_name(self) -> str:
        """Get the name of this processing stage."""
        return "resample"


def resample(source: PixelBuffer, target_width: int, target_height: int) -> PixelBuffer:
    """Resample ``source`` to the target size with default settings."""
    return ResampleStage().process(source, target_width, target_height)
