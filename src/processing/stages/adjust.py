"""Contrast and brightness adjustment stage."""

import logging
import numpy as np

from config.settings import SETTINGS
from ..buffer import PixelBuffer


class ColorAdjustStage:
    """Applies a linear contrast/brightness remap to R, G and B."""

    def __init__(self, settings=None):
        self.settings = settings or SETTINGS["processing"]
        self.logger = logging.getLogger(__name__)

    def process(self, buffer: PixelBuffer, contrast: float, brightness: float) -> PixelBuffer:
        """Remap every colour channel value.

        ``value' = clamp(factor * (value + brightness * 255 - 128) + 128)``

        Args:
            buffer: Input buffer
            contrast: Contrast multiplier (1.0 = no change)
            brightness: Offset as a fraction of full scale (0.0 = no change)

        Returns:
            Newly allocated adjusted buffer
        """
        buffer.validate()

        factor = self.contrast_factor(contrast)
        self.logger.debug(f"Applied contrast {contrast} (factor {factor:.4f}), brightness {brightness}")

        output = buffer.as_array().copy()
        rgb = output[:, :, :3].astype(np.float64)
        rgb = factor * (rgb + brightness * 255 - 128) + 128
        output[:, :, :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)

        return PixelBuffer.from_array(output)

    def contrast_factor(self, contrast: float) -> float:
        """Contrast curve factor ``259(C+255) / (255(259-C))``.

        ``C`` is the contrast offset from neutral on a 0-255 scale, capped
        below 259 where the denominator vanishes.
        """
        offset = min((contrast - 1.0) * 255, self.settings.CONTRAST_LIMIT)
        return (259 * (offset + 255)) / (255 * (259 - offset))

    def get_stage_name(self) -> str:
        """Get the name of this processing stage."""
        return "adjust"


def adjust(buffer: PixelBuffer, contrast: float, brightness: float) -> PixelBuffer:
    """Adjust contrast and brightness of ``buffer`` with default settings."""
    return ColorAdjustStage().process(buffer, contrast, brightness)
