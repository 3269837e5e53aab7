"""Unsharp-mask sharpening stage."""

import logging

import cv2
import numpy as np

from ..buffer import PixelBuffer


class SharpenStage:
    """Sharpens interior pixels with a 3x3 unsharp-mask kernel."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def process(self, buffer: PixelBuffer, strength: float) -> PixelBuffer:
        """Apply unsharp-mask convolution.

        The kernel is only applied where a full 3x3 neighbourhood exists; the
        one-pixel border and the alpha channel are copied unchanged.

        Args:
            buffer: Input buffer
            strength: Sharpening strength, 0 returns an unchanged copy

        Returns:
            Newly allocated sharpened buffer
        """
        buffer.validate()

        if strength <= 0 or buffer.width < 3 or buffer.height < 3:
            return buffer.copy()

        kernel = self.build_kernel(strength)
        self.logger.debug(f"Sharpening {buffer.width}x{buffer.height} with strength {strength}")

        source = buffer.as_array()
        rgb = np.ascontiguousarray(source[:, :, :3], dtype=np.float64)

        # filter2D correlates; the kernel is symmetric so this equals convolution
        filtered = cv2.filter2D(rgb, -1, kernel)

        output = source.copy()
        output[1:-1, 1:-1, :3] = np.clip(np.rint(filtered[1:-1, 1:-1]), 0, 255).astype(np.uint8)
        return PixelBuffer.from_array(output)

    @staticmethod
    def build_kernel(strength: float) -> np.ndarray:
        """Return the 3x3 kernel for a given strength."""
        return np.array([
            [0, -strength, 0],
            [-strength, 1 + 4 * strength, -strength],
            [0, -strength, 0],
        ], dtype=np.float64)

    def get_stage_name(self) -> str:
        """Get the name of this processing stage."""
        return "sharpen"


def sharpen(buffer: PixelBuffer, strength: float) -> PixelBuffer:
    """Sharpen ``buffer`` with default settings."""
    return SharpenStage().process(buffer, strength)
