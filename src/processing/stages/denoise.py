"""Edge-preserving noise reduction stage."""

import math
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np

from config.settings import SETTINGS
from ..buffer import PixelBuffer
from ..cancellation import CancellationToken


class DenoiseStage:
    """Bilateral filter over the R, G and B channels.

    Every output pixel is the average of its square neighbourhood of radius
    ``ceil(strength * 3)``, each neighbour weighted by spatial distance and by
    RGB distance to the centre pixel. Neighbours outside the raster are left
    out, so edge pixels average over fewer terms. Alpha is copied verbatim.

    Cost is O(width * height * radius^2). Rows are split into fixed batches
    that read only from the stage input, so the result does not depend on the
    number of workers.
    """

    def __init__(self, settings=None):
        self.settings = settings or SETTINGS["processing"]
        self.logger = logging.getLogger(__name__)

    def process(self, buffer: PixelBuffer, strength: float,
                cancel_token: Optional[CancellationToken] = None) -> PixelBuffer:
        """Apply the bilateral filter.

        Args:
            buffer: Input buffer
            strength: Filter strength, 0 returns an unchanged copy
            cancel_token: Checked between row batches

        Returns:
            Newly allocated denoised buffer
        """
        buffer.validate()

        if strength <= 0:
            return buffer.copy()

        radius = self.get_radius(strength)
        sigma_spatial = radius * 0.5
        sigma_color = strength * 50

        self.logger.debug(
            f"Denoising {buffer.width}x{buffer.height} with radius {radius}, "
            f"sigma_spatial {sigma_spatial}, sigma_color {sigma_color:.1f}"
        )

        source = buffer.as_array()
        rgb = source[:, :, :3].astype(np.float64)

        offsets = np.arange(-radius, radius + 1)
        dist2 = offsets[:, None] ** 2 + offsets[None, :] ** 2
        spatial = np.exp(-dist2 / (2 * sigma_spatial * sigma_spatial))
        color_denominator = 2 * sigma_color * sigma_color

        output = source.copy()
        batches = self._row_batches(buffer.height)

        def run_batch(rows: Tuple[int, int]) -> None:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            y0, y1 = rows
            output[y0:y1, :, :3] = self._filter_rows(
                rgb, source[y0:y1, :, :3], y0, y1, radius, spatial, color_denominator
            )

        workers = max(1, int(self.settings.DENOISE_WORKERS))
        if workers == 1 or len(batches) == 1:
            for rows in batches:
                run_batch(rows)
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                # list() surfaces the first exception raised in a batch
                list(executor.map(run_batch, batches))

        return PixelBuffer.from_array(output)

    def get_radius(self, strength: float) -> int:
        """Neighbourhood radius for a strength, capped by the settings."""
        radius = math.ceil(strength * 3)
        if radius > self.settings.DENOISE_MAX_RADIUS:
            self.logger.warning(
                f"Denoise radius {radius} capped to {self.settings.DENOISE_MAX_RADIUS}"
            )
            radius = self.settings.DENOISE_MAX_RADIUS
        return radius

    def _row_batches(self, height: int) -> List[Tuple[int, int]]:
        batch = max(1, int(self.settings.DENOISE_ROW_BATCH))
        return [(y, min(y + batch, height)) for y in range(0, height, batch)]

    @staticmethod
    def _filter_rows(rgb: np.ndarray, original: np.ndarray, y0: int, y1: int,
                     radius: int, spatial: np.ndarray, color_denominator: float) -> np.ndarray:
        """Filter rows ``y0`` to ``y1`` of ``rgb`` and return them as uint8."""
        height, width = rgb.shape[:2]
        center = rgb[y0:y1]
        total_weight = np.zeros(center.shape[:2])
        sums = np.zeros(center.shape)

        for dy in range(-radius, radius + 1):
            # Neighbour rows that exist for this offset
            top = max(y0 + dy, 0)
            bottom = min(y1 + dy, height)
            if top >= bottom:
                continue
            out_top = top - dy - y0
            out_bottom = out_top + (bottom - top)

            for dx in range(-radius, radius + 1):
                left = max(0, -dx)
                right = min(width, width - dx)
                if left >= right:
                    continue

                neighbor = rgb[top:bottom, left + dx:right + dx]
                diff = neighbor - center[out_top:out_bottom, left:right]
                color_dist2 = np.sum(diff * diff, axis=2)
                weight = spatial[dy + radius, dx + radius] * np.exp(-color_dist2 / color_denominator)

                total_weight[out_top:out_bottom, left:right] += weight
                sums[out_top:out_bottom, left:right] += neighbor * weight[:, :, None]

        filtered = original.astype(np.float64)
        valid = total_weight > 0
        filtered[valid] = np.floor(sums[valid] / total_weight[valid][:, None] + 0.5)
        return np.clip(filtered, 0, 255).astype(np.uint8)

    def get_stage_name(self) -> str:
        """Get the name of this processing stage."""
        return "denoise"


def denoise(buffer: PixelBuffer, strength: float) -> PixelBuffer:
    """Denoise ``buffer`` with default settings."""
    return DenoiseStage().process(buffer, strength)
