"""Pixel buffer and enhancement settings shared by all pipeline stages."""

import math
from dataclasses import dataclass, field, fields
from typing import List, Tuple

import numpy as np

from config.settings import SETTINGS
from .errors import InvalidDimensions

CHANNELS = 4  # R, G, B, A


@dataclass
class PixelBuffer:
    """Row-major RGBA8 raster.

    ``pixels`` is a flat ``uint8`` array holding 4 bytes per pixel. The
    constructor coerces the data but does not validate it; call
    :meth:`validate` at stage boundaries.
    """

    width: int
    height: int
    pixels: np.ndarray = field(repr=False)

    def __post_init__(self):
        self.width = int(self.width)
        self.height = int(self.height)
        if isinstance(self.pixels, (bytes, bytearray, memoryview)):
            self.pixels = np.frombuffer(self.pixels, dtype=np.uint8).copy()
        self.pixels = np.ascontiguousarray(self.pixels, dtype=np.uint8).reshape(-1)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Create a buffer from an ``(height, width, 4)`` array."""
        array = np.asarray(array)
        if not array.flags.writeable:
            # Arrays exported by PIL are read-only views
            array = array.copy()
        if array.ndim != 3 or array.shape[2] != CHANNELS:
            raise InvalidDimensions(f"Expected (height, width, 4) array, got shape {array.shape}")
        height, width = array.shape[:2]
        return cls(width, height, array.reshape(-1))

    @classmethod
    def filled(cls, width: int, height: int, rgba: Tuple[int, int, int, int]) -> "PixelBuffer":
        """Create a buffer where every pixel has the same RGBA value."""
        array = np.empty((height, width, CHANNELS), dtype=np.uint8)
        array[:, :] = rgba
        return cls.from_array(array)

    @property
    def num_pixels(self) -> int:
        return self.width * self.height

    def validate(self) -> None:
        """Check the shape invariant.

        Raises:
            InvalidDimensions: If width or height is zero or the pixel array
                length is not ``width * height * 4``
        """
        if self.width <= 0 or self.height <= 0:
            raise InvalidDimensions(f"Buffer has empty dimensions {self.width}x{self.height}")

        expected = self.width * self.height * CHANNELS
        if self.pixels.size != expected:
            raise InvalidDimensions(
                f"Buffer of {self.width}x{self.height} needs {expected} bytes, got {self.pixels.size}"
            )

    def as_array(self) -> np.ndarray:
        """Return an ``(height, width, 4)`` view of the pixel data."""
        return self.pixels.reshape(self.height, self.width, CHANNELS)

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, self.pixels.copy())

    def __eq__(self, other) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return (self.width == other.width and self.height == other.height
                and np.array_equal(self.pixels, other.pixels))


@dataclass(frozen=True)
class EnhancementSettings:
    """Caller supplied configuration for one pipeline run."""

    scale_factor: float = SETTINGS["enhancement"].SCALE_FACTOR
    sharpen_strength: float = SETTINGS["enhancement"].SHARPEN_STRENGTH
    denoise_strength: float = SETTINGS["enhancement"].DENOISE_STRENGTH
    contrast: float = SETTINGS["enhancement"].CONTRAST
    brightness: float = SETTINGS["enhancement"].BRIGHTNESS

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not math.isfinite(value):
                raise ValueError(f"{f.name} must be finite, got {value}")

        if self.scale_factor < 1.0:
            raise ValueError(f"scale_factor must be >= 1.0, got {self.scale_factor}")
        if self.sharpen_strength < 0:
            raise ValueError(f"sharpen_strength must be >= 0, got {self.sharpen_strength}")
        if self.denoise_strength < 0:
            raise ValueError(f"denoise_strength must be >= 0, got {self.denoise_strength}")

    @classmethod
    def neutral(cls, scale_factor: float = 1.0) -> "EnhancementSettings":
        """Settings under which only the resampler changes the image."""
        return cls(scale_factor=scale_factor, sharpen_strength=0.0,
                   denoise_strength=0.0, contrast=1.0, brightness=0.0)

    def target_size(self, width: int, height: int) -> Tuple[int, int]:
        """Output dimensions for a source of the given size, rounded half up."""
        return (int(math.floor(width * self.scale_factor + 0.5)),
                int(math.floor(height * self.scale_factor + 0.5)))

    def out_of_range_fields(self) -> List[str]:
        """Names of fields outside the ranges the settings controls expose."""
        defaults = SETTINGS["enhancement"]
        ranges = {
            "scale_factor": defaults.SCALE_RANGE,
            "sharpen_strength": defaults.SHARPEN_RANGE,
            "denoise_strength": defaults.DENOISE_RANGE,
            "contrast": defaults.CONTRAST_RANGE,
            "brightness": defaults.BRIGHTNESS_RANGE,
        }
        outside = []
        for name, (low, high) in ranges.items():
            value = getattr(self, name)
            # Zero strength disables a stage and is always allowed
            if name.endswith("_strength") and value == 0:
                continue
            if not low <= value <= high:
                outside.append(name)
        return outside
