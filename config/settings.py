"""Configuration settings for the EZ-HD enhancement pipeline."""

from typing import Dict, Any, Tuple
import os


class EnhancementDefaults:
    """Default enhancement settings offered to callers."""

    SCALE_FACTOR: float = 2.0
    SHARPEN_STRENGTH: float = 1.2
    DENOISE_STRENGTH: float = 0.5
    CONTRAST: float = 1.1       # 1.0 = no change
    BRIGHTNESS: float = 0.0     # 0.0 = no change

    # Ranges exposed by the settings controls; values outside are accepted
    SCALE_RANGE: Tuple[float, float] = (1.0, 4.0)
    SHARPEN_RANGE: Tuple[float, float] = (0.5, 2.0)
    DENOISE_RANGE: Tuple[float, float] = (0.0, 1.0)
    CONTRAST_RANGE: Tuple[float, float] = (0.5, 2.0)
    BRIGHTNESS_RANGE: Tuple[float, float] = (-0.5, 0.5)


class ProcessingSettings:
    """Image processing pipeline settings."""

    # Resize settings
    RESIZE_ALGORITHM: str = "LANCZOS"  # PIL resampling filter, never NEAREST

    # Denoise settings
    DENOISE_MAX_RADIUS: int = 15       # strength 5.0
    DENOISE_ROW_BATCH: int = 32        # rows per work unit
    DENOISE_WORKERS: int = 1           # threads used for row batches

    # Contrast input is capped below the singular point of the contrast curve
    CONTRAST_LIMIT: float = 258.0

    # Largest output raster accepted before allocation (~64 megapixels)
    MAX_OUTPUT_PIXELS: int = 64_000_000


class SystemSettings:
    """System and debugging settings."""

    # File paths
    OUTPUT_DIR: str = "output"
    TEST_IMAGES_DIR: str = "test/test_images"

    # Debugging
    DEBUG_MODE: bool = False
    SAVE_INTERMEDIATE_IMAGES: bool = False
    DISPLAY_PROCESSING_TIME: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"


# Environment-specific overrides
def load_environment_settings() -> Dict[str, Any]:
    """Load settings from environment variables."""
    env_settings = {}

    if os.getenv("EZHD_LOG_LEVEL"):
        env_settings["LOG_LEVEL"] = os.getenv("EZHD_LOG_LEVEL").upper()

    if os.getenv("EZHD_DENOISE_WORKERS"):
        env_settings["DENOISE_WORKERS"] = max(1, int(os.getenv("EZHD_DENOISE_WORKERS")))

    if os.getenv("EZHD_MAX_OUTPUT_PIXELS"):
        env_settings["MAX_OUTPUT_PIXELS"] = int(os.getenv("EZHD_MAX_OUTPUT_PIXELS"))

    # Debug mode
    if os.getenv("DEBUG_MODE"):
        env_settings["DEBUG_MODE"] = os.getenv("DEBUG_MODE").lower() == "true"

    return env_settings


def _apply_environment(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Copy environment overrides onto the matching settings instances."""
    for key, value in settings["env"].items():
        for section in ("processing", "system"):
            if hasattr(settings[section], key):
                setattr(settings[section], key, value)
    return settings


# Global settings instance
SETTINGS = _apply_environment({
    "enhancement": EnhancementDefaults(),
    "processing": ProcessingSettings(),
    "system": SystemSettings(),
    "env": load_environment_settings()
})
