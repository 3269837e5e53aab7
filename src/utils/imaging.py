"""Conversion between encoded images and pixel buffers."""

import io
import logging
from typing import Union

from PIL import Image, UnidentifiedImageError

from processing.buffer import PixelBuffer

logger = logging.getLogger(__name__)


class ImageDecodeError(Exception):
    """Raised when an input file or byte string cannot be decoded."""


def image_to_buffer(image: Image.Image) -> PixelBuffer:
    """Convert a PIL Image of any mode to an RGBA pixel buffer."""
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    return PixelBuffer.from_array(image)


def buffer_to_image(buffer: PixelBuffer) -> Image.Image:
    """Convert a pixel buffer to an RGBA PIL Image."""
    buffer.validate()
    return Image.fromarray(buffer.as_array())


def load_buffer(path: str) -> PixelBuffer:
    """Decode an image file into a pixel buffer.

    Raises:
        ImageDecodeError: If the file is missing or not a readable image
    """
    try:
        with Image.open(path) as image:
            image.load()
            buffer = image_to_buffer(image)
    except (OSError, UnidentifiedImageError) as e:
        raise ImageDecodeError(f"Failed to load image {path}: {e}") from e

    logger.debug(f"Loaded {path}: {buffer.width}x{buffer.height}")
    return buffer


def decode_buffer(data: Union[bytes, bytearray]) -> PixelBuffer:
    """Decode encoded image bytes into a pixel buffer."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            return image_to_buffer(image)
    except (OSError, UnidentifiedImageError) as e:
        raise ImageDecodeError(f"Failed to decode image data: {e}") from e


def encode_png(buffer: PixelBuffer) -> bytes:
    """Encode a pixel buffer as PNG bytes."""
    output = io.BytesIO()
    buffer_to_image(buffer).save(output, format="PNG")
    return output.getvalue()


def save_buffer(buffer: PixelBuffer, path: str) -> None:
    """Save a pixel buffer; the format follows the file extension.

    Formats without an alpha channel (e.g. JPEG) receive an RGB copy.
    """
    image = buffer_to_image(buffer)
    if path.lower().endswith((".jpg", ".jpeg", ".bmp")):
        image = image.convert("RGB")
    image.save(path)
    logger.debug(f"Saved {buffer.width}x{buffer.height} image to {path}")
