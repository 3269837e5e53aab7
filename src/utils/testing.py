"""Testing and validation utilities for EZ-HD."""

import os
import time
import logging
import numpy as np
from typing import Dict, List, Optional, Union
from PIL import Image, ImageDraw

from config.settings import SETTINGS
from processing import EnhancementPipeline, EnhancementSettings, PixelBuffer
from .imaging import image_to_buffer, load_buffer, save_buffer


class TestImageGenerator:
    """Generates synthetic test images and manages the test image directory."""

    __test__ = False

    def __init__(self, test_dir: str = None, seed: int = 0):
        if test_dir is None:
            test_dir = SETTINGS["system"].TEST_IMAGES_DIR

        self.test_dir = test_dir
        self.seed = seed
        self.logger = logging.getLogger(__name__)

    def create_gradient(self, width: int = 64, height: int = 48) -> PixelBuffer:
        """Create a horizontal gray gradient with opaque alpha."""
        ramp = np.linspace(0, 255, width).astype(np.uint8)
        array = np.empty((height, width, 4), dtype=np.uint8)
        array[:, :, :3] = ramp[None, :, None]
        array[:, :, 3] = 255
        return PixelBuffer.from_array(array)

    def create_checkerboard(self, width: int = 64, height: int = 64, square_size: int = 8) -> PixelBuffer:
        """Create a black and white checkerboard."""
        ys, xs = np.mgrid[0:height, 0:width]
        white = ((xs // square_size + ys // square_size) % 2 == 0)
        array = np.zeros((height, width, 4), dtype=np.uint8)
        array[white, :3] = 255
        array[:, :, 3] = 255
        return PixelBuffer.from_array(array)

    def create_noise_test(self, width: int = 64, height: int = 48, amplitude: int = 30) -> PixelBuffer:
        """Create a gradient with uniform noise added; alpha varies per row."""
        rng = np.random.RandomState(self.seed)
        base = np.linspace(0, 255, height)[:, None, None]
        noise = rng.randint(-amplitude, amplitude + 1, size=(height, width, 3))
        array = np.empty((height, width, 4), dtype=np.uint8)
        array[:, :, :3] = np.clip(base + noise, 0, 255).astype(np.uint8)
        array[:, :, 3] = np.linspace(64, 255, height).astype(np.uint8)[:, None]
        return PixelBuffer.from_array(array)

    def create_edge_test(self, width: int = 96, height: int = 72) -> PixelBuffer:
        """Create an image with hard vertical, horizontal and curved edges."""
        image = Image.new('RGBA', (width, height), 'white')
        draw = ImageDraw.Draw(image)

        draw.rectangle([width // 8, height // 8, width // 4, height - height // 8], fill='black')
        draw.rectangle([width // 3, height // 4, width - width // 8, height // 3], fill='gray')
        draw.ellipse([width // 2, height // 2, width - width // 8, height - height // 8], fill='red')

        return image_to_buffer(image)

    def generate_test_images(self) -> List[str]:
        """Write the synthetic test images to the test directory."""
        os.makedirs(self.test_dir, exist_ok=True)
        self.logger.info(f"Generating test images in {self.test_dir}")

        test_specs = [
            ("gradient.png", self.create_gradient),
            ("checkerboard.png", self.create_checkerboard),
            ("noise_test.png", self.create_noise_test),
            ("edge_test.png", self.create_edge_test),
        ]

        written = []
        for filename, generator_func in test_specs:
            filepath = os.path.join(self.test_dir, filename)
            if not os.path.exists(filepath):
                save_buffer(generator_func(), filepath)
                self.logger.debug(f"Generated test image: {filepath}")
            written.append(filename)
        return written

    def list_test_images(self) -> List[str]:
        """List all available test images."""
        if not os.path.exists(self.test_dir):
            return []

        image_extensions = {'.jpg', '.jpeg', '.png', '.bmp', '.tiff', '.gif'}
        return sorted(
            filename for filename in os.listdir(self.test_dir)
            if os.path.splitext(filename)[1].lower() in image_extensions
        )

    def load_image(self, filename: str) -> PixelBuffer:
        """Load a test image by filename."""
        return load_buffer(os.path.join(self.test_dir, filename))


class BufferAnalyzer:
    """Statistics and similarity metrics for pixel buffers."""

    def analyze_buffer(self, buffer: PixelBuffer) -> Dict[str, Union[int, float]]:
        """Analyze buffer properties and statistics.

        Args:
            buffer: Buffer to analyze

        Returns:
            Dictionary with analysis results
        """
        rgb = buffer.as_array()[:, :, :3].astype(np.float64)
        luma = rgb @ np.array([0.299, 0.587, 0.114])

        return {
            'width': buffer.width,
            'height': buffer.height,
            'aspect_ratio': buffer.width / buffer.height,
            'mean_brightness': float(np.mean(luma)),
            'std_brightness': float(np.std(luma)),
            'min_value': int(np.min(rgb)),
            'max_value': int(np.max(rgb)),
            'dynamic_range': int(np.max(rgb) - np.min(rgb)),
            'mean_alpha': float(np.mean(buffer.as_array()[:, :, 3])),
        }

    def compare_buffers(self, first: PixelBuffer, second: PixelBuffer) -> Dict[str, float]:
        """Compare two buffers of equal size over their colour channels.

        Returns:
            Dictionary with ``mse``, ``psnr`` and ``max_abs_diff``
        """
        if (first.width, first.height) != (second.width, second.height):
            raise ValueError(
                f"Cannot compare {first.width}x{first.height} with {second.width}x{second.height}"
            )

        a = first.as_array()[:, :, :3].astype(np.float64)
        b = second.as_array()[:, :, :3].astype(np.float64)

        mse = float(np.mean((a - b) ** 2))
        if mse == 0:
            psnr = float('inf')
        else:
            psnr = float(20 * np.log10(255.0 / np.sqrt(mse)))

        return {
            'mse': mse,
            'psnr': psnr,
            'max_abs_diff': float(np.max(np.abs(a - b))),
        }


def validate_pipeline(pipeline: EnhancementPipeline,
                      test_buffers: Dict[str, PixelBuffer],
                      settings: Optional[EnhancementSettings] = None) -> Dict[str, Dict]:
    """Run the pipeline over test buffers and collect statistics.

    The enhanced result is compared against a plain resample of the input,
    which shows how much the filter stages changed the image.

    Args:
        pipeline: EnhancementPipeline instance
        test_buffers: Mapping of names to input buffers
        settings: Settings for every run, defaults to EnhancementSettings()

    Returns:
        Dictionary with validation results for each test buffer
    """
    logger = logging.getLogger(__name__)
    settings = settings or EnhancementSettings()
    analyzer = BufferAnalyzer()
    results = {}

    for name, buffer in test_buffers.items():
        logger.info(f"Validating with test image {name}")

        enhanced = pipeline.run(buffer, settings)
        timings = pipeline.get_stage_timings()
        reference = pipeline.resampler.process(buffer, enhanced.width, enhanced.height)

        results[name] = {
            'original': analyzer.analyze_buffer(buffer),
            'enhanced': analyzer.analyze_buffer(enhanced),
            'comparison': analyzer.compare_buffers(reference, enhanced),
            'processing_times': timings,
        }

    return results


def benchmark_pipeline(pipeline: EnhancementPipeline,
                       buffer: PixelBuffer,
                       settings: Optional[EnhancementSettings] = None,
                       iterations: int = 3) -> Dict[str, float]:
    """Benchmark processing pipeline performance.

    Returns:
        Dictionary with benchmark results
    """
    logger = logging.getLogger(__name__)
    settings = settings or EnhancementSettings()
    times = []

    for i in range(iterations):
        start_time = time.time()
        pipeline.run(buffer, settings)
        iteration_time = time.time() - start_time
        times.append(iteration_time)
        logger.debug(f"Iteration {i+1}: {iteration_time:.3f}s")

    return {
        'mean_time': float(np.mean(times)),
        'std_time': float(np.std(times)),
        'min_time': float(np.min(times)),
        'max_time': float(np.max(times)),
        'iterations': iterations
    }
