#!/usr/bin/env python3
"""Main application entry point for EZ-HD."""

import os
import sys
import logging
import argparse
import threading
from datetime import datetime

from config.settings import SETTINGS

# Setup logging
logging.basicConfig(
    level=getattr(logging, SETTINGS["system"].LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Import project modules
from processing import (CancellationToken, EnhancementPipeline, EnhancementSettings,
                        PipelineResult, run_pipeline)
from utils.imaging import ImageDecodeError, load_buffer, save_buffer
from utils.testing import TestImageGenerator, benchmark_pipeline, validate_pipeline


def setup_global_options(args: argparse.Namespace) -> None:
    """Setup global options like debug and verbose mode."""
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        SETTINGS["system"].DEBUG_MODE = True
        print("Debug mode enabled")
    elif args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        print("Verbose mode enabled")


def print_progress(percent: float) -> None:
    """Progress sink writing a single updating line to stderr."""
    end = "\n" if percent >= 100 else ""
    print(f"\rEnhancing... {percent:5.1f}%", end=end, file=sys.stderr, flush=True)


def run_cancellable(pipeline: EnhancementPipeline, source, settings: EnhancementSettings,
                    save_intermediates: bool = False) -> PipelineResult:
    """Run the pipeline on a worker thread so Ctrl+C cancels it cleanly."""
    token = CancellationToken()
    outcome = {}

    def worker() -> None:
        outcome["result"] = run_pipeline(source, settings, print_progress, token, pipeline,
                                         save_intermediates=save_intermediates)

    thread = threading.Thread(target=worker, name="ezhd-pipeline")
    thread.start()
    try:
        while thread.is_alive():
            thread.join(0.2)
    except KeyboardInterrupt:
        print("\nCancelling...", file=sys.stderr)
        token.cancel()
        thread.join()

    return outcome["result"]


def cmd_enhance(args: argparse.Namespace) -> None:
    """Enhance an image file through the pipeline."""
    try:
        settings = EnhancementSettings(
            scale_factor=args.scale,
            sharpen_strength=args.sharpen,
            denoise_strength=args.denoise,
            contrast=args.contrast,
            brightness=args.brightness,
        )
    except ValueError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        sys.exit(2)

    for name in settings.out_of_range_fields():
        logging.getLogger(__name__).warning(
            f"{name}={getattr(settings, name)} is outside the usual range; output may be degraded"
        )

    print(f"Loading image: {args.input_file}")
    try:
        source = load_buffer(args.input_file)
    except ImageDecodeError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    print(f"Image loaded: {source.width}x{source.height}")

    pipeline = EnhancementPipeline()
    result = run_cancellable(pipeline, source, settings, save_intermediates=args.save_stages)

    if not result.succeeded:
        # The original stays untouched; nothing is written
        label = "cancelled" if result.cancelled else "failed"
        print(f"Enhancement {label}: {result.error}. Original image kept.", file=sys.stderr)
        sys.exit(1)

    enhanced = result.buffer

    # Show timing information
    print("\nProcessing times:")
    for stage, time_taken in result.run.stage_timings.items():
        print(f"  {stage}: {time_taken:.3f}s")

    if args.output:
        output_filename = args.output
    else:
        output_filename = f"ezhd-enhanced-{int(datetime.now().timestamp() * 1000)}.png"

    save_buffer(enhanced, output_filename)
    print(f"Enhanced image saved as {output_filename} ({enhanced.width}x{enhanced.height})")

    if args.compare:
        from utils.display import show_before_after
        comparison_path = os.path.splitext(output_filename)[0] + "_comparison.png"
        show_before_after(source, enhanced, save_path=comparison_path, show=args.show)
        print(f"Comparison saved as {comparison_path}")
    elif args.show:
        from utils.display import show_image
        show_image(enhanced, title=f"Enhanced {os.path.basename(output_filename)}")


def cmd_test_pipeline(args: argparse.Namespace) -> None:
    """Test the enhancement pipeline with synthetic test images."""
    print("Testing enhancement pipeline...")

    generator = TestImageGenerator()

    if args.generate_images:
        generator.generate_test_images()

    test_image_names = generator.list_test_images()

    if not test_image_names:
        print("No test images found. Use --generate-images to create them.", file=sys.stderr)
        sys.exit(1)

    print(f"Found {len(test_image_names)} test images")

    test_buffers = {}
    for name in test_image_names:
        try:
            test_buffers[name] = generator.load_image(name)
            print(f"  ✓ Loaded: {name}")
        except ImageDecodeError as e:
            print(f"  ✗ Failed to load: {name} ({e})")

    if not test_buffers:
        print("No test images could be loaded", file=sys.stderr)
        sys.exit(1)

    print("Running pipeline validation...")
    results = validate_pipeline(EnhancementPipeline(), test_buffers)

    print("\nValidation Results:")
    for test_name, result in results.items():
        total_time = sum(result['processing_times'].values())
        psnr = result['comparison']['psnr']
        print(f"  ✓ {test_name}: {total_time:.3f}s total, "
              f"{result['enhanced']['width']}x{result['enhanced']['height']}, "
              f"PSNR vs plain resample {psnr:.2f} dB")

    if args.benchmark:
        print(f"\nBenchmarking ({args.iterations} iterations per image)...")
        pipeline = EnhancementPipeline()
        for name, buffer in test_buffers.items():
            stats = benchmark_pipeline(pipeline, buffer, iterations=args.iterations)
            print(f"  {name}: mean {stats['mean_time']:.3f}s, std {stats['std_time']:.3f}s, "
                  f"min {stats['min_time']:.3f}s, max {stats['max_time']:.3f}s")


def cmd_info(args: argparse.Namespace) -> None:
    """Display configuration."""
    print("EZ-HD System Information")
    print("=" * 30)

    defaults = SETTINGS["enhancement"]
    print("\nEnhancement Defaults:")
    print(f"  Scale Factor: {defaults.SCALE_FACTOR} (range {defaults.SCALE_RANGE})")
    print(f"  Sharpen Strength: {defaults.SHARPEN_STRENGTH} (range {defaults.SHARPEN_RANGE})")
    print(f"  Denoise Strength: {defaults.DENOISE_STRENGTH} (range {defaults.DENOISE_RANGE})")
    print(f"  Contrast: {defaults.CONTRAST} (range {defaults.CONTRAST_RANGE})")
    print(f"  Brightness: {defaults.BRIGHTNESS} (range {defaults.BRIGHTNESS_RANGE})")

    print("\nProcessing Configuration:")
    info = EnhancementPipeline().get_pipeline_info()
    print(f"  Stages: {' -> '.join(info['stages'])}")
    for key, value in info["settings"].items():
        print(f"  {key.replace('_', ' ').title()}: {value}")


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    defaults = SETTINGS["enhancement"]
    parser = argparse.ArgumentParser(
        description='EZ-HD - Offline image upscaling and enhancement'
    )

    # Global options
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose output')

    # Create subparsers
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Enhance command
    enhance_parser = subparsers.add_parser('enhance', help='Enhance an image file')
    enhance_parser.add_argument('input_file', help='Input image file path')
    enhance_parser.add_argument('--output', '-o', help='Output filename for the enhanced image')
    enhance_parser.add_argument('--scale', type=float, default=defaults.SCALE_FACTOR,
                                help='Resolution scale factor (>= 1)')
    enhance_parser.add_argument('--sharpen', type=float, default=defaults.SHARPEN_STRENGTH,
                                help='Sharpening strength, 0 disables')
    enhance_parser.add_argument('--denoise', type=float, default=defaults.DENOISE_STRENGTH,
                                help='Noise reduction strength, 0 disables')
    enhance_parser.add_argument('--contrast', type=float, default=defaults.CONTRAST,
                                help='Contrast multiplier, 1.0 = unchanged')
    enhance_parser.add_argument('--brightness', type=float, default=defaults.BRIGHTNESS,
                                help='Brightness offset, 0.0 = unchanged')
    enhance_parser.add_argument('--save-stages', action='store_true',
                                help='Save intermediate stage results')
    enhance_parser.add_argument('--compare', action='store_true',
                                help='Save a before/after comparison image')
    enhance_parser.add_argument('--show', action='store_true',
                                help='Open the result (or the comparison with --compare) in a window')
    enhance_parser.set_defaults(func=cmd_enhance)

    # Test-pipeline command
    test_pipeline_parser = subparsers.add_parser('test-pipeline', help='Test the pipeline with synthetic test images')
    test_pipeline_parser.add_argument('--generate-images', action='store_true',
                                      help='Generate test images if needed')
    test_pipeline_parser.add_argument('--benchmark', action='store_true',
                                      help='Time repeated pipeline runs on each test image')
    test_pipeline_parser.add_argument('--iterations', type=int, default=3,
                                      help='Number of benchmark iterations per image')
    test_pipeline_parser.set_defaults(func=cmd_test_pipeline)

    # Info command
    info_parser = subparsers.add_parser('info', help='Display configuration')
    info_parser.set_defaults(func=cmd_info)

    return parser


def main() -> None:
    """Main application entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    # Setup global options
    setup_global_options(args)

    # Call the appropriate command function
    args.func(args)


if __name__ == '__main__':
    main()
