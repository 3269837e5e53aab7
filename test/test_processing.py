"""Tests for the EZ-HD enhancement pipeline."""

import math
import unittest
import threading
from unittest import mock

import numpy as np

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config.settings import ProcessingSettings
from processing import (PixelBuffer, EnhancementSettings, CancellationToken, EnhancementPipeline,
                        PipelineRun, PipelineState, run_pipeline, InvalidDimensions, Cancelled,
                        ResourceExhausted, StageFailed)
from processing.stages import (ResampleStage, DenoiseStage, SharpenStage, ColorAdjustStage,
                               resample, denoise, sharpen, adjust)


def random_buffer(width, height, seed=0):
    """Random RGBA buffer with varying alpha."""
    rng = np.random.RandomState(seed)
    return PixelBuffer.from_array(rng.randint(0, 256, size=(height, width, 4)).astype(np.uint8))


def reference_bilateral(buffer, strength):
    """Straightforward per-pixel bilateral filter used to check the vectorised one."""
    src = buffer.as_array().astype(np.float64)
    out = buffer.as_array().copy()
    radius = math.ceil(strength * 3)
    sigma_s = radius * 0.5
    sigma_c = strength * 50
    for y in range(buffer.height):
        for x in range(buffer.width):
            total = 0.0
            sums = np.zeros(3)
            for dy in range(-radius, radius + 1):
                for dx in range(-radius, radius + 1):
                    ny, nx = y + dy, x + dx
                    if 0 <= ny < buffer.height and 0 <= nx < buffer.width:
                        color_dist2 = float(np.sum((src[ny, nx, :3] - src[y, x, :3]) ** 2))
                        weight = (math.exp(-(dx * dx + dy * dy) / (2 * sigma_s * sigma_s))
                                  * math.exp(-color_dist2 / (2 * sigma_c * sigma_c)))
                        total += weight
                        sums += weight * src[ny, nx, :3]
            out[y, x, :3] = np.clip(np.floor(sums / total + 0.5), 0, 255)
    return out


class TestPixelBuffer(unittest.TestCase):
    """Test the buffer data model."""

    def test_validate_accepts_consistent_buffer(self):
        buffer = PixelBuffer(3, 2, [0] * 24)
        buffer.validate()
        self.assertEqual(buffer.as_array().shape, (2, 3, 4))
        self.assertEqual(buffer.num_pixels, 6)

    def test_validate_rejects_zero_dimensions(self):
        with self.assertRaises(InvalidDimensions):
            PixelBuffer(0, 4, []).validate()

    def test_validate_rejects_length_mismatch(self):
        with self.assertRaises(InvalidDimensions):
            PixelBuffer(2, 2, [0] * 15).validate()

    def test_from_array_requires_four_channels(self):
        with self.assertRaises(InvalidDimensions):
            PixelBuffer.from_array(np.zeros((2, 2, 3), dtype=np.uint8))

    def test_accepts_raw_bytes(self):
        buffer = PixelBuffer(1, 1, bytes([1, 2, 3, 4]))
        self.assertEqual(list(buffer.pixels), [1, 2, 3, 4])

    def test_copy_is_independent(self):
        buffer = PixelBuffer.filled(2, 2, (10, 20, 30, 40))
        clone = buffer.copy()
        clone.pixels[0] = 99
        self.assertEqual(buffer.pixels[0], 10)


class TestEnhancementSettings(unittest.TestCase):
    """Test settings validation."""

    def test_rejects_scale_below_one(self):
        with self.assertRaises(ValueError):
            EnhancementSettings(scale_factor=0.5)

    def test_rejects_negative_strengths(self):
        with self.assertRaises(ValueError):
            EnhancementSettings(sharpen_strength=-0.1)
        with self.assertRaises(ValueError):
            EnhancementSettings(denoise_strength=-1)

    def test_rejects_non_finite_values(self):
        with self.assertRaises(ValueError):
            EnhancementSettings(contrast=float('nan'))

    def test_target_size_rounds_half_up(self):
        settings = EnhancementSettings.neutral(scale_factor=1.5)
        self.assertEqual(settings.target_size(3, 4), (5, 6))

    def test_out_of_range_fields(self):
        self.assertEqual(EnhancementSettings().out_of_range_fields(), [])
        settings = EnhancementSettings(scale_factor=8, contrast=3.0, sharpen_strength=0)
        self.assertEqual(settings.out_of_range_fields(), ["scale_factor", "contrast"])


class TestResampleStage(unittest.TestCase):
    """Test progressive resampling."""

    def test_scales_to_exact_target(self):
        result = resample(random_buffer(4, 4), 16, 16)
        self.assertEqual((result.width, result.height), (16, 16))
        self.assertEqual(result.pixels.size, 16 * 16 * 4)

    def test_same_size_is_bit_identical(self):
        source = random_buffer(7, 5)
        result = resample(source, 7, 5)
        self.assertEqual(result, source)
        self.assertIsNot(result.pixels, source.pixels)

    def test_non_uniform_target(self):
        result = resample(random_buffer(5, 3), 13, 11)
        self.assertEqual((result.width, result.height), (13, 11))

    def test_plan_passes(self):
        self.assertEqual(ResampleStage.plan_passes((4, 4), (16, 16)), [(8, 8), (16, 16)])
        self.assertEqual(ResampleStage.plan_passes((1, 1), (8, 8)), [(2, 2), (4, 4), (8, 8)])
        self.assertEqual(ResampleStage.plan_passes((3, 5), (12, 20)), [(6, 10), (12, 20)])
        self.assertEqual(ResampleStage.plan_passes((2, 2), (4, 4)), [(4, 4)])
        self.assertEqual(ResampleStage.plan_passes((10, 10), (10, 10)), [(10, 10)])

    def test_constant_image_stays_constant(self):
        source = PixelBuffer.filled(3, 3, (128, 64, 200, 255))
        result = resample(source, 12, 9)
        self.assertTrue(np.all(result.as_array() == np.array([128, 64, 200, 255], dtype=np.uint8)))

    def test_zero_size_source_fails(self):
        with self.assertRaises(InvalidDimensions):
            resample(PixelBuffer(0, 0, []), 4, 4)

    def test_shrinking_target_fails(self):
        with self.assertRaises(InvalidDimensions):
            resample(random_buffer(8, 8), 4, 8)

    def test_pixel_limit(self):
        settings = ProcessingSettings()
        settings.MAX_OUTPUT_PIXELS = 100
        with self.assertRaises(ResourceExhausted):
            ResampleStage(settings).process(random_buffer(8, 8), 16, 16)

    def test_nearest_is_never_used(self):
        settings = ProcessingSettings()
        settings.RESIZE_ALGORITHM = "NEAREST"
        stage = ResampleStage(settings)
        self.assertNotEqual(stage._get_resample_filter("NEAREST"), 0)


class TestDenoiseStage(unittest.TestCase):
    """Test the bilateral filter."""

    def test_zero_strength_is_identity(self):
        source = random_buffer(9, 6)
        self.assertEqual(denoise(source, 0), source)

    def test_matches_reference_filter(self):
        source = random_buffer(7, 6, seed=3)
        result = denoise(source, 0.7)
        expected = reference_bilateral(source, 0.7)
        diff = np.abs(result.as_array().astype(int) - expected.astype(int))
        self.assertLessEqual(diff.max(), 1)

    def test_alpha_is_copied(self):
        source = random_buffer(8, 8, seed=1)
        result = denoise(source, 1.0)
        np.testing.assert_array_equal(result.as_array()[:, :, 3], source.as_array()[:, :, 3])

    def test_hard_edges_are_preserved(self):
        array = np.zeros((6, 8, 4), dtype=np.uint8)
        array[:, 4:, :3] = 255
        array[:, :, 3] = 255
        source = PixelBuffer.from_array(array)
        self.assertEqual(denoise(source, 0.5), source)

    def test_reduces_noise(self):
        rng = np.random.RandomState(7)
        array = np.empty((20, 20, 4), dtype=np.uint8)
        array[:, :, :3] = 128 + rng.randint(-20, 21, size=(20, 20, 3))
        array[:, :, 3] = 255
        source = PixelBuffer.from_array(array)
        result = denoise(source, 1.0)
        self.assertLess(np.std(result.as_array()[:, :, :3]), np.std(array[:, :, :3]))

    def test_worker_count_does_not_change_result(self):
        source = random_buffer(12, 17, seed=5)

        single = ProcessingSettings()
        single.DENOISE_WORKERS = 1
        single.DENOISE_ROW_BATCH = 100

        parallel = ProcessingSettings()
        parallel.DENOISE_WORKERS = 4
        parallel.DENOISE_ROW_BATCH = 3

        self.assertEqual(DenoiseStage(single).process(source, 0.6),
                         DenoiseStage(parallel).process(source, 0.6))

    def test_radius_is_capped(self):
        stage = DenoiseStage()
        self.assertEqual(stage.get_radius(0.5), 2)
        self.assertEqual(stage.get_radius(0.34), 2)
        self.assertEqual(stage.get_radius(100), stage.settings.DENOISE_MAX_RADIUS)

    def test_cancellation_between_batches(self):
        token = CancellationToken()
        token.cancel()
        with self.assertRaises(Cancelled):
            DenoiseStage().process(random_buffer(4, 4), 0.5, token)


class TestSharpenStage(unittest.TestCase):
    """Test unsharp-mask sharpening."""

    def setUp(self):
        # 100/120 checker so every interior pixel moves away from its neighbours
        ys, xs = np.mgrid[0:5, 0:5]
        array = np.empty((5, 5, 4), dtype=np.uint8)
        array[:, :, :3] = (100 + 20 * ((xs + ys) % 2))[:, :, None]
        array[:, :, 3] = np.arange(25, dtype=np.uint8).reshape(5, 5) * 10
        self.checker = PixelBuffer.from_array(array)

    def test_zero_strength_is_identity(self):
        self.assertEqual(sharpen(self.checker, 0), self.checker)

    def test_border_is_preserved(self):
        result = sharpen(self.checker, 1.0).as_array()
        source = self.checker.as_array()

        border = np.ones((5, 5), dtype=bool)
        border[1:-1, 1:-1] = False
        self.assertEqual(int(border.sum()), 16)
        np.testing.assert_array_equal(result[border], source[border])

        interior_changed = np.any(result[1:-1, 1:-1, :3] != source[1:-1, 1:-1, :3], axis=2)
        self.assertTrue(interior_changed.all())

    def test_kernel_values(self):
        # 120 surrounded by 100: 120 * 5 - 4 * 100
        self.assertEqual(self.checker.as_array()[1, 1, 0], 100)
        result = sharpen(self.checker, 1.0).as_array()
        self.assertEqual(result[1, 1, 0], 20)
        self.assertEqual(result[1, 2, 0], 200)

    def test_alpha_is_copied(self):
        result = sharpen(self.checker, 1.5)
        np.testing.assert_array_equal(result.as_array()[:, :, 3], self.checker.as_array()[:, :, 3])

    def test_extreme_strength_clamps(self):
        result = sharpen(self.checker, 50.0).as_array()
        self.assertTrue(set(np.unique(result[1:-1, 1:-1, :3])).issubset({0, 255}))

    def test_tiny_buffer_unchanged(self):
        source = random_buffer(2, 7)
        self.assertEqual(sharpen(source, 1.0), source)

    def test_build_kernel(self):
        kernel = SharpenStage.build_kernel(0.5)
        self.assertAlmostEqual(kernel.sum(), 1.0)
        self.assertEqual(kernel[1, 1], 3.0)


class TestColorAdjustStage(unittest.TestCase):
    """Test contrast and brightness remapping."""

    def test_neutral_settings_are_identity(self):
        source = random_buffer(10, 10)
        self.assertEqual(adjust(source, 1.0, 0.0), source)

    def test_high_contrast_clamps(self):
        source = PixelBuffer.from_array(np.array([[[255, 200, 50, 7], [0, 128, 255, 9]]], dtype=np.uint8))
        result = adjust(source, 2.0, 0.0).as_array()
        np.testing.assert_array_equal(result[0, 0], [255, 255, 0, 7])
        np.testing.assert_array_equal(result[0, 1], [0, 128, 255, 9])

    def test_low_contrast(self):
        source = PixelBuffer.from_array(np.array([[[200, 0, 128, 255]]], dtype=np.uint8))
        result = adjust(source, 0.5, 0.0).as_array()
        np.testing.assert_array_equal(result[0, 0], [152, 85, 128, 255])

    def test_brightness_offset(self):
        source = PixelBuffer.filled(2, 2, (100, 250, 0, 128))
        result = adjust(source, 1.0, 0.2).as_array()
        np.testing.assert_array_equal(result[0, 0], [151, 255, 51, 128])

    def test_singular_contrast_is_finite(self):
        stage = ColorAdjustStage()
        for contrast in (259 / 255, 1 + 259 / 255, 10.0):
            factor = stage.contrast_factor(contrast)
            self.assertTrue(math.isfinite(factor))
            self.assertGreater(factor, 0)
        self.assertEqual(stage.contrast_factor(1.0), 1.0)

    def test_extreme_settings_keep_alpha(self):
        source = random_buffer(16, 16, seed=2)
        for contrast, brightness in [(5.0, 1.5), (2.0157, -2.0), (-3.0, 0.5)]:
            result = adjust(source, contrast, brightness)
            np.testing.assert_array_equal(result.as_array()[:, :, 3], source.as_array()[:, :, 3])


class TestPipeline(unittest.TestCase):
    """Test the pipeline coordinator."""

    def setUp(self):
        self.pipeline = EnhancementPipeline()
        self.full_settings = EnhancementSettings(scale_factor=2, sharpen_strength=1.0,
                                                 denoise_strength=0.3, contrast=1.2, brightness=0.05)

    def test_gray_end_to_end(self):
        source = PixelBuffer.filled(2, 2, (128, 128, 128, 255))
        result = self.pipeline.run(source, EnhancementSettings.neutral(scale_factor=2))
        self.assertEqual((result.width, result.height), (4, 4))
        self.assertEqual(result, PixelBuffer.filled(4, 4, (128, 128, 128, 255)))

    def test_shape_invariant(self):
        result = self.pipeline.run(random_buffer(5, 7), EnhancementSettings(scale_factor=3))
        self.assertEqual((result.width, result.height), (15, 21))
        self.assertEqual(result.pixels.size, 15 * 21 * 4)

    def test_progress_all_stages(self):
        progress = []
        self.pipeline.run(random_buffer(6, 6), self.full_settings, progress.append)
        self.assertEqual(progress, [10.0, 30.0, 55.0, 75.0, 100.0])

    def test_progress_skipped_stages(self):
        progress = []
        self.pipeline.run(random_buffer(6, 6), EnhancementSettings.neutral(2), progress.append)
        self.assertEqual(progress, [10.0, 30.0, 100.0])
        self.assertEqual(progress, sorted(progress))

    def test_state_history(self):
        self.pipeline.run(random_buffer(4, 4), self.full_settings)
        self.assertEqual(self.pipeline.last_run.history, [
            PipelineState.IDLE, PipelineState.RESAMPLING, PipelineState.DENOISING,
            PipelineState.SHARPENING, PipelineState.COLOR_ADJUSTING, PipelineState.DONE,
        ])

        self.pipeline.run(random_buffer(4, 4), EnhancementSettings.neutral(1))
        self.assertEqual(self.pipeline.last_run.history, [
            PipelineState.IDLE, PipelineState.RESAMPLING,
            PipelineState.COLOR_ADJUSTING, PipelineState.DONE,
        ])

    def test_stage_timings(self):
        self.pipeline.run(random_buffer(4, 4), self.full_settings)
        timings = self.pipeline.get_stage_timings()
        self.assertEqual(set(timings), {"resample", "denoise", "sharpen", "adjust"})

    def test_alpha_passthrough_after_resample(self):
        source = random_buffer(9, 9, seed=4)
        settings = EnhancementSettings(scale_factor=1, sharpen_strength=1.5,
                                       denoise_strength=0.5, contrast=1.8, brightness=0.3)
        result = self.pipeline.run(source, settings)
        np.testing.assert_array_equal(result.as_array()[:, :, 3], source.as_array()[:, :, 3])

    def test_source_is_not_modified(self):
        source = random_buffer(6, 6)
        before = source.copy()
        self.pipeline.run(source, self.full_settings)
        self.assertEqual(source, before)

    def test_cancel_on_first_progress(self):
        token = CancellationToken()
        progress = []

        def on_progress(percent):
            progress.append(percent)
            token.cancel()

        result = run_pipeline(random_buffer(6, 6), self.full_settings, on_progress, token)

        self.assertFalse(result.succeeded)
        self.assertTrue(result.cancelled)
        self.assertIsNone(result.buffer)
        self.assertEqual(result.run.state, PipelineState.FAILED)
        self.assertEqual(progress, [10.0])

    def test_cancel_before_start(self):
        token = CancellationToken()
        token.cancel()
        with self.assertRaises(Cancelled) as ctx:
            self.pipeline.run(random_buffer(4, 4), self.full_settings, cancel_token=token)
        self.assertEqual(ctx.exception.stage, "resample")
        self.assertEqual(self.pipeline.last_run.progress, [])

    def test_invalid_source(self):
        result = run_pipeline(PixelBuffer(0, 3, []), self.full_settings)
        self.assertIsInstance(result.error, InvalidDimensions)
        self.assertEqual(result.error.stage, "resample")
        self.assertIsNone(result.buffer)

        result = run_pipeline(PixelBuffer(2, 2, [0] * 10), self.full_settings)
        self.assertIsInstance(result.error, InvalidDimensions)

    def test_resource_limit(self):
        settings = ProcessingSettings()
        settings.MAX_OUTPUT_PIXELS = 50
        result = run_pipeline(random_buffer(10, 10), self.full_settings,
                              pipeline=EnhancementPipeline(settings))
        self.assertIsInstance(result.error, ResourceExhausted)
        self.assertEqual(result.run.state, PipelineState.FAILED)

    def test_overflowing_scale_factor(self):
        settings = EnhancementSettings(scale_factor=1e308, sharpen_strength=0, denoise_strength=0)
        result = run_pipeline(PixelBuffer.filled(2, 2, (1, 2, 3, 255)), settings)
        self.assertIsInstance(result.error, ResourceExhausted)
        self.assertEqual(result.error.stage, "resample")
        self.assertEqual(result.run.state, PipelineState.FAILED)

        settings = EnhancementSettings(scale_factor=1e300, sharpen_strength=0, denoise_strength=0)
        result = run_pipeline(PixelBuffer.filled(2, 2, (1, 2, 3, 255)), settings)
        self.assertIsInstance(result.error, ResourceExhausted)

    def test_unexpected_error_is_wrapped(self):
        self.pipeline.sharpener = mock.Mock()
        self.pipeline.sharpener.get_stage_name.return_value = "sharpen"
        self.pipeline.sharpener.process.side_effect = ZeroDivisionError("boom")

        with self.assertRaises(StageFailed) as ctx:
            self.pipeline.run(random_buffer(4, 4), self.full_settings)
        self.assertEqual(ctx.exception.stage, "sharpen")
        self.assertIsInstance(ctx.exception.__cause__, ZeroDivisionError)
        self.assertEqual(self.pipeline.last_run.history[-1], PipelineState.FAILED)

    def test_memory_error_becomes_resource_exhausted(self):
        self.pipeline.denoiser = mock.Mock()
        self.pipeline.denoiser.get_stage_name.return_value = "denoise"
        self.pipeline.denoiser.process.side_effect = MemoryError()

        result = run_pipeline(random_buffer(4, 4), self.full_settings, pipeline=self.pipeline)
        self.assertIsInstance(result.error, ResourceExhausted)
        self.assertEqual(result.error.stage, "denoise")

    def test_broken_progress_sink_does_not_fail_run(self):
        def on_progress(percent):
            raise RuntimeError("display gone")

        with self.assertLogs("processing.pipeline", level="ERROR"):
            result = run_pipeline(random_buffer(4, 4), self.full_settings, on_progress)
        self.assertTrue(result.succeeded)

    def test_concurrent_runs_are_isolated(self):
        sources = [random_buffer(8, 6, seed=i) for i in range(4)]
        expected = [EnhancementPipeline().run(s, self.full_settings) for s in sources]
        results = [None] * len(sources)

        def work(i):
            results[i] = run_pipeline(sources[i], self.full_settings).buffer

        threads = [threading.Thread(target=work, args=(i,)) for i in range(len(sources))]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results, expected)

    def test_shared_pipeline_keeps_run_records_apart(self):
        started = threading.Event()
        release = threading.Event()
        outcome = {}

        def hold_at_start(percent):
            if percent == 10.0:
                started.set()
                release.wait(5)

        def slow_run():
            outcome["slow"] = run_pipeline(random_buffer(6, 6), self.full_settings,
                                           hold_at_start, pipeline=self.pipeline)

        thread = threading.Thread(target=slow_run)
        thread.start()
        self.assertTrue(started.wait(5))
        fast = run_pipeline(random_buffer(4, 4), EnhancementSettings.neutral(1), pipeline=self.pipeline)
        release.set()
        thread.join()

        slow = outcome["slow"]
        self.assertTrue(slow.succeeded)
        self.assertIsNot(slow.run, fast.run)
        self.assertEqual(slow.run.progress, [10.0, 30.0, 55.0, 75.0, 100.0])
        self.assertEqual(fast.run.progress, [10.0, 30.0, 100.0])
        self.assertIn(PipelineState.DENOISING, slow.run.history)
        self.assertNotIn(PipelineState.DENOISING, fast.run.history)


class TestPipelineRun(unittest.TestCase):
    """Test the run state machine."""

    def test_backward_transition_rejected(self):
        run = PipelineRun()
        run.transition(PipelineState.SHARPENING)
        with self.assertRaises(RuntimeError):
            run.transition(PipelineState.DENOISING)

    def test_no_transition_after_done(self):
        run = PipelineRun()
        run.transition(PipelineState.DONE)
        with self.assertRaises(RuntimeError):
            run.transition(PipelineState.FAILED)

    def test_progress_never_decreases(self):
        seen = []
        run = PipelineRun(seen.append)
        for value in (10, 30, 20, 100):
            run.report(value)
        self.assertEqual(seen, [10, 30, 30, 100])


if __name__ == '__main__':
    unittest.main(verbosity=2)
