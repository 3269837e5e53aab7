"""Image enhancement pipeline coordinator."""

import os
import time
import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from config.settings import SETTINGS
from .buffer import EnhancementSettings, PixelBuffer
from .cancellation import CancellationToken
from .errors import Cancelled, PipelineError, ResourceExhausted, StageFailed
from .stages import ResampleStage, DenoiseStage, SharpenStage, ColorAdjustStage

ProgressCallback = Callable[[float], None]

logger = logging.getLogger(__name__)


class ProcessingStage(Protocol):
    """Protocol for processing stage implementations."""

    @abstractmethod
    def process(self, buffer: PixelBuffer, *args, **kwargs) -> PixelBuffer:
        """Process a buffer through this stage."""
        ...

    @abstractmethod
    def get_stage_name(self) -> str:
        """Get the name of this processing stage."""
        ...


class PipelineState(Enum):
    IDLE = "idle"
    RESAMPLING = "resampling"
    DENOISING = "denoising"
    SHARPENING = "sharpening"
    COLOR_ADJUSTING = "color_adjusting"
    DONE = "done"
    FAILED = "failed"


_FORWARD_ORDER = [
    PipelineState.IDLE,
    PipelineState.RESAMPLING,
    PipelineState.DENOISING,
    PipelineState.SHARPENING,
    PipelineState.COLOR_ADJUSTING,
    PipelineState.DONE,
]

# Progress reported once each stage has finished
STAGE_PROGRESS = {
    PipelineState.RESAMPLING: 30.0,
    PipelineState.DENOISING: 55.0,
    PipelineState.SHARPENING: 75.0,
    PipelineState.COLOR_ADJUSTING: 100.0,
}
RESAMPLE_START_PROGRESS = 10.0


class PipelineRun:
    """Bookkeeping for a single invocation of the pipeline.

    Tracks the state machine, the progress values handed to the caller and
    per-stage timings. A new record is created for every run.
    """

    def __init__(self, on_progress: Optional[ProgressCallback] = None):
        self.on_progress = on_progress
        self.state = PipelineState.IDLE
        self.history: List[PipelineState] = [PipelineState.IDLE]
        self.progress: List[float] = []
        self.stage_timings: Dict[str, float] = {}
        self.error: Optional[PipelineError] = None

    def transition(self, state: PipelineState) -> None:
        """Move to ``state``; only forward moves and failure are allowed."""
        if self.state in (PipelineState.DONE, PipelineState.FAILED):
            raise RuntimeError(f"Run already finished in state {self.state.value}")

        if state is not PipelineState.FAILED:
            if _FORWARD_ORDER.index(state) <= _FORWARD_ORDER.index(self.state):
                raise RuntimeError(f"Invalid transition {self.state.value} -> {state.value}")

        logger.debug(f"Pipeline state {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, error: PipelineError) -> None:
        self.error = error
        if self.state not in (PipelineState.DONE, PipelineState.FAILED):
            self.transition(PipelineState.FAILED)

    def report(self, percent: float) -> None:
        """Send a progress value to the caller, never lower than the last one."""
        if self.progress:
            percent = max(percent, self.progress[-1])
        self.progress.append(percent)

        if self.on_progress is None:
            return
        try:
            self.on_progress(percent)
        except Exception:
            # Progress sinks are fire-and-forget; a broken sink must not fail the run
            logger.exception("Progress callback raised")

    @property
    def total_time(self) -> float:
        return sum(self.stage_timings.values())


@dataclass
class PipelineResult:
    """Outcome of :func:`run_pipeline`: exactly one of buffer or error is set."""

    buffer: Optional[PixelBuffer] = None
    error: Optional[PipelineError] = None
    run: Optional[PipelineRun] = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.buffer is not None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, Cancelled)


class EnhancementPipeline:
    """Coordinates resampling, denoising, sharpening and colour adjustment."""

    def __init__(self, settings=None):
        self.settings = settings or SETTINGS["processing"]
        self.system_settings = SETTINGS["system"]
        self.logger = logging.getLogger(__name__)

        self.resampler = ResampleStage(self.settings)
        self.denoiser = DenoiseStage(self.settings)
        self.sharpener = SharpenStage()
        self.color_adjuster = ColorAdjustStage(self.settings)

        self.stages: List[ProcessingStage] = [
            self.resampler,
            self.denoiser,
            self.sharpener,
            self.color_adjuster,
        ]

        # Most recently started run, for timing introspection only
        self.last_run: Optional[PipelineRun] = None

    def run(self,
            source: PixelBuffer,
            settings: EnhancementSettings,
            on_progress: Optional[ProgressCallback] = None,
            cancel_token: Optional[CancellationToken] = None,
            save_intermediates: bool = None,
            run_record: Optional[PipelineRun] = None) -> PixelBuffer:
        """Enhance a buffer through the complete pipeline.

        Args:
            source: Decoded input buffer, never modified
            settings: Enhancement settings for this run
            on_progress: Called with a percentage after fixed points of the run
            cancel_token: Checked between stages and inside the denoiser
            save_intermediates: Whether to save each stage result to disk
            run_record: Bookkeeping record to fill in; when given, its own
                progress callback is used instead of ``on_progress``

        Returns:
            Enhanced buffer

        Raises:
            PipelineError: On any stage failure or cancellation
        """
        if save_intermediates is None:
            save_intermediates = self.system_settings.SAVE_INTERMEDIATE_IMAGES
        token = cancel_token or CancellationToken()

        run = run_record or PipelineRun(on_progress)
        self.last_run = run

        self.logger.info(f"Starting enhancement of {source.width}x{source.height} image with {settings}")
        pipeline_start = time.time()

        try:
            current = self._run_stage(
                run, PipelineState.RESAMPLING, self.resampler, token,
                lambda: self._resample(source, settings),
                start_progress=RESAMPLE_START_PROGRESS,
            )
            self._finish_stage(run, PipelineState.RESAMPLING, current, save_intermediates)

            if settings.denoise_strength > 0:
                current = self._run_stage(
                    run, PipelineState.DENOISING, self.denoiser, token,
                    lambda buffer=current: self.denoiser.process(buffer, settings.denoise_strength, token),
                )
                self._finish_stage(run, PipelineState.DENOISING, current, save_intermediates)

            if settings.sharpen_strength > 0:
                current = self._run_stage(
                    run, PipelineState.SHARPENING, self.sharpener, token,
                    lambda buffer=current: self.sharpener.process(buffer, settings.sharpen_strength),
                )
                self._finish_stage(run, PipelineState.SHARPENING, current, save_intermediates)

            current = self._run_stage(
                run, PipelineState.COLOR_ADJUSTING, self.color_adjuster, token,
                lambda buffer=current: self.color_adjuster.process(
                    buffer, settings.contrast, settings.brightness),
            )
            run.transition(PipelineState.DONE)
            self._finish_stage(run, PipelineState.COLOR_ADJUSTING, current, save_intermediates)

        except PipelineError as e:
            run.fail(e)
            raise

        total_time = time.time() - pipeline_start
        self.logger.info(f"Enhancement completed in {total_time:.3f}s -> {current.width}x{current.height}")
        return current

    def _resample(self, source: PixelBuffer, settings: EnhancementSettings) -> PixelBuffer:
        try:
            target_width, target_height = settings.target_size(source.width, source.height)
        except OverflowError as e:
            raise ResourceExhausted(f"Scale factor {settings.scale_factor} overflows the output size") from e
        return self.resampler.process(source, target_width, target_height)

    def _run_stage(self,
                   run: PipelineRun,
                   state: PipelineState,
                   stage: ProcessingStage,
                   token: CancellationToken,
                   action: Callable[[], PixelBuffer],
                   start_progress: Optional[float] = None) -> PixelBuffer:
        """Execute one stage, attaching the stage name to any failure."""
        stage_name = stage.get_stage_name()

        try:
            token.raise_if_cancelled()
            run.transition(state)
            if start_progress is not None:
                run.report(start_progress)
                token.raise_if_cancelled()

            self.logger.debug(f"Processing stage: {stage_name}")
            stage_start = time.time()
            result = action()
            result.validate()
        except PipelineError as e:
            if e.stage is None:
                e.stage = stage_name
            raise
        except MemoryError as e:
            raise ResourceExhausted(f"Out of memory: {e}", stage=stage_name) from e
        except Exception as e:
            raise StageFailed(f"{type(e).__name__}: {e}", stage=stage_name) from e

        stage_time = time.time() - stage_start
        run.stage_timings[stage_name] = stage_time
        if self.system_settings.DISPLAY_PROCESSING_TIME:
            self.logger.info(f"{stage_name} completed in {stage_time:.3f}s")
        return result

    def _finish_stage(self, run: PipelineRun, state: PipelineState,
                      buffer: PixelBuffer, save_intermediates: bool) -> None:
        if save_intermediates:
            self._save_intermediate(buffer, state.value)
        run.report(STAGE_PROGRESS[state])

    def _save_intermediate(self, buffer: PixelBuffer, stage_name: str) -> None:
        """Save intermediate processing result to file."""
        from utils.imaging import save_buffer

        output_dir = self.system_settings.OUTPUT_DIR
        filepath = os.path.join(output_dir, f"intermediate_{stage_name}.png")

        try:
            os.makedirs(output_dir, exist_ok=True)
            save_buffer(buffer, filepath)
            self.logger.debug(f"Saved intermediate result: {filepath}")
        except OSError as e:
            self.logger.error(f"Failed to save intermediate result: {e}")

    def get_stage_timings(self) -> Dict[str, float]:
        """Get timing information for the most recent run.

        Returns:
            Dictionary mapping stage names to execution times in seconds
        """
        if self.last_run is None:
            return {}
        return self.last_run.stage_timings.copy()

    def get_pipeline_info(self) -> Dict[str, Any]:
        """Get information about the processing pipeline.

        Returns:
            Dictionary with pipeline configuration and stage information
        """
        return {
            "stages": [stage.get_stage_name() for stage in self.stages],
            "settings": {
                "resize_algorithm": self.settings.RESIZE_ALGORITHM,
                "denoise_max_radius": self.settings.DENOISE_MAX_RADIUS,
                "denoise_workers": self.settings.DENOISE_WORKERS,
                "denoise_row_batch": self.settings.DENOISE_ROW_BATCH,
                "max_output_pixels": self.settings.MAX_OUTPUT_PIXELS,
            },
            "last_processing_times": self.get_stage_timings()
        }


def run_pipeline(source: PixelBuffer,
                 settings: EnhancementSettings,
                 on_progress: Optional[ProgressCallback] = None,
                 cancel_token: Optional[CancellationToken] = None,
                 pipeline: Optional[EnhancementPipeline] = None,
                 save_intermediates: bool = None) -> PipelineResult:
    """Run the enhancement pipeline and report the outcome as a value.

    A failed or cancelled run carries no buffer; callers keep showing the
    original image.
    """
    pipeline = pipeline or EnhancementPipeline()
    run = PipelineRun(on_progress)

    try:
        buffer = pipeline.run(source, settings, cancel_token=cancel_token,
                              save_intermediates=save_intermediates, run_record=run)
    except Cancelled as e:
        logger.info(f"Enhancement cancelled: {e}")
        return PipelineResult(error=e, run=run)
    except PipelineError as e:
        logger.error(f"Enhancement failed: {e}")
        return PipelineResult(error=e, run=run)

    return PipelineResult(buffer=buffer, run=run)
