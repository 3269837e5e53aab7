"""Error types raised by the enhancement pipeline."""

from typing import Optional


class PipelineError(Exception):
    """Base class for failures of an enhancement run.

    Args:
        message: Human readable description
        stage: Name of the stage that failed, attached by the coordinator
    """

    reason: str = "error"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class InvalidDimensions(PipelineError):
    """Buffer has zero width/height or a pixel array of the wrong length."""

    reason = "invalid_dimensions"


class Cancelled(PipelineError):
    """The caller requested cancellation while the run was in progress."""

    reason = "cancelled"


class ResourceExhausted(PipelineError):
    """An intermediate buffer could not be allocated."""

    reason = "resource_exhausted"


class StageFailed(PipelineError):
    """Unexpected exception raised inside a stage."""

    reason = "stage_failed"


__all__ = [
    "PipelineError",
    "InvalidDimensions",
    "Cancelled",
    "ResourceExhausted",
    "StageFailed",
]
