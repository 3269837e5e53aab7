"""Cooperative cancellation for pipeline runs."""

import threading

from .errors import Cancelled


class CancellationToken:
    """Thread-safe flag a caller sets to stop a running pipeline.

    The coordinator checks it between stages and the denoiser between row
    batches. A token may be shared with another thread that calls
    :meth:`cancel`.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`Cancelled` if cancellation was requested."""
        if self._event.is_set():
            raise Cancelled("Enhancement cancelled by caller")
