"""Cooperative cancellation for indexing runs."""

import threading

from .errors import IndexingCancelledError


class CancellationToken:
    """Flag shared between the caller that cancels and the worker that checks."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        """Raise IndexingCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise IndexingCancelledError()

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds, waking early on cancel. True if cancelled."""
        return self._event.wait(timeout)
