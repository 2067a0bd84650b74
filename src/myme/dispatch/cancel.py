# Cooperative cancellation for long-running operations (clone, pull, replay).
# Created: 2026-09-10

from __future__ import annotations

import threading

from myme.errors import OperationCancelled


class CancellationToken:
    """Thread-safe cancel flag polled by the work it was handed to.

    Work running in the executor (git subprocesses) and on the event loop
    both check it; cancelling never interrupts anything by force.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to *timeout* seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)
