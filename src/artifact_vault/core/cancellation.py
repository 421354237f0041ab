"""Cooperative cancellation for blocking packaging and extraction work."""

import threading

from artifact_vault.core.exceptions import OperationCancelledError


class CancellationToken:
    """
    Flag checked by long-running operations between units of work.

    The orchestrator (or a request handler) calls ``cancel()`` from any
    thread; workers call ``raise_if_cancelled()`` between chunks.
    """

    def __init__(self, operation: str | None = None) -> None:
        self._event = threading.Event()
        self._operation = operation

    @property
    def cancelled(self) -> bool:
        """Return True once cancellation was requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelledError(operation=self._operation)
