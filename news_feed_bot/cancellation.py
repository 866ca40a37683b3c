"""Cooperative cancellation shared by the fetch and publish loops."""

import threading


class Cancelled(BaseException):
    """Raised when a loop or operation observes a cancelled token.

    Derives from BaseException so ``except Exception`` handlers around
    unit-level work never swallow it.
    """


class CancelToken:
    """Thread-safe cancellation flag with interruptible waits."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to ``timeout`` seconds, returning True if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()
