"""Cooperative cancellation for long fallback chains."""

import threading
from typing import Callable

from invoice_parsing.errors import ParsingCancelledError
from invoice_parsing.logging_config import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag shared between a caller and one parse.

    Callbacks registered with ``on_cancel`` run once, on the thread that
    calls ``cancel``. Providers use them to close in-flight HTTP clients.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._timer: threading.Timer | None = None
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def cancel_after(self, seconds: float) -> None:
        """Cancel automatically once ``seconds`` have elapsed."""
        timer = threading.Timer(seconds, self.cancel, kwargs={"reason": f"timed out after {seconds}s"})
        timer.daemon = True
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = timer
        timer.start()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        callback()
        return lambda: None

    def _remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ParsingCancelledError(self.reason or "cancelled")

    def dispose(self) -> None:
        """Stop any pending timer."""
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None
