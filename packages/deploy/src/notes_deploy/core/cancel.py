from __future__ import annotations

import threading

from .errors import PipelineAborted


class CancelToken:
    """
    Run-wide cancellation flag.

    Every blocking wait in the pipeline goes through `sleep`, so setting the
    token interrupts the wait immediately instead of after the full delay.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "aborted") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineAborted(f"Run aborted: {self.reason}")

    def sleep(self, seconds: float) -> None:
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        if self._event.wait(seconds):
            raise PipelineAborted(f"Run aborted: {self.reason}")
