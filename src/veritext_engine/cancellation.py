from __future__ import annotations

import threading
import time

from .errors import AnalysisCancelled

POLL_INTERVAL = 0.05


class CancellationToken:
    """Cooperative cancellation signal shared by every stage of one run.

    A token is cancelled either explicitly through :meth:`cancel` or implicitly
    once its optional deadline (monotonic clock) has passed. A token created
    with a ``parent`` also observes the parent's cancellation, while cancelling
    the child never touches the parent. Workers call :meth:`check` between
    units of work.
    """

    def __init__(
        self, timeout: float | None = None, parent: CancellationToken | None = None
    ) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._parent = parent
        self._reason = "Analysis cancelled."

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._parent is not None and self._parent.cancelled:
            self._reason = self._parent.reason
            self._event.set()
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = "Analysis deadline exceeded."
            self._event.set()
            return True
        return False

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if reason and not self._event.is_set():
            self._reason = reason
        self._event.set()

    def check(self) -> None:
        """Raise AnalysisCancelled when the run should stop."""
        if self.cancelled:
            raise AnalysisCancelled(self._reason)

    def remaining(self) -> float | None:
        """Seconds left before the nearest deadline, or None without one."""
        limits = []
        if self._deadline is not None:
            limits.append(self._deadline - time.monotonic())
        if self._parent is not None:
            inherited = self._parent.remaining()
            if inherited is not None:
                limits.append(inherited)
        if not limits:
            return None
        return max(0.0, min(limits))

    def wait(self, timeout: float) -> bool:
        """Block for up to ``timeout`` seconds; return True once cancelled."""
        end = time.monotonic() + timeout
        while not self.cancelled:
            left = end - time.monotonic()
            if left <= 0:
                return False
            # A parent's cancellation does not set our event, so poll.
            step = min(left, POLL_INTERVAL)
            remaining = self.remaining()
            if remaining is not None:
                step = min(step, remaining)
            self._event.wait(step)
        return True
