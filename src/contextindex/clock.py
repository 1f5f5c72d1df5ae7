"""Injectable clock and cancellation primitives."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone

from contextindex.errors import IndexingCancelled

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class CancelToken:
    """Cooperative cancellation signal for a long-running indexing run.

    A token is cancelled either explicitly via ``cancel()`` (e.g. the caller's
    request was aborted) or implicitly once its deadline passes. Work checks
    the token between suspension points with ``raise_if_cancelled()``.

    Args:
        timeout: Seconds until the token expires; ``None`` means no deadline.
        monotonic: Time source (injectable for tests).
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._monotonic = monotonic
        self._deadline = monotonic() + timeout if timeout is not None else None
        self._reason = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._monotonic() >= self._deadline:
            self.cancel("timeout exceeded")
            return True
        return False

    def remaining(self) -> float | None:
        """Seconds left before the deadline (never negative); None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._monotonic())

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self, step: str = "") -> None:
        """Raise IndexingCancelled if the token has been cancelled or expired."""
        if self.cancelled:
            where = f" during {step}" if step else ""
            raise IndexingCancelled(f"Indexing cancelled{where}: {self._reason}.")
