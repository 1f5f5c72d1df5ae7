"""Exponential backoff for transient embedding and storage failures.

Embedding (EmbeddingUnavailable) and storage (StorageUnavailable) calls are the
only I/O suspension points of the pipeline; both are retried here before the
failure is surfaced. Retrying stops early once the caller's CancelToken fires.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from contextindex.clock import CancelToken
from contextindex.config import RetryCfg
from contextindex.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempts (including the first) and base delay in seconds.

    Delays double per attempt: base, 2*base, 4*base, ...
    """

    attempts: int = 3
    base_delay: float = 0.5

    @classmethod
    def from_config(cls, cfg: RetryCfg) -> RetryPolicy:
        return cls(attempts=cfg.attempts, base_delay=cfg.base_delay)


def call_with_backoff(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (UpstreamUnavailable,),
    cancel: CancelToken | None = None,
) -> T:
    """Call *fn*, retrying on *retry_on* exceptions with exponential backoff.

    The last exception is re-raised unchanged once attempts are exhausted (or
    the cancel token fires); exceptions outside *retry_on* propagate at once.
    """
    stop = stop_after_attempt(policy.attempts)
    if cancel is not None:
        stop = stop_any(stop, lambda _state: cancel.cancelled)

    retrying = Retrying(
        retry=retry_if_exception_type(retry_on),
        stop=stop,
        wait=wait_exponential(multiplier=policy.base_delay, min=policy.base_delay),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    return retrying(fn)
