"""Cancellation helpers for the blocking calls of an exchange."""

from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from typing import Iterable, Iterator, TypeVar

from ..errors import ExchangeCancelledError

__all__ = ["CancelToken", "wait_for", "iter_completed"]

R = TypeVar("R")

_POLL_SECONDS = 0.05


class CancelToken:
    """Caller-owned cancellation signal with an optional timeout.

    ``cancel()`` may be called from any thread. A token with ``timeout`` set
    counts as cancelled once the deadline passes.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ExchangeCancelledError("Cancelled")


def wait_for(future: Future[R], token: CancelToken | None = None) -> R:
    """Block on ``future`` until it finishes or ``token`` is cancelled.

    The future is left running on cancellation; its result is discarded.
    """
    if token is None:
        return future.result()
    while True:
        token.raise_if_cancelled()
        remaining = token.remaining()
        step = _POLL_SECONDS if remaining is None else min(_POLL_SECONDS, remaining)
        # only read result() once done: the call may raise TimeoutError itself
        done, _ = wait([future], timeout=step)
        if done:
            return future.result()


def iter_completed(futures: Iterable[Future[R]], token: CancelToken | None = None) -> Iterator[Future[R]]:
    """Yield futures as they finish, checking ``token`` between completions."""
    pending = set(futures)
    while pending:
        if token is not None:
            token.raise_if_cancelled()
            remaining = token.remaining()
            step = _POLL_SECONDS if remaining is None else min(_POLL_SECONDS, remaining)
        else:
            step = None
        done, pending = wait(pending, timeout=step, return_when=FIRST_COMPLETED)
        yield from done
