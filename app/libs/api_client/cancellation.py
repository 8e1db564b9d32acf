import asyncio
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future as ConcurrentFuture

from .errors import ApiCancellationError


class CancellationToken:
    """Thread-safe cooperative cancellation signal.

    A token can be cancelled directly, or derived from a supplier or a future
    whose state is read on every check.
    """

    def __init__(self, supplier: Callable[[], bool] | None = None) -> None:
        self._is_cancelled = threading.Event()
        self._lock = threading.Lock()
        self._supplier = supplier

    def cancel(self) -> None:
        with self._lock:
            self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        if self._is_cancelled.is_set():
            return True
        return self._supplier is not None and bool(self._supplier())

    def throw_if_cancelled(self, message: str | None = None) -> None:
        if self.is_cancelled():
            raise ApiCancellationError(message or "Operation was cancelled")

    def as_supplier(self) -> Callable[[], bool]:
        return self.is_cancelled

    @classmethod
    def from_supplier(cls, supplier: Callable[[], bool]) -> "CancellationToken":
        return cls(supplier)

    @classmethod
    def from_future(cls, future: asyncio.Future | ConcurrentFuture) -> "CancellationToken":
        return cls(future.cancelled)


class CancellationTokenSource:
    """Owns a token and optionally cancels it once a timeout has elapsed."""

    def __init__(self, timeout: float | None = None) -> None:
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self.token = CancellationToken(self._deadline_passed if self._deadline is not None else None)

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def cancel(self) -> None:
        self.token.cancel()

    def is_cancelled(self) -> bool:
        return self.token.is_cancelled()
