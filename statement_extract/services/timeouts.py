import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional

from ..errors import ExtractionTimeoutError

logger = logging.getLogger(__name__)


class Deadline:
    """
    Wall-clock budget for one pipeline run.

    Args:
        timeout_ms: Budget in milliseconds
        clock: Monotonic clock, injectable for tests
    """

    def __init__(self, timeout_ms: int, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.timeout_ms = timeout_ms
        self._expires_at = clock() + timeout_ms / 1000.0

    def remaining(self) -> float:
        """Seconds left, never negative"""
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def check(self, stage: str) -> None:
        """Raise ExtractionTimeoutError if the budget is spent"""
        if self.expired():
            logger.warning(f"Deadline of {self.timeout_ms} ms reached before {stage}")
            raise ExtractionTimeoutError(f"Extraction timed out after {self.timeout_ms} ms during {stage}")

    def cap(self, timeout: Optional[float]) -> float:
        """Clamp a per-step timeout to the remaining budget"""
        remaining = self.remaining()
        if timeout is None:
            return remaining
        return min(timeout, remaining)


def call_with_timeout(func: Callable[..., Any], timeout: Optional[float], *args, **kwargs) -> Any:
    """
    Run func in a worker thread and wait at most `timeout` seconds for it.

    The worker is not interrupted on timeout; its result is abandoned and the
    caller moves on.

    Raises:
        TimeoutError: If func did not finish in time
    """
    if timeout is None:
        return func(*args, **kwargs)

    executor = ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            raise TimeoutError(f"{getattr(func, '__name__', 'call')} exceeded {timeout:.1f}s")
    finally:
        executor.shutdown(wait=False)
