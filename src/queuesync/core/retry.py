"""
Retry with exponential backoff, bounded by an optional run deadline.

- Only TransientBackendError is retried.
- Delay before retry n (0-based) is base * 2**n, capped at max.
- A deadline is checked before every attempt, never during one; sleeps are
  shortened so they never overshoot it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple, TypeVar

from .backend import BackendError, TransientBackendError

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when a transient error persists through every attempt."""

    def __init__(self, attempts: int, last_error: BackendError) -> None:
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class DeadlineExceeded(Exception):
    """Raised when the run deadline passes before an attempt could start."""

    def __init__(self, attempts: int, last_error: Optional[BackendError] = None) -> None:
        msg = f"deadline exceeded after {attempts} attempt(s)"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(msg)
        self.attempts = attempts
        self.last_error = last_error


class Deadline:
    """Wall-clock budget for a whole invocation. `timeout_sec` <= 0 means none."""

    def __init__(self, timeout_sec: Optional[float] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.timeout_sec = float(timeout_sec or 0)
        self._expires_at = clock() + self.timeout_sec if self.timeout_sec > 0 else None

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    backoff_base_sec: float = 0.2
    backoff_max_sec: float = 5.0
    sleep: Callable[[float], Any] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if int(self.max_attempts) < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = int(self.max_attempts)

    def delay(self, retry_index: int) -> float:
        return min(self.backoff_max_sec, self.backoff_base_sec * (2 ** retry_index))

    def run(
        self,
        fn: Callable[[], T],
        *,
        what: str = "",
        deadline: Optional[Deadline] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> Tuple[T, int]:
        """
        Call `fn` until it succeeds; return (result, attempts).

        Raises RetryExhausted, DeadlineExceeded, or the first non-transient
        BackendError (with its `attempts` set).
        """
        log = logger or logging.getLogger("qs.retry")
        attempt = 0
        last: Optional[BackendError] = None
        while True:
            if deadline is not None and deadline.expired():
                raise DeadlineExceeded(attempt, last)
            attempt += 1
            try:
                return fn(), attempt
            except TransientBackendError as e:
                e.attempts = attempt
                last = e
                if attempt >= self.max_attempts:
                    log.warning("%s: giving up after %d attempt(s): %s", what, attempt, e)
                    raise RetryExhausted(attempt, e) from e
                wait = self.delay(attempt - 1)
                if deadline is not None:
                    remaining = deadline.remaining()
                    if remaining is not None:
                        wait = min(wait, remaining)
                log.info("%s: transient failure (attempt %d/%d), retrying in %.2fs: %s",
                         what, attempt, self.max_attempts, wait, e)
                self.sleep(wait)
            except BackendError as e:
                e.attempts = attempt
                raise
