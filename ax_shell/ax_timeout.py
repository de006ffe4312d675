"""
AX Timeout / Retry
==================

Every call that crosses into the accessibility API goes through here.

- run_with_timeout: run on a daemon worker, wait at most `duration` seconds.
  A late worker is abandoned, not killed: its call may still complete inside
  the target app, so callers treat a timeout as "unknown outcome".
- run_with_retry: sequential attempts with a fixed sleep between failures.
- run_with_timeout_and_retry: each attempt timeout-bounded; a timeout counts
  as a failed attempt.
- Deadline: budget for foreground walks that materialize children themselves
  (workers never touch the tree).
"""

import logging
import threading
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from ax_config import validate_attempts, validate_delay, validate_timeout
from ax_errors import OperationTimeout
from ax_logging import get_logger

T = TypeVar("T")


def run_with_timeout(duration: float, operation: Callable[[], T], name: str = "operation") -> T:
    """Run `operation` with a deadline. Raises OperationTimeout if it is late.

    The operation's own exception is re-raised unchanged on the caller's thread.
    """
    duration = validate_timeout(duration)
    outcome = {}
    done = threading.Event()

    def _worker():
        try:
            outcome["value"] = operation()
        except Exception as e:
            outcome["error"] = e
        finally:
            done.set()

    worker = threading.Thread(target=_worker, name=f"ax-{name}", daemon=True)
    worker.start()

    if not done.wait(duration):
        raise OperationTimeout(name, duration)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def run_with_retry(max_attempts: int, delay: float, operation: Callable[[], T],
                   name: str = "operation", logger: Optional[logging.Logger] = None,
                   retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                   sleep: Callable[[float], None] = time.sleep) -> T:
    """Call `operation` up to `max_attempts` times, sleeping `delay` between failures.

    Returns the first success; re-raises the last error once attempts run out.
    Only exceptions in `retry_on` are retried, anything else propagates at once.
    """
    max_attempts = validate_attempts(max_attempts)
    delay = validate_delay(delay)
    log = get_logger(logger)

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except retry_on as e:
            if attempt >= max_attempts:
                raise
            log.warning("Attempt %d/%d of '%s' failed: %s. Retrying in %gs...",
                        attempt, max_attempts, name, e, delay)
            sleep(delay)


def run_with_timeout_and_retry(timeout: float, max_attempts: int, delay: float,
                               operation: Callable[[], T], name: str = "operation",
                               logger: Optional[logging.Logger] = None,
                               retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                               sleep: Callable[[float], None] = time.sleep) -> T:
    """Retry loop whose attempts are each bounded by `timeout`."""
    timeout = validate_timeout(timeout)
    return run_with_retry(
        max_attempts, delay,
        lambda: run_with_timeout(timeout, operation, name=name),
        name=name, logger=logger, retry_on=retry_on, sleep=sleep,
    )


class Deadline:
    """Cooperative time budget for a walk running on the foreground thread."""

    def __init__(self, seconds: float, name: str = "operation", clock: Callable[[], float] = time.monotonic):
        self.seconds = validate_timeout(seconds)
        self.name = name
        self._clock = clock
        self._expires = clock() + self.seconds

    def remaining(self) -> float:
        return max(0.0, self._expires - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires

    def check(self):
        if self.expired():
            raise OperationTimeout(self.name, self.seconds)

    def bound(self, seconds: float) -> float:
        """Clamp a per-call timeout to what is left of the budget (never 0)."""
        self.check()
        return max(0.001, min(seconds, self.remaining()))
