"""Bounded polling with geometric backoff, a deadline and a cancel signal."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from vmigrate.errors import OperationCancelled, ReplicationTimeoutError
from vmigrate.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PollPolicy:
    interval: float = 5.0
    backoff: float = 1.5
    max_interval: float = 60.0
    timeout: float = 3600.0

    @classmethod
    def from_settings(cls, settings) -> "PollPolicy":
        return cls(
            interval=settings.poll_interval_seconds,
            backoff=settings.poll_backoff,
            max_interval=settings.poll_max_interval_seconds,
            timeout=settings.replication_timeout_seconds,
        )

    def delays(self):
        """Yield successive sleep intervals, capped at max_interval."""
        delay = self.interval
        while True:
            yield min(delay, self.max_interval)
            delay *= self.backoff


def wait_until(
    condition: Callable[[], bool],
    policy: PollPolicy,
    description: str,
    cancel: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Poll ``condition`` until it returns True.

    Returns the number of polls made.

    Raises:
        ReplicationTimeoutError: condition still False after policy.timeout
        OperationCancelled: ``cancel`` was set
    """
    deadline = clock() + policy.timeout
    polls = 0
    for delay in policy.delays():
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"Cancelled while waiting for {description}")
        polls += 1
        if condition():
            return polls
        remaining = deadline - clock()
        if remaining <= 0:
            raise ReplicationTimeoutError(description, policy.timeout)
        logger.debug(f"Waiting {delay:.0f}s for {description} (poll {polls})")
        sleep(min(delay, remaining))
    return polls
