"""Tests for bounded polling."""

import threading

import pytest

from vmigrate.errors import OperationCancelled, ReplicationTimeoutError
from vmigrate.pipeline.polling import PollPolicy, wait_until


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestWaitUntil:
    def test_returns_when_condition_holds(self):
        clock = FakeClock()
        answers = iter([False, False, True])
        polls = wait_until(lambda: next(answers), PollPolicy(interval=2, backoff=1), "transfer",
                           sleep=clock.sleep, clock=clock)
        assert polls == 3
        assert clock.sleeps == [2, 2]

    def test_no_sleep_when_already_true(self):
        clock = FakeClock()
        assert wait_until(lambda: True, PollPolicy(), "x", sleep=clock.sleep, clock=clock) == 1
        assert clock.sleeps == []

    def test_timeout(self):
        clock = FakeClock()
        policy = PollPolicy(interval=10, backoff=1, timeout=25)
        with pytest.raises(ReplicationTimeoutError, match="transfer on a -> b"):
            wait_until(lambda: False, policy, "transfer on a -> b", sleep=clock.sleep, clock=clock)
        # last sleep is clipped to the deadline
        assert clock.sleeps == [10, 10, 5]

    def test_timeout_is_a_timeout_error(self):
        clock = FakeClock()
        with pytest.raises(TimeoutError):
            wait_until(lambda: False, PollPolicy(interval=1, timeout=1), "x",
                       sleep=clock.sleep, clock=clock)

    def test_cancel(self):
        clock = FakeClock()
        cancel = threading.Event()

        def condition():
            cancel.set()
            return False

        with pytest.raises(OperationCancelled):
            wait_until(condition, PollPolicy(interval=1), "x", cancel=cancel,
                       sleep=clock.sleep, clock=clock)

    def test_cancel_before_first_poll(self):
        cancel = threading.Event()
        cancel.set()
        calls = []
        with pytest.raises(OperationCancelled):
            wait_until(lambda: calls.append(1), PollPolicy(), "x", cancel=cancel)
        assert calls == []


class TestPollPolicy:
    def test_backoff_is_capped(self):
        delays = PollPolicy(interval=5, backoff=2, max_interval=30).delays()
        assert [next(delays) for _ in range(5)] == [5, 10, 20, 30, 30]

    def test_from_settings(self):
        from vmigrate.config import MigrationSettings
        policy = PollPolicy.from_settings(MigrationSettings(poll_interval_seconds=2, replication_timeout_seconds=90))
        assert policy.interval == 2
        assert policy.timeout == 90
        assert policy.backoff == 1.5
