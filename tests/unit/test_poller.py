import logging
import unittest

from sandworm.models import (
    ExecutionError,
    ExecutionFailedError,
    ExecutionState,
    ExecutionStatusResponse,
    ExecutionTimeoutError,
    TimeData,
)
from sandworm.poller import ExecutionPoller


def status(state: str, error: dict | None = None) -> ExecutionStatusResponse:
    data = {
        "execution_id": "exec-123",
        "state": state,
        "submitted_at": "2024-01-01T00:00:00Z",
    }
    if error is not None:
        data["error"] = error
    return ExecutionStatusResponse.from_dict(data)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class TestExecutionPoller(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()

    def poller(self, timeout: float = 10, ping_frequency: float = 1) -> ExecutionPoller:
        return ExecutionPoller(
            "exec-123", timeout=timeout, ping_frequency=ping_frequency, clock=self.clock
        )

    def drive(self, poller: ExecutionPoller, states: list[str]) -> list[float]:
        """Feeds states until the poller stops asking for more, returns the delays"""
        delays = []
        for state in states:
            delay = poller.observe(status(state))
            if delay is None:
                break
            delays.append(delay)
            self.clock.sleep(delay)
        return delays

    def test_pending_executing_completed(self):
        poller = self.poller()
        delays = self.drive(
            poller,
            [
                "QUERY_STATE_PENDING",
                "QUERY_STATE_EXECUTING",
                "QUERY_STATE_EXECUTING",
                "QUERY_STATE_COMPLETED",
            ],
        )
        assert delays == [1, 1, 1]
        assert poller.polls == 4
        assert poller.last_state == ExecutionState.COMPLETED

    def test_completed_on_first_poll(self):
        poller = self.poller()
        assert poller.observe(status("QUERY_STATE_COMPLETED")) is None
        assert poller.polls == 1

    def test_partial_result_is_fetched(self):
        poller = self.poller()
        with self.assertLogs("sandworm.poller", level=logging.WARNING):
            assert poller.observe(status("QUERY_STATE_COMPLETED_PARTIAL")) is None

    def test_failed_carries_diagnostic(self):
        poller = self.poller()
        error = {
            "type": "FAILED_TYPE_EXECUTION_FAILED",
            "message": "line 1:8: Column 'x' cannot be resolved",
            "metadata": {"line": 1, "column": 8},
        }
        assert poller.observe(status("QUERY_STATE_PENDING")) == 1
        with self.assertRaises(ExecutionFailedError) as ctx:
            poller.observe(status("QUERY_STATE_FAILED", error))
        assert str(ctx.exception) == "line 1:8: Column 'x' cannot be resolved"
        assert isinstance(ctx.exception.diagnostic, ExecutionError)
        assert ctx.exception.diagnostic.metadata == {"line": 1, "column": 8}

    def test_failed_without_error_object(self):
        with self.assertRaises(ExecutionFailedError) as ctx:
            self.poller().observe(status("QUERY_STATE_FAILED"))
        assert "exec-123" in str(ctx.exception)
        assert ctx.exception.diagnostic is None

    def test_cancelled_and_expired_are_failures(self):
        for state in ("QUERY_STATE_CANCELLED", "QUERY_STATE_EXPIRED"):
            with self.assertRaises(ExecutionFailedError):
                self.poller().observe(status(state))

    def test_timeout(self):
        poller = self.poller(timeout=2.5)
        with self.assertRaises(ExecutionTimeoutError) as ctx:
            self.drive(poller, ["QUERY_STATE_EXECUTING"] * 10)
        assert ctx.exception.state == ExecutionState.EXECUTING
        assert ctx.exception.job_id == "exec-123"
        # the last sleep is shortened to the remaining budget
        assert self.clock.now == 2.5
        assert poller.polls == 4

    def test_zero_timeout_fails_on_first_non_terminal_state(self):
        poller = self.poller(timeout=0)
        with self.assertRaises(ExecutionTimeoutError):
            poller.observe(status("QUERY_STATE_PENDING"))
        assert poller.polls == 1

    def test_zero_timeout_still_returns_finished_results(self):
        assert self.poller(timeout=0).observe(status("QUERY_STATE_COMPLETED")) is None

    def test_unknown_state_keeps_polling(self):
        poller = self.poller()
        with self.assertLogs("sandworm.poller", level=logging.WARNING):
            delay = poller.observe(status("Queued"))
        assert delay == 1
        assert poller.last_state == ExecutionState.UNKNOWN

    def test_poll_interval_must_be_positive(self):
        for ping_frequency in (0, -1):
            with self.assertRaises(ValueError):
                self.poller(ping_frequency=ping_frequency)

    def test_elapsed(self):
        poller = self.poller()
        self.clock.sleep(3)
        assert poller.elapsed() == 3
        assert isinstance(status("QUERY_STATE_PENDING").times, TimeData)


if __name__ == "__main__":
    unittest.main()
