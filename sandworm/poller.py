"""
Execution status polling shared by the blocking and the asyncio clients.

The poller only decides what happens after each status observation;
fetching the status and waiting between polls is left to the client, e.g.

    poller = ExecutionPoller(job_id, timeout=60, ping_frequency=1)
    delay = poller.observe(client.get_execution_status(job_id))
    while delay is not None:
        time.sleep(delay)  # or: await asyncio.sleep(delay)
        delay = poller.observe(client.get_execution_status(job_id))
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from sandworm.models import (
    ExecutionFailedError,
    ExecutionState,
    ExecutionStatusResponse,
    ExecutionTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Callable


class ExecutionPoller:
    """
    State machine over the observed states of one execution:

        PENDING -> EXECUTING -> COMPLETED | PARTIAL | FAILED | CANCELLED | EXPIRED

    `timeout` is measured on `clock` from the moment the poller is created.
    Running out of time never cancels the remote execution.
    """

    def __init__(
        self,
        job_id: str,
        timeout: float,
        ping_frequency: float,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ):
        if ping_frequency <= 0:
            raise ValueError(f"ping_frequency must be > 0, got {ping_frequency}")
        self.job_id = job_id
        self.timeout = timeout
        self.ping_frequency = ping_frequency
        self.polls = 0
        self.last_state: ExecutionState | None = None
        self._clock = clock
        self._started = clock()
        self.logger = logger or logging.getLogger(__name__)

    def elapsed(self) -> float:
        """Seconds since the wait started"""
        return self._clock() - self._started

    def observe(self, status: ExecutionStatusResponse) -> float | None:
        """
        Feeds one status response into the state machine.

        Returns None once results are ready to be fetched,
        otherwise the number of seconds to wait before polling again.
        Raises ExecutionFailedError for failed, cancelled or expired executions
        and ExecutionTimeoutError once the time budget is spent.
        """
        self.polls += 1
        state = status.state
        self.last_state = state

        if state in ExecutionState.success_states():
            if state == ExecutionState.PARTIAL:
                self.logger.warning(
                    f"execution {self.job_id} completed with a partial result set"
                )
            return None

        if state == ExecutionState.FAILED:
            self.logger.error(status)
            if status.error:
                raise ExecutionFailedError(status.error.message, status.error)
            raise ExecutionFailedError(f"execution {self.job_id} failed")
        if state == ExecutionState.CANCELLED:
            raise ExecutionFailedError(f"execution {self.job_id} was cancelled", status.error)
        if state == ExecutionState.EXPIRED:
            raise ExecutionFailedError(f"execution {self.job_id} has expired", status.error)

        if state == ExecutionState.UNKNOWN:
            self.logger.warning(
                f"execution {self.job_id} is in a state this client does not know, "
                "polling continues"
            )

        remaining = self.timeout - self.elapsed()
        if remaining <= 0:
            raise ExecutionTimeoutError(self.job_id, self.timeout, state)

        self.logger.info(f"waiting for query execution {self.job_id} to complete: {status}")
        return min(self.ping_frequency, remaining)
