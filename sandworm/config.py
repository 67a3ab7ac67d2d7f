"""
Client configuration.

A ClientConfig is built once per client and never mutated afterwards,
so one client instance can be shared between threads or tasks.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_BASE_URL = "https://api.dune.com"
# Seconds allowed for a single HTTP request
DEFAULT_REQUEST_TIMEOUT = 10.0
# Seconds between checking execution status
POLL_FREQUENCY_SECONDS = 1.0
# Seconds `wait_for_results` waits for a terminal state
EXECUTION_TIMEOUT_SECONDS = 300.0


@dataclass(frozen=True)
class ClientConfig:
    """Connection and polling settings shared by the sync and async clients"""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    client_version: str = "v1"
    performance: str = "medium"
    ping_frequency: float = POLL_FREQUENCY_SECONDS
    execution_timeout: float = EXECUTION_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("a non-empty Dune API key is required")
        if self.ping_frequency <= 0:
            raise ValueError(f"ping_frequency must be > 0, got {self.ping_frequency}")
        if self.execution_timeout < 0:
            raise ValueError(f"execution_timeout must be >= 0, got {self.execution_timeout}")

    @property
    def api_version(self) -> str:
        """Route prefix of the API version"""
        return f"/api/{self.client_version}"

    @classmethod
    def from_env(  # noqa: PLR0913
        cls,
        api_key: str | None = None,
        base_url: str | None = None,
        request_timeout: float | None = None,
        client_version: str = "v1",
        performance: str = "medium",
        ping_frequency: float | None = None,
        execution_timeout: float | None = None,
    ) -> ClientConfig:
        """
        Builds a config where every value not passed explicitly is read from
        the environment:
            DUNE_API_KEY, DUNE_API_BASE_URL, DUNE_API_REQUEST_TIMEOUT,
            DUNE_API_PING_FREQUENCY, DUNE_API_EXECUTION_TIMEOUT
        Raises KeyError when no API key is passed and DUNE_API_KEY is unset.
        """
        if request_timeout is None:
            request_timeout = float(
                os.environ.get("DUNE_API_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)
            )
        if ping_frequency is None:
            ping_frequency = float(os.environ.get("DUNE_API_PING_FREQUENCY", POLL_FREQUENCY_SECONDS))
        if execution_timeout is None:
            execution_timeout = float(
                os.environ.get("DUNE_API_EXECUTION_TIMEOUT", EXECUTION_TIMEOUT_SECONDS)
            )
        return cls(
            api_key=api_key or os.environ["DUNE_API_KEY"],
            base_url=base_url or os.environ.get("DUNE_API_BASE_URL", DEFAULT_BASE_URL),
            request_timeout=request_timeout,
            client_version=client_version,
            performance=performance,
            ping_frequency=ping_frequency,
            execution_timeout=execution_timeout,
        )
