""" "
Basic Dune Client Class responsible for executing Dune Queries
Framework built on Dune's API Documentation
https://docs.dune.com/api-reference/overview/introduction
"""

from __future__ import annotations

import json
import logging.config
from typing import TYPE_CHECKING, Any

from deprecated import deprecated
from requests import RequestException, Response, Session
from requests.adapters import HTTPAdapter, Retry

from sandworm.config import ClientConfig
from sandworm.models import (
    ApiError,
    ExecutionState,
    NetworkError,
    NotFoundError,
    NotReadyError,
    ResultsResponse,
    SerializationError,
)
from sandworm.poller import ExecutionPoller
from sandworm.util import get_package_version

if TYPE_CHECKING:
    from sandworm.types import QueryParameter, QueryParameters

# Headers used for pagination in CSV results
DUNE_CSV_NEXT_URI_HEADER = "x-dune-next-uri"
DUNE_CSV_NEXT_OFFSET_HEADER = "x-dune-next-offset"
# Default maximum number of rows to retrieve per batch of results
MAX_NUM_ROWS_PER_BATCH = 32_000
# Status codes retried by the transport before giving up
RETRY_STATUSES = frozenset({429, 502, 503, 504})
# Launch and cancel requests are not idempotent and are sent once
RETRY_METHODS = frozenset({"GET"})
# Exceptions raised by the `from_dict` constructors on unexpected payloads
PARSE_ERRORS = (KeyError, AssertionError, TypeError, ValueError)


class BaseDuneClient:
    """
    A Base Client for Dune which sets up default values
    and provides some convenient functions to use in other clients
    """

    def __init__(  # noqa: PLR0913
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        request_timeout: float | None = None,
        client_version: str = "v1",
        performance: str = "medium",
        ping_frequency: float | None = None,
        execution_timeout: float | None = None,
        config: ClientConfig | None = None,
    ):
        # Values not provided are read from environment variables
        self.config = config or ClientConfig.from_env(
            api_key=api_key,
            base_url=base_url,
            request_timeout=request_timeout,
            client_version=client_version,
            performance=performance,
            ping_frequency=ping_frequency,
            execution_timeout=execution_timeout,
        )
        self.logger = logging.getLogger(__name__)

    @classmethod
    @deprecated(
        version="0.2.0",
        reason="Use the constructor without arguments instead, it reads from environment variables",
    )
    def from_env(cls) -> BaseDuneClient:
        """
        Constructor allowing user to instantiate a client from environment variable
        We use `DUNE_API_KEY` as the environment variable that holds the API key.
        """
        return cls()

    @property
    def token(self) -> str:
        """The Dune API key"""
        return self.config.api_key

    @property
    def base_url(self) -> str:
        """Scheme and host of the Dune API"""
        return self.config.base_url

    @property
    def request_timeout(self) -> float:
        """Seconds allowed for a single HTTP request"""
        return self.config.request_timeout

    @property
    def performance(self) -> str:
        """Default performance tier of executions"""
        return self.config.performance

    @property
    def api_version(self) -> str:
        """Returns client version string"""
        return self.config.api_version

    def default_headers(self) -> dict[str, str]:
        """Return default headers containing Dune Api token"""
        client_version = get_package_version("sandworm") or "0.0.0"
        return {
            "x-dune-api-key": self.token,
            "User-Agent": f"sandworm/{client_version} (https://pypi.org/project/sandworm/)",
        }

    ############
    # Utilities:
    ############

    def _build_parameters(
        self,
        params: QueryParameters | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        allow_partial_results: str = "true",
    ) -> QueryParameters:
        """
        Utility function that builds a dictionary of parameters to be used
        when retrieving results (filters, pagination, sorting, etc.).
        This is shared between the sync and async client.
        """
        self._validate_sampling(sample_count, limit, filters, offset)

        result: QueryParameters = dict(params) if params else {}
        result["allow_partial_results"] = allow_partial_results
        if columns:
            result["columns"] = ",".join(columns)
        if sample_count is not None:
            result["sample_count"] = sample_count
        if filters is not None:
            result["filters"] = filters
        if sort_by:
            result["sort_by"] = ",".join(sort_by)
        if limit is not None:
            result["limit"] = limit
        if offset is not None:
            result["offset"] = offset

        return result

    @staticmethod
    def _validate_sampling(
        sample_count: int | None,
        batch_size: int | None,
        filters: str | None,
        offset: int | None = None,
    ) -> None:
        assert sample_count is None or (batch_size is None and filters is None and offset is None), (
            "sampling cannot be combined with filters or pagination"
        )

    def _execute_sql_payload(
        self,
        query_sql: str,
        params: list[QueryParameter] | None,
        performance: str | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sql": query_sql,
            "performance": performance or self.performance,
        }
        if params:
            payload["query_parameters"] = {p.key: p.serialized_value() for p in params}
        return payload

    def _poller(
        self,
        job_id: str,
        timeout: float | None = None,
        ping_frequency: float | None = None,
    ) -> ExecutionPoller:
        """A fresh state machine for one `wait_for_results` call"""
        return ExecutionPoller(
            job_id,
            timeout=self.config.execution_timeout if timeout is None else timeout,
            ping_frequency=self.config.ping_frequency if ping_frequency is None else ping_frequency,
            logger=self.logger,
        )

    def _check_results_state(self, result: ResultsResponse) -> ResultsResponse:
        """
        Results are served for completed executions only;
        the service answers with the current state otherwise.
        """
        if result.state == ExecutionState.EXPIRED:
            raise NotFoundError(200, f"results of execution {result.execution_id} have expired")
        if not result.state.is_terminal():
            raise NotReadyError(
                200, f"execution {result.execution_id} is not finished yet ({result.state})"
            )
        if result.state == ExecutionState.PARTIAL:
            self.logger.warning(
                f"execution {result.execution_id} resulted in a partial "
                f"result set (i.e. results too large)."
            )
        return result

    @staticmethod
    def _api_error(status_code: int, body: str) -> ApiError:
        """Builds the error for a non-2xx response, preferring Dune's `error` message"""
        message = body
        try:
            payload = json.loads(body)
        except ValueError:
            pass
        else:
            if isinstance(payload, dict) and isinstance(payload.get("error"), str):
                message = payload["error"]
        if status_code == 404:
            return NotFoundError(status_code, message)
        return ApiError(status_code, message)

    def _parse_next_offset(self, header_value: str | None) -> int | None:
        if header_value is None:
            return None
        try:
            return int(header_value)
        except ValueError:
            self.logger.warning(
                "invalid x-dune-next-offset header encountered; ignoring",
                extra={"header_value": header_value},
            )
            return None


class BaseRouter(BaseDuneClient):
    """Extending the Base Client with elementary api routing over a requests Session"""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        retry_strategy = Retry(
            total=5,
            backoff_factor=0.5,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=RETRY_METHODS,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.http = Session()
        self.http.mount("https://", adapter)
        self.http.mount("http://", adapter)

    def _handle_response(self, response: Response) -> Any:
        """Generic response handler utilized by all Dune API routes"""
        if not response.ok:
            raise self._api_error(response.status_code, response.text)
        try:
            response_json = response.json()
        except ValueError as err:
            raise SerializationError(response.text, "JSON", err) from err
        self.logger.debug(f"received response {response_json}")
        return response_json

    def _route_url(self, route: str | None = None, url: str | None = None) -> str:
        if route is not None:
            return f"{self.base_url}{self.api_version}{route}"
        if url is None:
            raise ValueError("Either route or url must be provided")
        return url

    def _request(self, method: str, url: str, **kwargs: Any) -> Response:
        try:
            return self.http.request(
                method,
                url,
                timeout=self.request_timeout,
                **kwargs,
            )
        except RequestException as err:
            raise NetworkError(f"{method} {url} failed: {err}") from err

    def _get(
        self,
        route: str | None = None,
        params: Any | None = None,
        raw: bool = False,
        url: str | None = None,
    ) -> Any:
        """Generic interface for the GET method of a Dune API request"""
        final_url = self._route_url(route=route, url=url)
        self.logger.debug(f"GET received input url={final_url}")

        response = self._request(
            "GET",
            final_url,
            headers=self.default_headers(),
            params=params,
        )
        if raw:
            if not response.ok:
                raise self._api_error(response.status_code, response.text)
            return response
        return self._handle_response(response)

    def _post(self, route: str, params: Any | None = None) -> Any:
        """Generic interface for the POST method of a Dune API request"""
        url = self._route_url(route)
        self.logger.debug(f"POST received input url={url}, params={params}")
        response = self._request(
            "POST",
            url,
            json=params,
            headers=self.default_headers(),
        )
        return self._handle_response(response)
