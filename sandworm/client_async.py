""" "
Async Dune Client Class responsible for executing Dune Queries
Framework built on Dune's API Documentation
https://docs.dune.com/api-reference/overview/introduction
"""

from __future__ import annotations

import asyncio
import ssl
from io import BytesIO
from typing import TYPE_CHECKING, Any, Self, TypeVar

import certifi
from aiohttp import (
    ClientError,
    ClientResponse,
    ClientSession,
    ClientTimeout,
    ContentTypeError,
    TCPConnector,
)

from sandworm.api.base import (
    DUNE_CSV_NEXT_OFFSET_HEADER,
    DUNE_CSV_NEXT_URI_HEADER,
    MAX_NUM_ROWS_PER_BATCH,
    PARSE_ERRORS,
    RETRY_METHODS,
    RETRY_STATUSES,
    BaseDuneClient,
)
from sandworm.api.extensions import results_limit
from sandworm.models import (
    ApiError,
    ExecutionResponse,
    ExecutionResultCSV,
    ExecutionStatusResponse,
    NetworkError,
    PipelineExecutionResponse,
    PipelineStatusResponse,
    ResultsResponse,
    SerializationError,
)
from sandworm.query import QueryBase, as_query, parse_query_object_or_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sandworm.types import QueryParameter

PaginatedResult = TypeVar("PaginatedResult", ResultsResponse, ExecutionResultCSV)


class AsyncDuneClient(BaseDuneClient):
    """
    An asynchronous interface for Dune API with a few convenience methods
    combining the use of endpoints (e.g. run_sql)

    Must be used as an async context manager:
        async with AsyncDuneClient() as client:
            results = await client.run_sql("select 1")
    """

    def __init__(
        self,
        *args: Any,
        connection_limit: int = 3,
        **kwargs: Any,
    ):
        """
        Accepts the arguments of BaseDuneClient, plus
        connection_limit - number of parallel requests to execute.
        For non-pro accounts Dune allows only up to 3 requests but that number can be increased.
        """
        super().__init__(*args, **kwargs)
        self._connection_limit = connection_limit
        self._session: ClientSession | None = None
        self._max_attempts = 5
        self._retry_backoff = 0.5
        self._retry_statuses = RETRY_STATUSES
        self._retry_methods = RETRY_METHODS

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: object
    ) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        if self._session is not None:
            raise RuntimeError("AsyncDuneClient session already active")
        self._session = self._create_session()

    async def disconnect(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _create_session(self) -> ClientSession:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = TCPConnector(limit=self._connection_limit, ssl=ssl_context)
        return ClientSession(
            connector=connector,
            base_url=self.base_url,
            timeout=ClientTimeout(total=self.request_timeout),
        )

    async def _handle_response(self, response: ClientResponse) -> Any:
        if response.status >= 400:
            raise self._api_error(response.status, await self._read_text(response))
        try:
            response_json = await response.json()
        except (ContentTypeError, ValueError) as err:
            raise SerializationError(await self._read_text(response), "JSON", err) from err
        except (ClientError, asyncio.TimeoutError) as err:
            raise NetworkError(f"reading response of {response.url} failed: {err!r}") from err
        self.logger.debug(f"received response {response_json}")
        return response_json

    async def _read_text(self, response: ClientResponse) -> str:
        try:
            return await response.text()
        except (ClientError, asyncio.TimeoutError) as err:
            raise NetworkError(f"reading response of {response.url} failed: {err!r}") from err

    def _route_url(self, route: str | None = None, url: str | None = None) -> str:
        if route is not None:
            return f"{self.api_version}{route}"
        if url is None:
            raise ValueError("Either route or url must be provided")
        assert url.startswith(self.base_url)
        return url[len(self.base_url) :]

    async def _get(
        self,
        route: str | None = None,
        params: Any | None = None,
        raw: bool = False,
        url: str | None = None,
    ) -> Any:
        return await self._request(
            method="GET",
            route=route,
            url=url,
            params=params,
            raw=raw,
        )

    async def _post(self, route: str, params: Any | None = None) -> Any:
        return await self._request(
            method="POST",
            route=route,
            json_body=params,
        )

    async def _request(
        self,
        *,
        method: str,
        route: str | None = None,
        url: str | None = None,
        params: Any | None = None,
        json_body: Any | None = None,
        raw: bool = False,
    ) -> Any:
        session = self._require_session()
        target = self._route_url(route=route, url=url)
        self.logger.debug(f"{method} received input target={target}")

        max_attempts = self._max_attempts if method in self._retry_methods else 1
        attempt = 0
        delay = self._retry_backoff
        while True:
            try:
                response = await session.request(
                    method,
                    target,
                    headers=self.default_headers(),
                    params=params,
                    json=json_body,
                )
            except (ClientError, asyncio.TimeoutError) as err:
                if attempt >= max_attempts - 1:
                    raise NetworkError(f"{method} {target} failed: {err!r}") from err
                await asyncio.sleep(delay)
                attempt += 1
                delay *= 2
                continue

            if response.status in self._retry_statuses and attempt < max_attempts - 1:
                response.release()
                await asyncio.sleep(delay)
                attempt += 1
                delay *= 2
                continue

            if raw:
                if response.status >= 400:
                    raise self._api_error(response.status, await self._read_text(response))
                return response
            return await self._handle_response(response)

    async def execute_query(
        self,
        query: QueryBase | str | int,
        params: list[QueryParameter] | None = None,
        performance: str | None = None,
    ) -> ExecutionResponse:
        """Post's to Dune API for execute `query` (a QueryBase or saved query id)"""
        query = as_query(query, params)
        payload = query.request_format()
        payload["performance"] = performance or self.performance

        self.logger.info(f"executing {query.query_id} on {performance or self.performance} cluster")
        response_json = await self._post(
            route=f"/query/{query.query_id}/execute",
            params=payload,
        )
        try:
            return ExecutionResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "ExecutionResponse", err) from err

    async def execute_sql(
        self,
        query_sql: str,
        params: list[QueryParameter] | None = None,
        performance: str | None = None,
    ) -> ExecutionResponse:
        """Execute arbitrary SQL directly via the API without creating a saved query."""
        payload = self._execute_sql_payload(query_sql, params, performance)

        self.logger.info(f"executing SQL on {payload['performance']} cluster")
        response_json = await self._post(route="/sql/execute", params=payload)
        try:
            return ExecutionResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "ExecutionResponse", err) from err

    async def execute_query_pipeline(
        self, query_id: int, performance: str | None = None
    ) -> PipelineExecutionResponse:
        """Post's to Dune API for execute query pipeline"""
        params: dict[str, str] = {}
        if performance is not None:
            params["performance"] = performance

        self.logger.info(f"executing pipeline for query {query_id}")
        response_json = await self._post(
            route=f"/query/{query_id}/pipeline/execute",
            params=params,
        )
        try:
            return PipelineExecutionResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "PipelineExecutionResponse", err) from err

    async def execute_pipeline(
        self, definition: dict[str, Any], performance: str | None = None
    ) -> PipelineExecutionResponse:
        """Post's a pipeline `definition` (queries and their dependencies) for execution"""
        payload = dict(definition)
        if performance is not None:
            payload["performance"] = performance

        self.logger.info("executing pipeline from definition")
        response_json = await self._post(route="/pipelines/execute", params=payload)
        try:
            return PipelineExecutionResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "PipelineExecutionResponse", err) from err

    async def get_pipeline_status(self, pipeline_execution_id: str) -> PipelineStatusResponse:
        """GET pipeline execution status"""
        response_json = await self._get(
            route=f"/pipelines/executions/{pipeline_execution_id}/status"
        )
        try:
            return PipelineStatusResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "PipelineStatusResponse", err) from err

    async def get_execution_status(self, job_id: str) -> ExecutionStatusResponse:
        """GET status from Dune API for `job_id` (aka `execution_id`)"""
        response_json = await self._get(route=f"/execution/{job_id}/status")
        try:
            return ExecutionStatusResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "ExecutionStatusResponse", err) from err

    async def get_execution_results(
        self,
        job_id: str,
        limit: int | None = None,
        offset: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
        allow_partial_results: str = "true",
    ) -> ResultsResponse:
        """GET one page of results from Dune API for `job_id` (aka `execution_id`)"""
        params = self._build_parameters(
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
            limit=limit,
            offset=offset,
            allow_partial_results=allow_partial_results,
        )
        response_json = await self._get(
            route=f"/execution/{job_id}/results",
            params=params,
        )
        return self._parse_results(response_json)

    async def get_execution_results_csv(
        self,
        job_id: str,
        limit: int | None = None,
        offset: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
    ) -> ExecutionResultCSV:
        """
        GET one page of results in CSV format from Dune API for `job_id` (aka `execution_id`)

        this API only returns the raw data in CSV format, it is faster & lighterweight
        use this method for large results where you want lower CPU and memory overhead
        if you need metadata information use get_execution_results() or get_execution_status()
        """
        params = self._build_parameters(
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
            limit=limit,
            offset=offset,
        )
        response = await self._get(
            route=f"/execution/{job_id}/results/csv", params=params, raw=True
        )
        return await self._read_csv_page(response)

    async def get_latest_result(
        self,
        query: QueryBase | str | int,
        batch_size: int | None = None,
    ) -> ResultsResponse:
        """
        GET the latest results for a query_id without having to execute the query again.

        :param query: :class:`QueryBase` object OR query id as string | int

        https://docs.dune.com/api-reference/executions/endpoint/get-query-result
        """
        params, query_id = parse_query_object_or_id(query)
        if params is None:
            params = {}
        params["limit"] = batch_size or MAX_NUM_ROWS_PER_BATCH

        async def first_page() -> ResultsResponse:
            response_json = await self._get(
                route=f"/query/{query_id}/results",
                params=params,
            )
            try:
                return ResultsResponse.from_dict(response_json)
            except PARSE_ERRORS as err:
                raise SerializationError(response_json, "ResultsResponse", err) from err

        return await self._collect_pages(first_page, self._get_result_by_url)

    async def cancel_execution(self, job_id: str) -> bool:
        """
        POST Execution Cancellation to Dune API for `job_id` (aka `execution_id`)

        Cancelling an execution which already finished is reported as success.
        """
        try:
            response_json = await self._post(route=f"/execution/{job_id}/cancel")
        except ApiError as err:
            if not err.is_already_finished():
                raise
            self.logger.info(f"execution {job_id} already finished, nothing to cancel: {err}")
            return True
        try:
            success: bool = response_json["success"]
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "CancellationResponse", err) from err
        else:
            return success

    ########################
    # Higher level functions
    ########################

    async def wait_for_results(
        self,
        job_id: str,
        timeout: float | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
    ) -> ResultsResponse:
        """
        Polls the status of `job_id` every `ping_frequency` seconds until it is terminal,
        then fetches and returns the entire result.
        A timeout does not cancel the execution, call `cancel_execution` for that.
        """
        self._validate_sampling(sample_count, batch_size, filters)
        await self._wait(job_id, timeout, ping_frequency)
        return await self._collect_pages(
            lambda: self.get_execution_results(
                job_id,
                columns=columns,
                sample_count=sample_count,
                filters=filters,
                sort_by=sort_by,
                limit=results_limit(batch_size, sample_count),
            ),
            self._get_result_by_url,
        )

    async def wait_for_results_csv(
        self,
        job_id: str,
        timeout: float | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
    ) -> ExecutionResultCSV:
        """Same as `wait_for_results` but fetches the results in CSV format"""
        self._validate_sampling(sample_count, batch_size, filters)
        await self._wait(job_id, timeout, ping_frequency)
        return await self._collect_pages(
            lambda: self.get_execution_results_csv(
                job_id,
                columns=columns,
                sample_count=sample_count,
                filters=filters,
                sort_by=sort_by,
                limit=results_limit(batch_size, sample_count),
            ),
            self._get_result_csv_by_url,
        )

    async def run_sql(
        self,
        query_sql: str,
        timeout: float | None = None,
        params: list[QueryParameter] | None = None,
        performance: str | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
    ) -> ResultsResponse:
        """
        Execute arbitrary SQL, wait until the execution completes,
        then fetch and return the results.
        """
        response = await self.execute_sql(query_sql, params=params, performance=performance)
        return await self.wait_for_results(
            response.execution_id,
            timeout=timeout,
            ping_frequency=ping_frequency,
            batch_size=batch_size,
        )

    async def run_sql_csv(
        self,
        query_sql: str,
        timeout: float | None = None,
        params: list[QueryParameter] | None = None,
        performance: str | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
    ) -> ExecutionResultCSV:
        """Same as `run_sql` but fetches the results in CSV format"""
        response = await self.execute_sql(query_sql, params=params, performance=performance)
        return await self.wait_for_results_csv(
            response.execution_id,
            timeout=timeout,
            ping_frequency=ping_frequency,
            batch_size=batch_size,
        )

    async def run_query(
        self,
        query: QueryBase | str | int,
        params: list[QueryParameter] | None = None,
        timeout: float | None = None,
        performance: str | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
    ) -> ResultsResponse:
        """
        Executes a saved Dune `query`, waits until execution completes,
        fetches and returns the results.
        Sleeps `ping_frequency` seconds between each status request.
        """
        response = await self.execute_query(query, params=params, performance=performance)
        return await self.wait_for_results(
            response.execution_id,
            timeout=timeout,
            ping_frequency=ping_frequency,
            batch_size=batch_size,
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
        )

    async def run_query_csv(
        self,
        query: QueryBase | str | int,
        params: list[QueryParameter] | None = None,
        timeout: float | None = None,
        performance: str | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
    ) -> ExecutionResultCSV:
        """
        Executes a saved Dune query, waits till execution completes,
        fetches and the results in CSV format
        (use it load the data directly in pandas.from_csv() or similar frameworks)
        """
        response = await self.execute_query(query, params=params, performance=performance)
        return await self.wait_for_results_csv(
            response.execution_id,
            timeout=timeout,
            ping_frequency=ping_frequency,
            batch_size=batch_size,
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
        )

    #################
    # Private Methods
    #################

    async def _wait(
        self,
        job_id: str,
        timeout: float | None = None,
        ping_frequency: float | None = None,
    ) -> None:
        """Suspends until `job_id` reaches a state from which results can be fetched"""
        poller = self._poller(job_id, timeout, ping_frequency)
        delay = poller.observe(await self.get_execution_status(job_id))
        while delay is not None:
            await asyncio.sleep(delay)
            delay = poller.observe(await self.get_execution_status(job_id))

    def _parse_results(self, response_json: Any) -> ResultsResponse:
        try:
            result = ResultsResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "ResultsResponse", err) from err
        return self._check_results_state(result)

    async def _get_result_by_url(
        self,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> ResultsResponse:
        response_json = await self._get(url=url, params=params)
        return self._parse_results(response_json)

    async def _get_result_csv_by_url(
        self,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> ExecutionResultCSV:
        response = await self._get(url=url, params=params, raw=True)
        return await self._read_csv_page(response)

    async def _read_csv_page(self, response: ClientResponse) -> ExecutionResultCSV:
        next_uri = response.headers.get(DUNE_CSV_NEXT_URI_HEADER)
        next_offset = self._parse_next_offset(response.headers.get(DUNE_CSV_NEXT_OFFSET_HEADER))
        try:
            data = BytesIO(await response.content.read(-1))
        except (ClientError, asyncio.TimeoutError) as err:
            raise NetworkError(f"reading CSV page of {response.url} failed: {err!r}") from err
        finally:
            response.release()
        return ExecutionResultCSV(
            data=data,
            next_uri=next_uri,
            next_offset=next_offset,
        )

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError("AsyncDuneClient must be used as an async context manager")
        return self._session

    async def _collect_pages(
        self,
        fetch_first: Callable[[], Awaitable[PaginatedResult]],
        fetch_next: Callable[[str], Awaitable[PaginatedResult]],
    ) -> PaginatedResult:
        results = await fetch_first()
        while results.next_uri is not None:
            results += await fetch_next(results.next_uri)
        return results

