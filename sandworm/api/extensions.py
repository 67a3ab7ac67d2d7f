"""
Extended functionality for the ExecutionAPI:
waiting for executions and the `run_*` compositions built on top of it.
"""

from __future__ import annotations

import time
from io import BytesIO
from typing import TYPE_CHECKING, Any

from sandworm.api.base import (
    DUNE_CSV_NEXT_OFFSET_HEADER,
    DUNE_CSV_NEXT_URI_HEADER,
    MAX_NUM_ROWS_PER_BATCH,
    PARSE_ERRORS,
)
from sandworm.api.execution import ExecutionAPI
from sandworm.api.pipeline import PipelineAPI
from sandworm.models import ExecutionResultCSV, ResultsResponse, SerializationError
from sandworm.query import QueryBase, as_query, parse_query_object_or_id
from sandworm.util import age_in_hours

if TYPE_CHECKING:
    from sandworm.types import QueryParameter

# This is the expiry time on old query results.
THREE_MONTHS_IN_HOURS = 2191


def results_limit(batch_size: int | None, sample_count: int | None) -> int | None:
    """Page size for the first results request (sampling returns a single page)"""
    if sample_count is not None:
        return None
    return batch_size or MAX_NUM_ROWS_PER_BATCH


class ExtendedAPI(ExecutionAPI, PipelineAPI):
    """
    Provides higher level helper methods for faster
    and easier development on top of the base ExecutionAPI.
    """

    def wait_for_results(
        self,
        job_id: str,
        timeout: float | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
        allow_partial_results: str = "true",
    ) -> ResultsResponse:
        """
        Polls the status of `job_id` every `ping_frequency` seconds until it is terminal,
        then fetches and returns the entire result.

        Raises ExecutionFailedError when the execution failed or was cancelled, and
        ExecutionTimeoutError when it is still running after `timeout` seconds.
        A timeout does not cancel the execution, call `cancel_execution` for that.
        """
        self._validate_sampling(sample_count, batch_size, filters)
        self._wait(job_id, timeout, ping_frequency)
        return self._fetch_entire_result(
            self.get_execution_results(
                job_id,
                columns=columns,
                sample_count=sample_count,
                filters=filters,
                sort_by=sort_by,
                limit=results_limit(batch_size, sample_count),
                allow_partial_results=allow_partial_results,
            ),
        )

    def wait_for_results_csv(
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
        self._wait(job_id, timeout, ping_frequency)
        return self._fetch_entire_result_csv(
            self.get_execution_results_csv(
                job_id,
                columns=columns,
                sample_count=sample_count,
                filters=filters,
                sort_by=sort_by,
                limit=results_limit(batch_size, sample_count),
            ),
        )

    def run_sql(
        self,
        query_sql: str,
        timeout: float | None = None,
        params: list[QueryParameter] | None = None,
        performance: str | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
    ) -> ResultsResponse:
        """
        Execute arbitrary SQL, wait until the execution completes,
        then fetch and return the results.
        """
        job_id = self.execute_sql(query_sql, params=params, performance=performance).execution_id
        return self.wait_for_results(
            job_id,
            timeout=timeout,
            ping_frequency=ping_frequency,
            batch_size=batch_size,
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
        )

    def run_sql_csv(
        self,
        query_sql: str,
        timeout: float | None = None,
        params: list[QueryParameter] | None = None,
        performance: str | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
    ) -> ExecutionResultCSV:
        """Same as `run_sql` but fetches the results in CSV format"""
        job_id = self.execute_sql(query_sql, params=params, performance=performance).execution_id
        return self.wait_for_results_csv(
            job_id,
            timeout=timeout,
            ping_frequency=ping_frequency,
            batch_size=batch_size,
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
        )

    def run_query(
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
        job_id = self.execute_query(query, params=params, performance=performance).execution_id
        return self.wait_for_results(
            job_id,
            timeout=timeout,
            ping_frequency=ping_frequency,
            batch_size=batch_size,
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
        )

    def run_query_csv(
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
        job_id = self.execute_query(query, params=params, performance=performance).execution_id
        return self.wait_for_results_csv(
            job_id,
            timeout=timeout,
            ping_frequency=ping_frequency,
            batch_size=batch_size,
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
        )

    def run_query_dataframe(
        self,
        query: QueryBase | str | int,
        params: list[QueryParameter] | None = None,
        timeout: float | None = None,
        performance: str | None = None,
        ping_frequency: float | None = None,
        batch_size: int | None = None,
    ) -> Any:
        """
        Execute a saved Dune Query, waits till execution completes,
        fetched and returns the result as a Pandas DataFrame

        This is a convenience method that uses run_query_csv() + pandas.read_csv() underneath
        """
        try:
            import pandas as pd  # noqa: PLC0415
        except ImportError as exc:
            raise ImportError("dependency failure, pandas is required but missing") from exc
        data = self.run_query_csv(
            query,
            params=params,
            timeout=timeout,
            performance=performance,
            ping_frequency=ping_frequency,
            batch_size=batch_size,
        ).data
        return pd.read_csv(data)

    def get_latest_result(
        self,
        query: QueryBase | str | int,
        max_age_hours: int = THREE_MONTHS_IN_HOURS,
        batch_size: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
    ) -> ResultsResponse:
        """
        GET the latest results for a query_id without re-executing the query
        (doesn't use execution credits)

        :param query: :class:`QueryBase` object OR query id as string or int
        :param max_age_hours: re-executes the query if result is older than max_age_hours
            https://docs.dune.com/api-reference/executions/endpoint/get-query-result
        """
        self._validate_sampling(sample_count, batch_size, filters)
        params, query_id = parse_query_object_or_id(query)

        # Only fetch 1 row to get metadata first to determine if the result is fresh enough
        if params is None:
            params = {}
        params["limit"] = 1

        response_json = self._get(
            route=f"/query/{query_id}/results",
            params=params,
        )
        try:
            metadata = ResultsResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "ResultsResponse", err) from err

        last_run = metadata.times.execution_ended_at
        if last_run and age_in_hours(last_run) > max_age_hours:
            # Query older than specified max age, we need to refresh the results
            self.logger.info(
                f"results (from {last_run}) older than {max_age_hours} hours, re-running query"
            )
            return self.run_query(
                as_query(query),
                columns=columns,
                sample_count=sample_count,
                filters=filters,
                sort_by=sort_by,
                batch_size=batch_size,
            )
        # The results are fresh enough, retrieve the entire result
        return self._fetch_entire_result(
            self.get_execution_results(
                metadata.execution_id,
                columns=columns,
                sample_count=sample_count,
                filters=filters,
                sort_by=sort_by,
                limit=results_limit(batch_size, sample_count),
            ),
        )

    def get_latest_result_csv(
        self,
        query: QueryBase | str | int,
        batch_size: int | None = None,
        columns: list[str] | None = None,
        sample_count: int | None = None,
        filters: str | None = None,
        sort_by: list[str] | None = None,
    ) -> ExecutionResultCSV:
        """
        Almost like an alias for `get_latest_result` but for the csv endpoint.
        https://docs.dune.com/api-reference/executions/endpoint/get-query-result-csv
        """
        params, query_id = parse_query_object_or_id(query)
        params = self._build_parameters(
            params=params,
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
            limit=results_limit(batch_size, sample_count),
        )

        response = self._get(route=f"/query/{query_id}/results/csv", params=params, raw=True)
        next_uri = response.headers.get(DUNE_CSV_NEXT_URI_HEADER)
        next_offset = self._parse_next_offset(response.headers.get(DUNE_CSV_NEXT_OFFSET_HEADER))
        return self._fetch_entire_result_csv(
            ExecutionResultCSV(
                data=BytesIO(response.content),
                next_uri=next_uri,
                next_offset=next_offset,
            ),
        )

    #################
    # Private Methods
    #################
    def _wait(
        self,
        job_id: str,
        timeout: float | None = None,
        ping_frequency: float | None = None,
    ) -> None:
        """
        Blocks the calling thread until `job_id` reaches a state
        from which results can be fetched.
        """
        poller = self._poller(job_id, timeout, ping_frequency)
        delay = poller.observe(self.get_execution_status(job_id))
        while delay is not None:
            time.sleep(delay)
            delay = poller.observe(self.get_execution_status(job_id))

    def _fetch_entire_result(
        self,
        results: ResultsResponse,
    ) -> ResultsResponse:
        """
        Retrieve the entire results using the paginated API
        """
        next_uri = results.next_uri
        while next_uri is not None:
            batch = self._get_execution_results_by_url(url=next_uri)
            results += batch
            next_uri = batch.next_uri

        return results

    def _fetch_entire_result_csv(
        self,
        results: ExecutionResultCSV,
    ) -> ExecutionResultCSV:
        """
        Retrieve the entire results in CSV format using the paginated API
        """
        next_uri = results.next_uri
        while next_uri is not None:
            batch = self._get_execution_results_csv_by_url(url=next_uri)
            results += batch
            next_uri = batch.next_uri

        return results
