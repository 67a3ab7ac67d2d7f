"""
Implementation of all Dune API query execution and get results routes.

Further Documentation:
    execution: https://docs.dune.com/api-reference/executions/endpoint/execute-query
    get results: https://docs.dune.com/api-reference/executions/endpoint/get-execution-result
"""

from __future__ import annotations

from io import BytesIO
from typing import TYPE_CHECKING, Any

from sandworm.api.base import (
    DUNE_CSV_NEXT_OFFSET_HEADER,
    DUNE_CSV_NEXT_URI_HEADER,
    PARSE_ERRORS,
    BaseRouter,
)
from sandworm.models import (
    ApiError,
    ExecutionResponse,
    ExecutionResultCSV,
    ExecutionStatusResponse,
    PipelineExecutionResponse,
    ResultsResponse,
    SerializationError,
)
from sandworm.query import QueryBase, as_query

if TYPE_CHECKING:
    from sandworm.types import QueryParameter


class ExecutionAPI(BaseRouter):
    """
    Query execution and result fetching functions.
    """

    def execute_query(
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
        response_json = self._post(
            route=f"/query/{query.query_id}/execute",
            params=payload,
        )
        try:
            return ExecutionResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "ExecutionResponse", err) from err

    def execute_sql(
        self,
        query_sql: str,
        params: list[QueryParameter] | None = None,
        performance: str | None = None,
    ) -> ExecutionResponse:
        """
        Execute arbitrary SQL directly via the API without creating a saved query.
        https://docs.dune.com/api-reference/executions/endpoint/execute-sql

        Returns immediately with the execution_id, use `wait_for_results`
        (or `run_sql`) to block until the results are available.
        """
        payload = self._execute_sql_payload(query_sql, params, performance)

        self.logger.info(f"executing SQL on {payload['performance']} cluster")
        response_json = self._post(route="/sql/execute", params=payload)
        try:
            return ExecutionResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "ExecutionResponse", err) from err

    def execute_query_pipeline(
        self, query_id: int, performance: str | None = None
    ) -> PipelineExecutionResponse:
        """Post's to Dune API to execute `query_id` along with the queries it depends on"""
        params: dict[str, str] = {}
        if performance is not None:
            params["performance"] = performance

        self.logger.info(f"executing pipeline for query {query_id}")
        response_json = self._post(
            route=f"/query/{query_id}/pipeline/execute",
            params=params,
        )
        try:
            return PipelineExecutionResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "PipelineExecutionResponse", err) from err

    def execute_pipeline(
        self, definition: dict[str, Any], performance: str | None = None
    ) -> PipelineExecutionResponse:
        """Post's a pipeline `definition` (queries and their dependencies) for execution"""
        payload = dict(definition)
        if performance is not None:
            payload["performance"] = performance

        self.logger.info("executing pipeline from definition")
        response_json = self._post(route="/pipelines/execute", params=payload)
        try:
            return PipelineExecutionResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "PipelineExecutionResponse", err) from err

    def cancel_execution(self, job_id: str) -> bool:
        """
        POST Execution Cancellation to Dune API for `job_id` (aka `execution_id`)

        Cancelling an execution which already finished is not an error:
        the service's rejection is logged and True is returned.
        """
        try:
            response_json = self._post(route=f"/execution/{job_id}/cancel")
        except ApiError as err:
            if not err.is_already_finished():
                raise
            self.logger.info(f"execution {job_id} already finished, nothing to cancel: {err}")
            return True
        try:
            # No need to make a dataclass for this since it's just a boolean.
            success: bool = response_json["success"]
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "CancellationResponse", err) from err
        else:
            return success

    def get_execution_status(self, job_id: str) -> ExecutionStatusResponse:
        """GET status from Dune API for `job_id` (aka `execution_id`)"""
        response_json = self._get(route=f"/execution/{job_id}/status")
        try:
            return ExecutionStatusResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "ExecutionStatusResponse", err) from err

    def get_execution_results(
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
        """
        GET one page of results from Dune API for `job_id` (aka `execution_id`)

        Follow `next_uri` (see `_fetch_entire_result`) for the remaining pages.
        Raises NotReadyError before the execution completes
        and NotFoundError once its results expired.
        """
        params = self._build_parameters(
            columns=columns,
            sample_count=sample_count,
            filters=filters,
            sort_by=sort_by,
            limit=limit,
            offset=offset,
            allow_partial_results=allow_partial_results,
        )

        route = f"/execution/{job_id}/results"
        url = self._route_url(route)
        return self._get_execution_results_by_url(url=url, params=params)

    def get_execution_results_csv(
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

        route = f"/execution/{job_id}/results/csv"
        url = self._route_url(route)
        return self._get_execution_results_csv_by_url(url=url, params=params)

    def _get_execution_results_by_url(
        self, url: str, params: dict[str, Any] | None = None
    ) -> ResultsResponse:
        """
        GET results from Dune API with a given URL. This is particularly useful for pagination.
        """
        assert url.startswith(self.base_url)

        response_json = self._get(url=url, params=params)
        try:
            result = ResultsResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "ResultsResponse", err) from err
        return self._check_results_state(result)

    def _get_execution_results_csv_by_url(
        self,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> ExecutionResultCSV:
        """
        GET results in CSV format from Dune API with a given URL. This is particularly
        useful for pagination
        """
        assert url.startswith(self.base_url)

        response = self._get(url=url, params=params, raw=True)
        next_uri = response.headers.get(DUNE_CSV_NEXT_URI_HEADER)
        next_offset = self._parse_next_offset(response.headers.get(DUNE_CSV_NEXT_OFFSET_HEADER))
        return ExecutionResultCSV(
            data=BytesIO(response.content),
            next_uri=next_uri,
            next_offset=next_offset,
        )
