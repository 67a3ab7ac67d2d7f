import copy
import os
import unittest

import pytest

from sandworm.client import DuneClient
from sandworm.models import (
    ExecutionFailedError,
    ExecutionState,
    ExecutionTimeoutError,
    NotFoundError,
)
from sandworm.query import QueryBase
from sandworm.types import QueryParameter

pytestmark = pytest.mark.skipif(
    not os.environ.get("DUNE_API_KEY"), reason="DUNE_API_KEY is required for e2e tests"
)


class TestDuneClient(unittest.TestCase):
    def setUp(self) -> None:
        self.query = QueryBase(
            name="Sample Query",
            query_id=1215383,
            params=[
                # These are the queries default parameters.
                QueryParameter.text_type(name="TextField", value="Plain Text"),
                QueryParameter.number_type(name="NumberField", value=3.1415926535),
                QueryParameter.date_type(name="DateField", value="2022-05-04 00:00:00"),
                QueryParameter.enum_type(name="ListField", value="Option 1"),
            ],
        )
        self.multi_rows_query = QueryBase(
            name="Query that returns multiple rows",
            query_id=3435763,
        )

    def test_get_execution_status(self):
        dune = DuneClient()
        job_id = dune.execute_query(QueryBase(name="No Name", query_id=1276442)).execution_id
        status = dune.get_execution_status(job_id)
        assert status.state in [
            ExecutionState.EXECUTING,
            ExecutionState.PENDING,
            ExecutionState.COMPLETED,
        ]
        dune.cancel_execution(job_id)

    def test_run_query(self):
        results = DuneClient().run_query(self.query).get_rows()
        assert len(results) > 0

    def test_run_query_with_parameters(self):
        new_query = copy.copy(self.query)
        new_query.params = [
            QueryParameter.text_type(name="TextField", value="different word"),
            QueryParameter.number_type(name="NumberField", value=22),
            QueryParameter.date_type(name="DateField", value="1991-01-01 00:00:00"),
            QueryParameter.enum_type(name="ListField", value="Option 2"),
        ]
        results = DuneClient().run_query(new_query).get_rows()
        assert len(results) > 0

    def test_run_query_with_pagination(self):
        results = DuneClient().run_query(self.multi_rows_query, batch_size=1).get_rows()
        assert results == [{"number": n} for n in range(1, 6)]

    def test_run_query_with_filters_and_sorting(self):
        results = (
            DuneClient()
            .run_query(self.multi_rows_query, filters="number < 3", sort_by=["number desc"])
            .get_rows()
        )
        assert results == [{"number": 2}, {"number": 1}]

    def test_run_query_csv(self):
        records = DuneClient().run_query_csv(self.multi_rows_query, batch_size=2).to_records()
        assert records == [{"number": str(n)} for n in range(1, 6)]

    def test_run_query_dataframe(self):
        pd = pytest.importorskip("pandas")
        frame = DuneClient().run_query_dataframe(self.multi_rows_query)
        assert isinstance(frame, pd.DataFrame)
        assert list(frame["number"]) == [1, 2, 3, 4, 5]

    def test_run_sql(self):
        results = DuneClient().run_sql("SELECT 1 AS one", performance="medium").get_rows()
        assert results == [{"one": 1}]

    def test_run_sql_csv_matches_json(self):
        dune = DuneClient()
        query_sql = "SELECT * FROM (VALUES (1, 'a'), (2, 'b')) AS t (n, letter)"
        rows = dune.run_sql(query_sql).get_rows()
        records = dune.run_sql_csv(query_sql).to_records()
        assert records == [{k: str(v) for k, v in row.items()} for row in rows]

    def test_run_sql_failure(self):
        with pytest.raises(ExecutionFailedError) as exc_info:
            DuneClient().run_sql("SELEC 1")
        assert exc_info.value.diagnostic is not None

    def test_timeout_keeps_execution_running(self):
        dune = DuneClient()
        job_id = dune.execute_sql("SELECT count(*) FROM ethereum.transactions").execution_id
        with pytest.raises(ExecutionTimeoutError):
            dune.wait_for_results(job_id, timeout=0)
        assert dune.cancel_execution(job_id) is True
        # cancelling twice is not an error
        assert dune.cancel_execution(job_id) is True

    def test_get_latest_result(self):
        results = DuneClient().get_latest_result(self.multi_rows_query).get_rows()
        assert len(results) == 5

    def test_get_latest_result_csv(self):
        records = DuneClient().get_latest_result_csv(self.multi_rows_query).to_records()
        assert len(records) == 5

    def test_unknown_execution(self):
        with pytest.raises(NotFoundError):
            DuneClient().get_execution_status("01GBM4W2N0NMCGPZYW8AYK4YF1")


if __name__ == "__main__":
    unittest.main()
