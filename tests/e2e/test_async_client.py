import os
import unittest

import aiounittest
import pytest

from sandworm.client_async import AsyncDuneClient
from sandworm.models import ExecutionFailedError
from sandworm.query import QueryBase

pytestmark = pytest.mark.skipif(
    not os.environ.get("DUNE_API_KEY"), reason="DUNE_API_KEY is required for e2e tests"
)


class TestAsyncDuneClient(aiounittest.AsyncTestCase):
    def setUp(self) -> None:
        self.query = QueryBase(name="Sample Query", query_id=1215383)
        self.multi_rows_query = QueryBase(
            name="Query that returns multiple rows",
            query_id=3435763,
        )

    async def test_disconnect(self):
        dune = AsyncDuneClient()
        await dune.connect()
        results = (await dune.run_query(self.query)).get_rows()
        assert len(results) > 0
        await dune.disconnect()
        assert dune._session is None

    async def test_run_query_with_pagination(self):
        async with AsyncDuneClient() as cl:
            results = (await cl.run_query(self.multi_rows_query, batch_size=1)).get_rows()
        assert results == [{"number": n} for n in range(1, 6)]

    async def test_run_query_csv_with_pagination(self):
        async with AsyncDuneClient() as cl:
            result = await cl.run_query_csv(self.multi_rows_query, batch_size=1)
        assert result.to_records() == [{"number": str(n)} for n in range(1, 6)]

    async def test_run_sql(self):
        async with AsyncDuneClient() as cl:
            results = (await cl.run_sql("SELECT 1 AS one")).get_rows()
        assert results == [{"one": 1}]

    async def test_run_sql_failure(self):
        async with AsyncDuneClient() as cl:
            with pytest.raises(ExecutionFailedError):
                await cl.run_sql("SELEC 1")

    async def test_get_latest_result(self):
        async with AsyncDuneClient() as cl:
            results = (await cl.get_latest_result(self.multi_rows_query, batch_size=2)).get_rows()
        assert len(results) == 5


if __name__ == "__main__":
    unittest.main()
