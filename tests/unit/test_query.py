import unittest
import urllib.parse

from sandworm.query import QueryBase, as_query, parse_query_object_or_id
from sandworm.types import QueryParameter


class TestQueryBase(unittest.TestCase):
    def setUp(self) -> None:
        self.query_params = [
            QueryParameter.enum_type("Enum", "option1"),
            QueryParameter.text_type("Text", "plain text"),
            QueryParameter.number_type("Number", 12),
            QueryParameter.date_type("Date", "2021-01-01 12:34:56"),
            QueryParameter.enum_type("Multi", ["a1", "a2"]),
        ]
        self.query = QueryBase(name="", query_id=0, params=self.query_params)

    def test_base_url(self):
        assert self.query.base_url() == "https://dune.com/queries/0"

    def test_url(self):
        raw_params = (
            'Enum=option1&Text=plain text&Number=12&Date=2021-01-01 12:34:56&Multi=["a1","a2"]'
        )
        expected_url = "?".join(
            [
                "https://dune.com/queries/0",
                urllib.parse.quote_plus(raw_params, safe="=&?"),
            ]
        )
        assert self.query.url() == expected_url
        assert QueryBase(0, "", []).url() == "https://dune.com/queries/0"

    def test_request_format(self):
        expected_answer = {
            "query_parameters": {
                "Enum": "option1",
                "Text": "plain text",
                "Number": "12",
                "Date": "2021-01-01 12:34:56",
                "Multi": ["a1", "a2"],
            }
        }
        assert self.query.request_format() == expected_answer
        assert QueryBase(query_id=1).request_format() == {"query_parameters": {}}

    def test_hash(self):
        query1 = QueryBase(query_id=0, params=[QueryParameter.text_type("Text", "word1")])
        query2 = QueryBase(query_id=0, params=[QueryParameter.text_type("Text", "word2")])
        assert hash(query1) != hash(query2)
        assert hash(QueryBase(query_id=0)) != hash(QueryBase(query_id=1))

    def test_parse_object_or_id(self):
        expected_params = {
            "params.Date": "2021-01-01 12:34:56",
            "params.Enum": "option1",
            "params.Number": "12",
            "params.Text": "plain text",
            "params.Multi": ["a1", "a2"],
        }
        assert parse_query_object_or_id(self.query) == (expected_params, 0)
        assert parse_query_object_or_id(0) == (None, 0)
        assert parse_query_object_or_id("0") == (None, 0)

    def test_as_query(self):
        params = [QueryParameter.number_type("n", 1)]
        assert as_query(7) == QueryBase(query_id=7)
        assert as_query("7", params) == QueryBase(query_id=7, params=params)
        assert as_query(self.query) is self.query
        replaced = as_query(self.query, params)
        assert replaced.query_id == self.query.query_id
        assert replaced.parameters() == params


if __name__ == "__main__":
    unittest.main()
