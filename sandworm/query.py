"""
Data Class Representing a saved Dune Query
"""

from __future__ import annotations

import json
import urllib.parse
from dataclasses import dataclass

from sandworm.types import QueryParameter, QueryParameters


def parse_query_object_or_id(
    query: QueryBase | str | int,
) -> tuple[QueryParameters | None, int]:
    """
    Users are allowed to pass QueryBase or ID into some functions.
    This method handles both scenarios, returning a pair of the form (params, query_id)
    where params are formatted for the GET results endpoints.
    """
    if isinstance(query, QueryBase):
        params: QueryParameters = {
            f"params.{p.key}": p.serialized_value() for p in query.parameters()
        }
        return params, query.query_id

    return None, int(query)


def as_query(
    query: QueryBase | str | int, params: list[QueryParameter] | None = None
) -> QueryBase:
    """
    Normalises a query id (or QueryBase) plus optional parameters into a QueryBase.
    Explicit `params` replace those carried by a QueryBase.
    """
    if isinstance(query, QueryBase):
        if params is None:
            return query
        return QueryBase(query_id=query.query_id, name=query.name, params=params)
    return QueryBase(query_id=int(query), params=params)


@dataclass
class QueryBase:
    """Basic data structure constituting a saved Dune Analytics Query."""

    query_id: int
    name: str = "unnamed"
    params: list[QueryParameter] | None = None

    def base_url(self) -> str:
        """Returns a link to query results excluding fixed parameters"""
        return f"https://dune.com/queries/{self.query_id}"

    def parameters(self) -> list[QueryParameter]:
        """Non-null version of self.params"""
        return self.params or []

    def url(self) -> str:
        """Returns a parameterized link to the query"""
        params = []
        for parameter in self.parameters():
            value = parameter.serialized_value()
            if isinstance(value, list):
                value = json.dumps(value, separators=(",", ":"))
            params.append(f"{parameter.key}={value}")
        param_string = "&".join(params)
        if param_string:
            return "?".join([self.base_url(), urllib.parse.quote_plus(param_string, safe="=&?")])
        return self.base_url()

    def __hash__(self) -> int:
        return self.url().__hash__()

    def request_format(self) -> dict[str, str | QueryParameters]:
        """Transforms Query objects to params to pass in API"""
        return {"query_parameters": {p.key: p.serialized_value() for p in self.parameters()}}
