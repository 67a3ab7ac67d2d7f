"""
Query parameter types accepted by the Dune execution endpoints.

The remote service owns the meaning of a parameter type,
so besides the four well-known types any other type tag is forwarded as is.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from sandworm.util import DUNE_DATE_FORMAT, postgres_date

DuneRecord = dict[str, Any]
QueryParameters = dict[str, str | list[str] | int]


class ParameterType(Enum):
    """
    Enum of the distinct dune parameter types known to this client
    """

    TEXT = "text"
    NUMBER = "number"
    DATE = "datetime"
    ENUM = "enum"

    @classmethod
    def from_string(cls, type_str: str) -> ParameterType | None:
        """
        Attempts to parse a ParameterType from string.
        Returns None when there is no match.
        """
        patterns = {
            r"text": cls.TEXT,
            r"number": cls.NUMBER,
            r"date": cls.DATE,
            r"enum": cls.ENUM,
            r"list": cls.ENUM,
        }
        for pattern, param in patterns.items():
            if re.match(pattern, type_str, re.IGNORECASE):
                return param
        return None


class QueryParameter:
    """
    A (key, value, type) triple supplied when executing a query.
    `parameter_type` is either a ParameterType or a free-form type tag.
    """

    def __init__(
        self,
        name: str,
        parameter_type: ParameterType | str,
        value: Any,
    ):
        self.key: str = name
        self.type: ParameterType | str = parameter_type
        self.value = value

    @property
    def type_tag(self) -> str:
        """The type as sent over the wire"""
        if isinstance(self.type, ParameterType):
            return self.type.value
        return self.type

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QueryParameter):
            return NotImplemented
        return (self.key, self.value, self.type_tag) == (other.key, other.value, other.type_tag)

    def __hash__(self) -> int:
        value = (
            tuple(self.value)
            if isinstance(self.value, Sequence) and not isinstance(self.value, str)
            else self.value
        )
        return hash((self.key, value, self.type_tag))

    @classmethod
    def text_type(cls, name: str, value: str) -> QueryParameter:
        """Constructs a Query parameter of type text"""
        return cls(name, ParameterType.TEXT, value)

    @classmethod
    def number_type(cls, name: str, value: int | float) -> QueryParameter:
        """Constructs a Query parameter of type number"""
        return cls(name, ParameterType.NUMBER, value)

    @classmethod
    def date_type(cls, name: str, value: datetime | str) -> QueryParameter:
        """
        Constructs a Query parameter of type date.
        For convenience, we allow proper datetime type, or string
        """
        if isinstance(value, str):
            value = postgres_date(value)
        return cls(name, ParameterType.DATE, value)

    @classmethod
    def enum_type(cls, name: str, value: str | Sequence[str]) -> QueryParameter:
        """Constructs a Query parameter of type enum or multi-select"""
        if isinstance(value, str):
            return cls(name, ParameterType.ENUM, value)
        if isinstance(value, Sequence):
            return cls(name, ParameterType.ENUM, tuple(value))
        raise TypeError(f"Unsupported enum value type for parameter '{name}': {type(value)!r}")

    def serialized_value(self) -> Any:
        """Returns JSON-ready value of parameter"""
        if isinstance(self.value, datetime):
            # postgres string format of timestamptz
            return self.value.strftime(DUNE_DATE_FORMAT)
        if isinstance(self.value, Sequence) and not isinstance(self.value, str):
            return [str(v) for v in self.value]
        if isinstance(self.type, ParameterType):
            return str(self.value)
        # unknown type tags are left for the service to interpret
        return self.value

    def to_dict(self) -> dict[str, Any]:
        """Converts QueryParameter into the json format accepted by Dune API"""
        return {
            "key": self.key,
            "type": self.type_tag,
            "value": self.serialized_value(),
        }

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> QueryParameter:
        """Constructs Query Parameters from json."""
        name, value, type_str = obj["key"], obj["value"], obj["type"]
        p_type = ParameterType.from_string(type_str)
        if p_type == ParameterType.DATE:
            return cls.date_type(name, value)
        if p_type == ParameterType.TEXT:
            return cls.text_type(name, str(value))
        if p_type == ParameterType.NUMBER:
            if isinstance(value, str):
                value = float(value) if "." in value else int(value)
            return cls.number_type(name, value)
        if p_type == ParameterType.ENUM:
            return cls.enum_type(name, value)
        return cls(name, type_str, value)

    def __str__(self) -> str:
        # For less cryptic logging.
        return f"Parameter(name={self.key}, value={self.value}, type={self.type_tag})"

    def __repr__(self) -> str:
        return str(self)
