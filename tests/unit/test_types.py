import datetime
import unittest

from sandworm.types import ParameterType, QueryParameter


class TestQueryParameter(unittest.TestCase):
    def setUp(self) -> None:
        self.number_type = QueryParameter.number_type("Number", 1)
        self.text_type = QueryParameter.text_type("Text", "hello")
        self.date_type = QueryParameter.date_type("Date", datetime.datetime(2022, 3, 10))

    def test_constructors_and_to_dict(self):
        assert self.number_type.to_dict() == {"key": "Number", "type": "number", "value": "1"}
        assert self.text_type.to_dict() == {"key": "Text", "type": "text", "value": "hello"}
        assert self.date_type.to_dict() == {
            "key": "Date",
            "type": "datetime",
            "value": "2022-03-10 00:00:00",
        }

    def test_date_from_string(self):
        assert QueryParameter.date_type("Date", "2022-03-10 00:00:00") == self.date_type

    def test_enum_multi_select(self):
        multi = QueryParameter.enum_type("Multi", ["a1", "a2"])
        assert multi.to_dict() == {"key": "Multi", "type": "enum", "value": ["a1", "a2"]}
        assert hash(multi) == hash(QueryParameter.enum_type("Multi", ("a1", "a2")))
        with self.assertRaises(TypeError):
            QueryParameter.enum_type("Multi", 12)

    def test_free_form_type_tag_is_forwarded(self):
        param = QueryParameter("addresses", "varbinary_list", ["0x01", "0x02"])
        assert param.type_tag == "varbinary_list"
        assert param.to_dict() == {
            "key": "addresses",
            "type": "varbinary_list",
            "value": ["0x01", "0x02"],
        }
        assert QueryParameter("flag", "boolean", True).serialized_value() is True

    def test_from_dict(self):
        for param in (self.number_type, self.text_type, self.date_type):
            assert QueryParameter.from_dict(param.to_dict()) == param
        assert QueryParameter.from_dict(
            {"key": "Ratio", "type": "number", "value": "0.5"}
        ) == QueryParameter.number_type("Ratio", 0.5)
        assert QueryParameter.from_dict(
            {"key": "x", "type": "mystery", "value": 3}
        ) == QueryParameter("x", "mystery", 3)

    def test_parameter_type_from_string(self):
        assert ParameterType.from_string("Text") == ParameterType.TEXT
        assert ParameterType.from_string("datetime") == ParameterType.DATE
        assert ParameterType.from_string("list") == ParameterType.ENUM
        assert ParameterType.from_string("mystery") is None

    def test_equality(self):
        assert self.text_type == QueryParameter("Text", "text", "hello")
        assert self.text_type != QueryParameter.text_type("Text", "bye")
        assert str(self.text_type) == "Parameter(name=Text, value=hello, type=text)"


if __name__ == "__main__":
    unittest.main()
