from __future__ import annotations

import pytest

from agentrelay.agent_core.schemas.parameters import (
    ArrayParameter,
    IntegerParameter,
    ObjectParameter,
    StringParameter,
    _NumericParameter,
    _ParameterBase,
    parse_parameter_schema,
)
from agentrelay.core.errors import ValidationError


def _schema() -> ObjectParameter:
    return parse_parameter_schema(
        {
            "type": "object",
            "title": "Args",
            "properties": {
                "city": {"type": "string", "minLength": 2},
                "days": {"type": "integer", "minimum": 1, "maximum": 7},
                "units": {"type": "string", "enum": ["metric", "imperial"]},
                "tags": {"type": "array", "items": {"type": "string"}, "maxItems": 2},
                "detail": {"type": "object", "properties": {"hourly": {"type": "boolean"}}},
            },
            "required": ["city"],
            "additionalProperties": False,
        }
    )


def test_parse_builds_typed_variants() -> None:
    schema = _schema()
    assert isinstance(schema.properties["city"], StringParameter)
    assert isinstance(schema.properties["days"], IntegerParameter)
    assert isinstance(schema.properties["tags"], ArrayParameter)
    assert schema.required == ["city"]
    assert schema.additional_properties is False


def test_empty_schema_means_no_parameters() -> None:
    assert parse_parameter_schema(None).properties == {}
    assert parse_parameter_schema({}).validate_value({"anything": 1}) == []


def test_json_schema_round_trip_uses_camel_case_keywords() -> None:
    out = _schema().to_json_schema()
    assert out["type"] == "object"
    assert out["additionalProperties"] is False
    assert out["properties"]["city"] == {"type": "string", "minLength": 2}
    assert "title" not in out


def test_valid_arguments_have_no_problems() -> None:
    args = {"city": "Oslo", "days": 3, "units": "metric", "tags": ["a"], "detail": {"hourly": True}}
    assert _schema().validate_value(args) == []


@pytest.mark.parametrize(
    "args,fragment",
    [
        ({}, "$.city: required property missing"),
        ({"city": 12}, "$.city: expected string"),
        ({"city": "O"}, "shorter than 2"),
        ({"city": "Oslo", "days": 0}, "below minimum"),
        ({"city": "Oslo", "days": True}, "$.days: expected integer"),
        ({"city": "Oslo", "units": "kelvin"}, "is not one of"),
        ({"city": "Oslo", "tags": ["a", "b", "c"]}, "more than 2 items"),
        ({"city": "Oslo", "tags": [1]}, "$.tags[0]: expected string"),
        ({"city": "Oslo", "detail": {"hourly": "yes"}}, "$.detail.hourly: expected boolean"),
        ({"city": "Oslo", "extra": 1}, "$.extra: unexpected property"),
    ],
)
def test_invalid_arguments_are_reported_with_paths(args, fragment: str) -> None:
    problems = _schema().validate_value(args)
    assert any(fragment in p for p in problems), problems


def test_non_object_top_level_is_rejected() -> None:
    with pytest.raises(ValidationError, match="must be an object"):
        parse_parameter_schema({"type": "string"})


def test_unknown_type_is_rejected_with_errors() -> None:
    with pytest.raises(ValidationError) as exc:
        parse_parameter_schema({"type": "object", "properties": {"x": {"type": "date"}}})
    assert exc.value.errors


def test_parameter_base_cannot_be_instantiated_without_a_validator() -> None:
    for base in (_ParameterBase, _NumericParameter):
        with pytest.raises(TypeError):
            base()
