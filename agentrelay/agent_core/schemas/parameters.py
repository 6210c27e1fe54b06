from __future__ import annotations

"""Structured tool-parameter schemas.

A tool's parameters are described by a closed set of schema variants,
discriminated by ``type``:

- ``StringParameter`` / ``IntegerParameter`` / ``NumberParameter`` /
  ``BooleanParameter``: scalar values with optional enum/range constraints.
- ``ArrayParameter``: homogeneous lists described by ``items``.
- ``ObjectParameter``: named ``properties`` plus a ``required`` list.

The variants parse the JSON-schema dictionaries that tool authors already
write (``{"type": "object", "properties": {...}, "required": [...]}``) and
serialize back to the same shape for the LLM provider's function-calling
declaration. ``validate_value`` checks call arguments against the schema and
returns a list of human-readable problems (empty when valid).
"""

from abc import abstractmethod
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ...core.errors import ValidationError
from .base import BaseSchema


class _ParameterBase(BaseSchema):
    # JSON schema documents often carry annotation keys (title, default, examples)
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    description: Optional[str] = None

    def to_json_schema(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @abstractmethod
    def validate_value(self, value: Any, path: str = "$") -> List[str]:
        """Return the problems found in ``value``; empty when it is valid."""


class StringParameter(_ParameterBase):
    type: Literal["string"] = "string"
    enum: Optional[List[str]] = None
    min_length: Optional[int] = Field(default=None, alias="minLength")
    max_length: Optional[int] = Field(default=None, alias="maxLength")

    def validate_value(self, value: Any, path: str = "$") -> List[str]:
        if not isinstance(value, str):
            return [f"{path}: expected string, got {type(value).__name__}"]
        errors: List[str] = []
        if self.enum is not None and value not in self.enum:
            errors.append(f"{path}: '{value}' is not one of {self.enum}")
        if self.min_length is not None and len(value) < self.min_length:
            errors.append(f"{path}: shorter than {self.min_length} characters")
        if self.max_length is not None and len(value) > self.max_length:
            errors.append(f"{path}: longer than {self.max_length} characters")
        return errors


class _NumericParameter(_ParameterBase):
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def _range_errors(self, value: float, path: str) -> List[str]:
        errors: List[str] = []
        if self.minimum is not None and value < self.minimum:
            errors.append(f"{path}: {value} is below minimum {self.minimum}")
        if self.maximum is not None and value > self.maximum:
            errors.append(f"{path}: {value} is above maximum {self.maximum}")
        return errors


class IntegerParameter(_NumericParameter):
    type: Literal["integer"] = "integer"

    def validate_value(self, value: Any, path: str = "$") -> List[str]:
        # bool is an int subclass but never a valid JSON integer
        if isinstance(value, bool) or not isinstance(value, int):
            return [f"{path}: expected integer, got {type(value).__name__}"]
        return self._range_errors(value, path)


class NumberParameter(_NumericParameter):
    type: Literal["number"] = "number"

    def validate_value(self, value: Any, path: str = "$") -> List[str]:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return [f"{path}: expected number, got {type(value).__name__}"]
        return self._range_errors(value, path)


class BooleanParameter(_ParameterBase):
    type: Literal["boolean"] = "boolean"

    def validate_value(self, value: Any, path: str = "$") -> List[str]:
        if not isinstance(value, bool):
            return [f"{path}: expected boolean, got {type(value).__name__}"]
        return []


class ArrayParameter(_ParameterBase):
    type: Literal["array"] = "array"
    items: Optional[ParameterSchema] = None
    min_items: Optional[int] = Field(default=None, alias="minItems")
    max_items: Optional[int] = Field(default=None, alias="maxItems")

    def validate_value(self, value: Any, path: str = "$") -> List[str]:
        if not isinstance(value, list):
            return [f"{path}: expected array, got {type(value).__name__}"]
        errors: List[str] = []
        if self.min_items is not None and len(value) < self.min_items:
            errors.append(f"{path}: fewer than {self.min_items} items")
        if self.max_items is not None and len(value) > self.max_items:
            errors.append(f"{path}: more than {self.max_items} items")
        if self.items is not None:
            for i, item in enumerate(value):
                errors.extend(self.items.validate_value(item, f"{path}[{i}]"))
        return errors


class ObjectParameter(_ParameterBase):
    type: Literal["object"] = "object"
    properties: Dict[str, ParameterSchema] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)
    additional_properties: bool = Field(default=True, alias="additionalProperties")

    def validate_value(self, value: Any, path: str = "$") -> List[str]:
        if not isinstance(value, dict):
            return [f"{path}: expected object, got {type(value).__name__}"]
        errors: List[str] = []
        for name in self.required:
            if name not in value:
                errors.append(f"{path}.{name}: required property missing")
        for name, item in value.items():
            prop = self.properties.get(name)
            if prop is None:
                if not self.additional_properties:
                    errors.append(f"{path}.{name}: unexpected property")
                continue
            errors.extend(prop.validate_value(item, f"{path}.{name}"))
        return errors


ParameterSchema = Annotated[
    Union[
        StringParameter,
        IntegerParameter,
        NumberParameter,
        BooleanParameter,
        ArrayParameter,
        ObjectParameter,
    ],
    Field(discriminator="type"),
]

ArrayParameter.model_rebuild()
ObjectParameter.model_rebuild()

_parameter_adapter: TypeAdapter[Any] = TypeAdapter(ParameterSchema)


def parse_parameter_schema(schema: Dict[str, Any] | None) -> ObjectParameter:
    """Parse a JSON-schema dictionary into an ``ObjectParameter``.

    An empty or missing schema means "no parameters". The top level must be an
    object schema because providers pass tool arguments as a JSON object.

    Raises:
        ValidationError: If the schema is not a valid structured description.
    """
    if not schema:
        return ObjectParameter()
    try:
        parsed = _parameter_adapter.validate_python(schema)
    except PydanticValidationError as e:
        raise ValidationError(
            "invalid tool parameter schema",
            errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
        ) from e
    if not isinstance(parsed, ObjectParameter):
        raise ValidationError(f"tool parameter schema must be an object, got '{parsed.type}'")
    return parsed
