"""Output contracts for wrapped tools.

A contract validates a tool's raw return value before any effect is
derived from it. The harness depends only on the SchemaValidator protocol;
OutputContract implements it with pydantic.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, Protocol, TypeVar, runtime_checkable

from pydantic import TypeAdapter, ValidationError

from multiverse.core.world import format_validation_errors

T = TypeVar("T")


@dataclass
class ContractResult(Generic[T]):
    """Outcome of validating a value against a contract.

    Attributes:
        valid: Whether the value matched the contract
        value: The validated (parsed) value when valid
        errors: Human-readable validation errors when invalid
    """

    valid: bool
    value: Optional[T] = None
    errors: list[str] = field(default_factory=list)


@runtime_checkable
class SchemaValidator(Protocol):
    """Structural validation capability: validate(value) -> valid | errors."""

    def validate(self, value: Any) -> ContractResult:
        ...


class OutputContract(Generic[T]):
    """Validates tool output against a pydantic model or any type.

    JSON strings are parsed before validation, since many tools return
    serialized payloads.

    Usage:
        contract = OutputContract(Booking)
        result = contract.validate({"bookingId": "B1", ...})
        if result.valid:
            booking = result.value  # a Booking instance
    """

    def __init__(self, schema: type[T], parse_json: bool = True):
        """Initialize the contract.

        Args:
            schema: Pydantic model class or any type supported by TypeAdapter
            parse_json: Validate str/bytes values as JSON documents
        """
        self._schema = schema
        self._adapter: TypeAdapter[T] = TypeAdapter(schema)
        self._parse_json = parse_json and schema not in (str, bytes)

    @property
    def schema(self) -> type[T]:
        return self._schema

    def validate(self, value: Any) -> ContractResult[T]:
        try:
            if self._parse_json and isinstance(value, (str, bytes, bytearray)):
                parsed = self._adapter.validate_json(value)
            else:
                parsed = self._adapter.validate_python(value)
        except ValidationError as e:
            return ContractResult(valid=False, errors=format_validation_errors(e))
        return ContractResult(valid=True, value=parsed)

    def json_schema(self) -> dict[str, Any]:
        return self._adapter.json_schema()

    def __repr__(self) -> str:
        name = getattr(self._schema, "__name__", repr(self._schema))
        return f"OutputContract({name})"


def as_validator(output: Any) -> SchemaValidator:
    """Accept either a SchemaValidator or a schema type for ``wrap(output=...)``."""
    if isinstance(output, SchemaValidator) and not isinstance(output, type):
        return output
    return OutputContract(output)
