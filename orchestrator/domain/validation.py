from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class JsonKind(str, Enum):
    """Discriminant for decoded JSON values."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"


def json_kind(value: Any) -> JsonKind:
    # bool is a subclass of int, so it must be tested first.
    if value is None:
        return JsonKind.NULL
    if isinstance(value, bool):
        return JsonKind.BOOLEAN
    if isinstance(value, int):
        return JsonKind.INTEGER
    if isinstance(value, float):
        return JsonKind.NUMBER
    if isinstance(value, str):
        return JsonKind.STRING
    if isinstance(value, list):
        return JsonKind.ARRAY
    if isinstance(value, dict):
        return JsonKind.OBJECT
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


def kind_matches(value: Any, expected: JsonKind) -> bool:
    actual = json_kind(value)
    if actual == expected:
        return True
    if expected == JsonKind.NUMBER:
        return actual == JsonKind.INTEGER
    if expected == JsonKind.INTEGER:
        return actual == JsonKind.NUMBER and float(value).is_integer()
    return False


class ValidationErrorType(str, Enum):
    PARSE = "parse"
    SCHEMA = "schema"
    FORMAT = "format"
    TYPE = "type"
    CONSTRAINT = "constraint"


@dataclass(frozen=True, slots=True)
class ValidationDetail:
    error_type: ValidationErrorType
    message: str
    field: str | None = None
    expected: str | None = None
    actual: str | None = None


class RepairStrategy(str, Enum):
    RULE_BASED = "rule_based"
    MODEL = "model"
    HYBRID = "hybrid"

    @property
    def uses_rules(self) -> bool:
        return self in (RepairStrategy.RULE_BASED, RepairStrategy.HYBRID)

    @property
    def uses_model(self) -> bool:
        return self in (RepairStrategy.MODEL, RepairStrategy.HYBRID)


@dataclass(frozen=True, slots=True)
class RepairOptions:
    """Knobs for the bounded repair loop.

    Args:
        max_repair_attempts: Upper bound on loop iterations.
        strict_mode: Report validation failures without attempting repair.
        repair_strategy: Which repair passes each iteration may run.
        preserve_partial_data: Return best-effort parsed data when repair fails.
        repair_model: Qualified model used for model-assisted repair.
    """

    max_repair_attempts: int = 3
    strict_mode: bool = False
    repair_strategy: RepairStrategy = RepairStrategy.HYBRID
    preserve_partial_data: bool = True
    repair_model: str = "openai:gpt-4o-mini"


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    original_response: str
    final_response: str
    repaired_data: Any = None
    repair_attempts: int = 0
    errors: list[str] = field(default_factory=list)
    details: list[ValidationDetail] = field(default_factory=list)
