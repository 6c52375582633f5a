from __future__ import annotations

import json
import math
import re
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from orchestrator.application.llm.factory import ProviderAdapterFactory
from orchestrator.core.logging import get_logger
from orchestrator.domain.adapters import GenerateRequest, LLMMessage, MessageRole
from orchestrator.domain.validation import (
    JsonKind,
    RepairOptions,
    ValidationDetail,
    ValidationErrorType,
    ValidationResult,
    json_kind,
    kind_matches,
)
from orchestrator.monitoring.metrics import REPAIR_ATTEMPTS_TOTAL, VALIDATIONS_TOTAL

logger = get_logger(__name__)

Schema = Mapping[str, Any]

REPAIR_SYSTEM_PROMPT = (
    "You are a JSON repair specialist. Your task is to fix invalid JSON to match the "
    "required schema. Return ONLY the corrected JSON, nothing else. Do not include "
    "explanations or markdown formatting."
)

_FENCE = re.compile(r"```(?:json|JSON)?[ \t]*\n?")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_SINGLE_QUOTED = re.compile(r"([\[{,:]\s*)'((?:[^'\\]|\\.)*)'")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_]\w*)\s*:")
_PY_LITERALS = (
    (re.compile(r"([\[,:]\s*)True\b"), r"\1true"),
    (re.compile(r"([\[,:]\s*)False\b"), r"\1false"),
    (re.compile(r"([\[,:]\s*)None\b"), r"\1null"),
)
_EMBEDDED = (re.compile(r"\{[\s\S]*\}"), re.compile(r"\[[\s\S]*\]"))


@dataclass(slots=True)
class _Parsed:
    ok: bool
    data: Any = None
    error: str | None = None


def _try_parse(text: str) -> _Parsed:
    try:
        return _Parsed(ok=True, data=json.loads(text.strip()))
    except ValueError as exc:
        return _Parsed(ok=False, error=str(exc))


def extract_embedded_json(text: str) -> str | None:
    """Return the outermost ``{...}`` or ``[...]`` span of ``text`` if it parses."""

    for pattern in _EMBEDDED:
        match = pattern.search(text)
        if match and _try_parse(match.group(0)).ok:
            return match.group(0)
    return None


def _requote(match: re.Match[str]) -> str:
    inner = match.group(2).replace("\\'", "'")
    return match.group(1) + json.dumps(inner)


# Applied in order, each one only while the text still fails to parse.
_SYNTAX_FIXES: tuple[Callable[[str], str], ...] = (
    lambda s: _FENCE.sub("", s).strip(),
    lambda s: _TRAILING_COMMA.sub(r"\1", s),
    lambda s: _SINGLE_QUOTED.sub(_requote, s),
    lambda s: _BARE_KEY.sub(r'\1"\2":', s),
    lambda s: _apply_literals(s),
    lambda s: extract_embedded_json(s) or s,
)


def _apply_literals(text: str) -> str:
    for pattern, replacement in _PY_LITERALS:
        text = pattern.sub(replacement, text)
    return text


def fix_json_syntax(text: str) -> str:
    fixed = text.strip()
    for fix in _SYNTAX_FIXES:
        if _try_parse(fixed).ok:
            break
        fixed = fix(fixed)
    return fixed


def _schema_kind(schema: Schema) -> JsonKind | None:
    declared = schema.get("type")
    if isinstance(declared, list):
        declared = next((t for t in declared if t != "null"), None)
    if declared is None:
        return None
    try:
        return JsonKind(declared)
    except ValueError:
        return None


def _allowed_kinds(schema: Schema) -> list[JsonKind]:
    declared = schema.get("type")
    names = declared if isinstance(declared, list) else [declared]
    kinds: list[JsonKind] = []
    for name in names:
        try:
            kinds.append(JsonKind(name))
        except ValueError:
            continue
    return kinds


# Schema-directed coercion


def _default_for(schema: Schema | None) -> Any:
    if not schema:
        return None
    if "default" in schema:
        return schema["default"]
    kind = _schema_kind(schema)
    if kind is None:
        return None
    return _DEFAULTS[kind]()


_DEFAULTS: dict[JsonKind, Callable[[], Any]] = {
    JsonKind.STRING: str,
    JsonKind.NUMBER: lambda: 0,
    JsonKind.INTEGER: lambda: 0,
    JsonKind.BOOLEAN: lambda: False,
    JsonKind.ARRAY: list,
    JsonKind.OBJECT: dict,
    JsonKind.NULL: lambda: None,
}


def _to_string(value: Any, schema: Schema) -> Any:
    kind = json_kind(value)
    if kind == JsonKind.STRING:
        return value
    if kind == JsonKind.NULL:
        return ""
    if kind in (JsonKind.ARRAY, JsonKind.OBJECT, JsonKind.BOOLEAN):
        return json.dumps(value)
    return str(value)


def _parse_number(value: Any) -> float | None:
    if json_kind(value) in (JsonKind.INTEGER, JsonKind.NUMBER):
        return float(value)
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _to_number(value: Any, schema: Schema) -> Any:
    if json_kind(value) in (JsonKind.INTEGER, JsonKind.NUMBER):
        return value
    number = _parse_number(value)
    if number is None:
        return 0
    return int(number) if number.is_integer() else number


def _to_integer(value: Any, schema: Schema) -> Any:
    if json_kind(value) == JsonKind.INTEGER:
        return value
    number = _parse_number(value)
    return math.floor(number) if number is not None else 0


def _to_boolean(value: Any, schema: Schema) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "y", "on")
    return bool(value)


def _to_array(value: Any, schema: Schema) -> Any:
    items = value if isinstance(value, list) else [value]
    item_schema = schema.get("items")
    if isinstance(item_schema, Mapping):
        return [coerce_to_schema(item, item_schema) for item in items]
    return items


def _to_object(value: Any, schema: Schema) -> Any:
    if not isinstance(value, dict):
        return {}
    fixed = dict(value)
    properties: Mapping[str, Schema] = schema.get("properties") or {}
    for name in schema.get("required") or []:
        if name not in fixed:
            fixed[name] = _default_for(properties.get(name))
    for name, prop_schema in properties.items():
        if name in fixed and isinstance(prop_schema, Mapping):
            fixed[name] = coerce_to_schema(fixed[name], prop_schema)
    return fixed


def _to_null(value: Any, schema: Schema) -> Any:
    return None


_COERCERS: dict[JsonKind, Callable[[Any, Schema], Any]] = {
    JsonKind.STRING: _to_string,
    JsonKind.NUMBER: _to_number,
    JsonKind.INTEGER: _to_integer,
    JsonKind.BOOLEAN: _to_boolean,
    JsonKind.ARRAY: _to_array,
    JsonKind.OBJECT: _to_object,
    JsonKind.NULL: _to_null,
}


def coerce_to_schema(value: Any, schema: Schema) -> Any:
    """Best-effort conversion of ``value`` into the shape ``schema`` describes."""

    allowed = _allowed_kinds(schema)
    if allowed and any(kind_matches(value, k) for k in allowed):
        # Already the right kind; still descend into containers.
        kind = json_kind(value)
        if kind in (JsonKind.ARRAY, JsonKind.OBJECT):
            return _COERCERS[kind](value, schema)
        return value
    kind = _schema_kind(schema)
    if kind is None:
        return value
    return _COERCERS[kind](value, schema)


# Structural validation


def _join(path: str, key: str | int) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else key


def validate_data(data: Any, schema: Schema, path: str = "") -> list[ValidationDetail]:
    """Check ``data`` against the supported JSON-schema subset.

    Supported keywords: type, required, properties, items, enum, pattern,
    minLength, maxLength, minimum, maximum.
    """

    details: list[ValidationDetail] = []
    field = path or None

    allowed = _allowed_kinds(schema)
    if allowed and not any(kind_matches(data, k) for k in allowed):
        expected = "|".join(k.value for k in allowed)
        actual = json_kind(data).value
        details.append(
            ValidationDetail(
                error_type=ValidationErrorType.TYPE,
                message=f"Expected type {expected}, got {actual}",
                field=field,
                expected=expected,
                actual=actual,
            ),
        )
        return details

    if "enum" in schema and data not in schema["enum"]:
        details.append(
            ValidationDetail(
                error_type=ValidationErrorType.CONSTRAINT,
                message=f"Value {json.dumps(data)} is not one of {json.dumps(schema['enum'])}",
                field=field,
                expected=json.dumps(schema["enum"]),
                actual=json.dumps(data),
            ),
        )

    if isinstance(data, str):
        pattern = schema.get("pattern")
        if pattern and not re.search(pattern, data):
            details.append(
                ValidationDetail(
                    error_type=ValidationErrorType.FORMAT,
                    message=f"Value does not match pattern {pattern}",
                    field=field,
                    expected=pattern,
                    actual=data,
                ),
            )
        if "minLength" in schema and len(data) < schema["minLength"]:
            details.append(
                ValidationDetail(
                    ValidationErrorType.CONSTRAINT,
                    f"String shorter than {schema['minLength']}",
                    field,
                    f">= {schema['minLength']} chars",
                    str(len(data)),
                ),
            )
        if "maxLength" in schema and len(data) > schema["maxLength"]:
            details.append(
                ValidationDetail(
                    ValidationErrorType.CONSTRAINT,
                    f"String longer than {schema['maxLength']}",
                    field,
                    f"<= {schema['maxLength']} chars",
                    str(len(data)),
                ),
            )

    if json_kind(data) in (JsonKind.INTEGER, JsonKind.NUMBER):
        if "minimum" in schema and data < schema["minimum"]:
            details.append(
                ValidationDetail(
                    ValidationErrorType.CONSTRAINT,
                    f"Value below minimum {schema['minimum']}",
                    field,
                    f">= {schema['minimum']}",
                    str(data),
                ),
            )
        if "maximum" in schema and data > schema["maximum"]:
            details.append(
                ValidationDetail(
                    ValidationErrorType.CONSTRAINT,
                    f"Value above maximum {schema['maximum']}",
                    field,
                    f"<= {schema['maximum']}",
                    str(data),
                ),
            )

    if isinstance(data, dict):
        for name in schema.get("required") or []:
            if name not in data:
                details.append(
                    ValidationDetail(
                        error_type=ValidationErrorType.CONSTRAINT,
                        message=f"Missing required property: {name}",
                        field=_join(path, name),
                        expected="required property",
                        actual="missing",
                    ),
                )
        for name, prop_schema in (schema.get("properties") or {}).items():
            if name in data and isinstance(prop_schema, Mapping):
                details.extend(validate_data(data[name], prop_schema, _join(path, name)))

    if isinstance(data, list) and isinstance(schema.get("items"), Mapping):
        for index, item in enumerate(data):
            details.extend(validate_data(item, schema["items"], _join(path, index)))

    return details


@dataclass(slots=True)
class _Check:
    valid: bool
    data: Any
    details: list[ValidationDetail]

    @property
    def errors(self) -> list[str]:
        return [d.message if not d.field else f"{d.field}: {d.message}" for d in self.details]


def check_output(text: str, schema: Schema) -> _Check:
    parsed = _try_parse(text)
    if not parsed.ok:
        embedded = extract_embedded_json(text)
        if embedded is None:
            return _Check(
                valid=False,
                data=None,
                details=[
                    ValidationDetail(
                        error_type=ValidationErrorType.PARSE,
                        message=f"JSON parsing failed: {parsed.error}",
                        expected="Valid JSON",
                        actual="Invalid JSON syntax",
                    ),
                ],
            )
        parsed = _try_parse(embedded)
    details = validate_data(parsed.data, schema)
    return _Check(valid=not details, data=parsed.data, details=details)


def build_repair_prompt(output: str, schema: Schema, original_prompt: str | None = None) -> str:
    prompt = (
        "I need you to fix this JSON output to match the required schema.\n\n"
        f"REQUIRED SCHEMA:\n{json.dumps(schema, indent=2)}\n\n"
        f"INVALID JSON OUTPUT:\n{output}\n\n"
        "Please return the corrected JSON that:\n"
        "1. Is valid JSON syntax\n"
        "2. Matches the required schema exactly\n"
        "3. Preserves as much of the original data as possible\n"
        "4. Adds any missing required fields with appropriate default values\n\n"
        "Return ONLY the corrected JSON, no explanations:"
    )
    if original_prompt:
        prompt += f'\n\nORIGINAL CONTEXT: The JSON was generated in response to: "{original_prompt}"'
    return prompt


class ErrorCount(BaseModel):
    error_type: str
    count: int


class ValidationStats(BaseModel):
    total_validations: int
    success_rate: float
    repair_success_rate: float
    total_repair_attempts: int
    common_errors: list[ErrorCount]


class ValidationRepairService:
    """Validates structured LLM output and repairs it in a bounded loop.

    Each iteration runs the rule pass and, when the strategy allows and the
    rules were not enough, one model-assisted rewrite. Invalid results are
    returned with ``is_valid=False`` rather than raised.
    """

    def __init__(
        self,
        factory: ProviderAdapterFactory | None = None,
        *,
        options: RepairOptions | None = None,
    ) -> None:
        self._factory = factory
        self._options = options or RepairOptions()
        self._total = 0
        self._valid = 0
        self._needed_repair = 0
        self._repaired = 0
        self._repair_attempts = 0
        self._error_types: Counter[str] = Counter()

    @property
    def options(self) -> RepairOptions:
        return self._options

    def rule_repair(self, output: str, schema: Schema) -> str:
        fixed = fix_json_syntax(output)
        parsed = _try_parse(fixed)
        if not parsed.ok:
            return fixed
        return json.dumps(coerce_to_schema(parsed.data, schema))

    async def model_repair(
        self,
        output: str,
        schema: Schema,
        original_prompt: str | None,
        options: RepairOptions,
    ) -> str:
        if self._factory is None:
            raise RuntimeError("Model-assisted repair requires a provider factory")

        provider, _, model = options.repair_model.partition(":")
        if not model:
            provider, model = "openai", provider
        adapter = self._factory.get_adapter(provider)
        result = await adapter.generate(
            GenerateRequest(
                model=model,
                messages=[
                    LLMMessage(role=MessageRole.SYSTEM, content=REPAIR_SYSTEM_PROMPT),
                    LLMMessage(
                        role=MessageRole.USER,
                        content=build_repair_prompt(output, schema, original_prompt),
                    ),
                ],
                temperature=0.1,
                max_tokens=2000,
            ),
        )
        return result.text or output

    async def validate_and_repair(
        self,
        output: str,
        schema: Schema,
        original_prompt: str | None = None,
        options: RepairOptions | None = None,
    ) -> ValidationResult:
        opts = options or self._options
        self._total += 1

        initial = check_output(output, schema)
        if initial.valid:
            self._valid += 1
            VALIDATIONS_TOTAL.labels(outcome="valid").inc()
            return ValidationResult(
                is_valid=True,
                original_response=output,
                final_response=output,
                repaired_data=initial.data,
            )

        self._needed_repair += 1
        self._error_types.update(d.error_type.value for d in initial.details)
        result = ValidationResult(
            is_valid=False,
            original_response=output,
            final_response=output,
            errors=list(initial.errors),
            details=list(initial.details),
        )

        if opts.strict_mode or opts.max_repair_attempts <= 0:
            VALIDATIONS_TOTAL.labels(outcome="invalid").inc()
            return self._finish_invalid(result, initial, opts)

        strategy = opts.repair_strategy
        current = output
        last = initial
        attempts = 0

        while attempts < opts.max_repair_attempts:
            attempts += 1
            REPAIR_ATTEMPTS_TOTAL.labels(strategy=strategy.value).inc()
            try:
                candidate = current
                check = last
                if strategy.uses_rules:
                    candidate = self.rule_repair(current, schema)
                    check = check_output(candidate, schema)
                if not check.valid and strategy.uses_model:
                    candidate = await self.model_repair(candidate, schema, original_prompt, opts)
                    check = check_output(candidate, schema)
            except Exception as exc:  # noqa: BLE001
                result.errors.append(f"Repair attempt {attempts} error: {exc}")
                logger.warning("Repair attempt %d failed with error: %s", attempts, exc)
                continue

            if check.valid:
                self._valid += 1
                self._repaired += 1
                self._repair_attempts += attempts
                VALIDATIONS_TOTAL.labels(outcome="repaired").inc()
                result.is_valid = True
                result.final_response = candidate
                result.repaired_data = check.data
                result.repair_attempts = attempts
                logger.info("Output repaired after %d attempt(s)", attempts)
                return result

            current = candidate
            last = check
            result.errors.append(f"Repair attempt {attempts} failed: {', '.join(check.errors)}")

        self._repair_attempts += attempts
        result.repair_attempts = attempts
        result.final_response = current
        VALIDATIONS_TOTAL.labels(outcome="invalid").inc()
        return self._finish_invalid(result, last, opts)

    @staticmethod
    def _finish_invalid(result: ValidationResult, last: _Check, opts: RepairOptions) -> ValidationResult:
        if opts.preserve_partial_data:
            result.repaired_data = last.data
        logger.warning(
            "Output still invalid after %d repair attempt(s)",
            result.repair_attempts,
            extra={"orch_extra": json.dumps({"errors": result.errors[-5:]})},
        )
        return result

    def get_stats(self) -> ValidationStats:
        return ValidationStats(
            total_validations=self._total,
            success_rate=self._valid / self._total if self._total else 1.0,
            repair_success_rate=(
                self._repaired / self._needed_repair if self._needed_repair else 1.0
            ),
            total_repair_attempts=self._repair_attempts,
            common_errors=[
                ErrorCount(error_type=name, count=count)
                for name, count in self._error_types.most_common(10)
            ],
        )
