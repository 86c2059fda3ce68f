"""JSON-schema validation of agent responses.

Every violation is reported, not just the first one, so operators see the
complete diagnostics for a rejected step.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError, ValidationError


@dataclass(frozen=True, slots=True)
class Violation:
    """One schema violation located by JSON path."""

    path: str
    message: str
    keyword: str


@dataclass(slots=True)
class ValidationResult:
    """Result of output validation."""

    is_valid: bool
    payload: Any = None
    violations: list[Violation] = field(default_factory=list)

    @property
    def error_summary(self) -> str | None:
        if self.is_valid:
            return None
        return "; ".join(f"{item.path}: {item.message}" for item in self.violations)


def check_schema(schema: Mapping[str, Any]) -> None:
    """Raise ``ValueError`` when the schema itself is malformed."""

    try:
        Draft7Validator.check_schema(dict(schema))
    except SchemaError as error:
        raise ValueError(f"Invalid output schema: {error.message}") from error


def parse_payload(raw: Any) -> ValidationResult:
    """Decode an agent payload; undecodable text fails closed."""

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as error:
            return _not_json(f"payload is not UTF-8 text: {error}")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw, parse_constant=_reject_constant)
        except ValueError as error:
            return _not_json(f"payload is not valid JSON: {error}")
    bad_path = _find_non_finite(raw, ())
    if bad_path is not None:
        return _not_json(f"payload holds a non-finite number at {format_path(bad_path)}")
    return ValidationResult(is_valid=True, payload=raw)


def validate(value: Any, schema: Mapping[str, Any]) -> ValidationResult:
    """Validate a decoded JSON value against ``schema``."""

    validator = Draft7Validator(dict(schema))
    errors = sorted(validator.iter_errors(value), key=_error_sort_key)
    if errors:
        return ValidationResult(
            is_valid=False,
            payload=None,
            violations=[_to_violation(error) for error in errors],
        )
    return ValidationResult(is_valid=True, payload=value)


def validate_payload(raw: Any, schema: Mapping[str, Any]) -> ValidationResult:
    """Decode a raw agent payload, then validate it against ``schema``."""

    parsed = parse_payload(raw)
    if not parsed.is_valid:
        return parsed
    return validate(parsed.payload, schema)


def format_path(parts: Any) -> str:
    path = "$"
    for part in parts:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}"
    return path


def _to_violation(error: ValidationError) -> Violation:
    return Violation(
        path=format_path(error.absolute_path),
        message=error.message,
        keyword=str(error.validator),
    )


def _error_sort_key(error: ValidationError) -> tuple[str, str, str]:
    return (format_path(error.absolute_path), str(error.validator), error.message)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a JSON number")


def _find_non_finite(value: Any, path: tuple[Any, ...]) -> tuple[Any, ...] | None:
    if isinstance(value, float):
        return None if math.isfinite(value) else path
    if isinstance(value, Mapping):
        items = value.items()
    elif isinstance(value, (list, tuple)):
        items = enumerate(value)
    else:
        return None
    for key, item in items:
        found = _find_non_finite(item, (*path, key))
        if found is not None:
            return found
    return None


def _not_json(message: str) -> ValidationResult:
    return ValidationResult(
        is_valid=False,
        payload=None,
        violations=[Violation(path="$", message=message, keyword="json")],
    )
