"""Declarative quality gates over step results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

DEFAULT_GATE_REASON = "Quality gate failed"
_MISSING = object()


class GateSeverity(str, Enum):
    FATAL = "fatal"
    ADVISORY = "advisory"


class GateComparison(str, Enum):
    AT_LEAST = "at_least"
    AT_MOST = "at_most"
    IS_TRUE = "is_true"
    NON_EMPTY = "non_empty"


@dataclass(frozen=True, slots=True)
class QualityGate:
    """Threshold check on one field of a step result.

    ``field`` is a dotted path into the result object (``scores.overall``).
    A missing or mistyped field fails the gate.
    """

    name: str
    field: str
    comparison: GateComparison
    threshold: float | None = None
    severity: GateSeverity = GateSeverity.FATAL
    reason: str = DEFAULT_GATE_REASON
    detail_field: str | None = None

    @classmethod
    def at_least(cls, name: str, field: str, threshold: float, **kwargs: Any) -> QualityGate:
        return cls(name, field, GateComparison.AT_LEAST, threshold, **kwargs)

    @classmethod
    def at_most(cls, name: str, field: str, threshold: float, **kwargs: Any) -> QualityGate:
        return cls(name, field, GateComparison.AT_MOST, threshold, **kwargs)

    @classmethod
    def is_true(cls, name: str, field: str, **kwargs: Any) -> QualityGate:
        return cls(name, field, GateComparison.IS_TRUE, **kwargs)

    @classmethod
    def non_empty(cls, name: str, field: str, **kwargs: Any) -> QualityGate:
        return cls(name, field, GateComparison.NON_EMPTY, **kwargs)

    @property
    def fatal(self) -> bool:
        return self.severity == GateSeverity.FATAL

    def describe(self) -> str:
        if self.comparison == GateComparison.AT_LEAST:
            return f"{self.field} >= {self.threshold:g}"
        if self.comparison == GateComparison.AT_MOST:
            return f"{self.field} <= {self.threshold:g}"
        if self.comparison == GateComparison.IS_TRUE:
            return f"{self.field} is true"
        return f"{self.field} is non-empty"


@dataclass(frozen=True, slots=True)
class GateOutcome:
    """Evaluation result of one gate."""

    gate: QualityGate
    passed: bool
    observed: Any
    concerns: tuple[Any, ...] = ()

    @property
    def reason(self) -> str:
        return self.gate.reason

    def summary(self) -> dict[str, Any]:
        return {
            "gate": self.gate.name,
            "check": self.gate.describe(),
            "observed": self.observed,
            "passed": self.passed,
            "concerns": list(self.concerns),
        }


def evaluate_gate(gate: QualityGate, value: Mapping[str, Any]) -> GateOutcome:
    observed = lookup_field(value, gate.field)
    passed = _check(gate, observed)
    concerns: tuple[Any, ...] = ()
    if not passed and gate.detail_field is not None:
        detail = lookup_field(value, gate.detail_field)
        if isinstance(detail, list):
            concerns = tuple(detail)
        elif detail is not _MISSING and detail is not None:
            concerns = (detail,)
    return GateOutcome(
        gate=gate,
        passed=passed,
        observed=None if observed is _MISSING else observed,
        concerns=concerns,
    )


def lookup_field(value: Any, path: str) -> Any:
    """Resolve a dotted path; return a sentinel when any segment is absent."""

    current = value
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def _check(gate: QualityGate, observed: Any) -> bool:
    if observed is _MISSING:
        return False
    if gate.comparison == GateComparison.IS_TRUE:
        return observed is True
    if gate.comparison == GateComparison.NON_EMPTY:
        return isinstance(observed, list | dict | str) and len(observed) > 0
    if isinstance(observed, bool) or not isinstance(observed, int | float):
        return False
    if gate.threshold is None:
        raise ValueError(f"Gate {gate.name} requires a threshold")
    if gate.comparison == GateComparison.AT_LEAST:
        return observed >= gate.threshold
    return observed <= gate.threshold
