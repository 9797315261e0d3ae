from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from kubectl_runbook.kinds import ResourceKind

OPERATORS = ("=", "!=", "<", ">", "<=", ">=", "exists", "contains")

# Unary operators take no literal
UNARY_OPERATORS = ("exists",)

_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _equal(left: Any, right: Any) -> bool | None:
    # True must never equal 1
    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool):
            return left == right
        return None
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return None


def _order(left: Any, right: Any) -> int | None:
    if _is_number(left) and _is_number(right):
        return (left > right) - (left < right)
    return None


def compare(op: str, observed: Any, literal: Any) -> bool:
    """
    Evaluate one comparison. Anything undefined (missing fact,
    incompatible types) is a non-match, never an error.
    """
    if op == "exists":
        return observed is not _MISSING
    if observed is _MISSING:
        return False

    if op in ("=", "!="):
        equal = _equal(observed, literal)
        if equal is None:
            return False
        return equal if op == "=" else not equal

    if op == "contains":
        if isinstance(observed, str) and isinstance(literal, str):
            return literal in observed
        return False

    order = _order(observed, literal)
    if order is None:
        return False
    if op == "<":
        return order < 0
    if op == ">":
        return order > 0
    if op == "<=":
        return order <= 0
    if op == ">=":
        return order >= 0
    return False


@dataclass(frozen=True)
class Comparison:
    """
    factKey op literal
    """

    fact: str
    op: str
    value: Any = None

    def evaluate(self, facts: Mapping[str, Any]) -> bool:
        return compare(self.op, facts.get(self.fact, _MISSING), self.value)

    def describe(self, facts: Mapping[str, Any] | None = None) -> str:
        if self.op in UNARY_OPERATORS:
            text = f"{self.fact} exists"
        else:
            text = f"{self.fact} {self.op} {self.value!r}"
        if facts is not None and self.fact in facts:
            text += f" (observed {facts[self.fact]!r})"
        return text


@dataclass(frozen=True)
class Remediation:
    message: str
    suggested_action: str | None = None
    checks: tuple[str, ...] = ()


@dataclass(frozen=True)
class DiagnosticRule:
    """
    Condition -> remediation pair scoped to one resource kind.

    The condition is a conjunction: every comparison must hold.
    Lower priority runs first; rules with equal priority keep their
    declaration order.
    """

    # ---- Metadata (mandatory) ----
    id: str
    kind: ResourceKind
    priority: int
    conditions: tuple[Comparison, ...]
    remediation: Remediation

    # ---- Optional ----
    category: str = "Generic"
    severity: Literal["Low", "Medium", "High"] = "Medium"
    source: str | None = field(default=None, compare=False)

    def matches(self, facts: Mapping[str, Any]) -> bool:
        return all(c.evaluate(facts) for c in self.conditions)

    def evidence(self, facts: Mapping[str, Any]) -> list[str]:
        return [c.describe(facts) for c in self.conditions]
