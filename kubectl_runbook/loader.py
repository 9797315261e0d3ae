import glob
import os
import re
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

import yaml

from kubectl_runbook.errors import MalformedRuleError, UnknownKindError
from kubectl_runbook.kinds import ResourceKind, parse_kind
from kubectl_runbook.model import SCALAR_TYPES, parse_scalar
from kubectl_runbook.rules.base_rule import (
    OPERATORS,
    UNARY_OPERATORS,
    Comparison,
    DiagnosticRule,
    Remediation,
)

SEVERITIES = ("Low", "Medium", "High")

# "pod.phase = Pending", "pod.events contains Insufficient", "pod.ip exists"
_CONDITION_RE = re.compile(
    r"^\s*(?P<fact>[\w.\-/]+)"
    r"(?:\s*(?P<sym><=|>=|!=|=|<|>)|\s+(?P<word>exists|contains)\b)"
    r"\s*(?P<value>.*?)\s*$"
)

_RULE_KEYS = {"id", "priority", "category", "severity", "when", "then", "kind"}

# ----------------------------
# Rule set
# ----------------------------


class RuleSet:
    """
    Immutable, process-wide collection of rules grouped by kind.
    Never mutated after construction, so it is safe to share
    between concurrent diagnoses without locking.
    """

    def __init__(self, rules: Iterable[DiagnosticRule] = ()):
        grouped: dict[ResourceKind, list[DiagnosticRule]] = {k: [] for k in ResourceKind}
        seen: dict[str, DiagnosticRule] = {}

        for rule in rules:
            if rule.id in seen:
                raise MalformedRuleError(
                    f"Duplicate rule id '{rule.id}' "
                    f"(first defined in {seen[rule.id].source})",
                    source=rule.source,
                )
            seen[rule.id] = rule
            grouped[rule.kind].append(rule)

        self._by_kind = MappingProxyType({k: tuple(v) for k, v in grouped.items()})
        self._by_id = MappingProxyType(seen)

    def for_kind(self, kind: ResourceKind) -> tuple[DiagnosticRule, ...]:
        return self._by_kind[kind]

    def get(self, rule_id: str) -> DiagnosticRule | None:
        return self._by_id.get(rule_id)

    def kinds(self) -> list[ResourceKind]:
        return [k for k, rules in self._by_kind.items() if rules]

    def __iter__(self) -> Iterator[DiagnosticRule]:
        for rules in self._by_kind.values():
            yield from rules

    def __len__(self) -> int:
        return len(self._by_id)

    def __add__(self, other: "RuleSet") -> "RuleSet":
        return RuleSet(list(self) + list(other))


# ----------------------------
# Parsing
# ----------------------------


def parse_condition(raw: Any, source: str | None = None) -> Comparison:
    if isinstance(raw, str):
        m = _CONDITION_RE.match(raw)
        if not m:
            raise MalformedRuleError(f"Cannot parse condition {raw!r}", source=source)
        fact = m.group("fact")
        op = m.group("sym") or m.group("word")
        value_text = m.group("value")
        if op in UNARY_OPERATORS:
            if value_text:
                raise MalformedRuleError(
                    f"Operator '{op}' takes no value in {raw!r}", source=source
                )
            return Comparison(fact=fact, op=op)
        if not value_text:
            raise MalformedRuleError(f"Missing value in condition {raw!r}", source=source)
        if value_text in ("null", "Null", "NULL", "~"):
            raise MalformedRuleError(f"Null literal in condition {raw!r}", source=source)
        value = parse_scalar(value_text)
        return Comparison(fact=fact, op=op, value=value)

    if isinstance(raw, Mapping):
        fact = raw.get("fact")
        op = raw.get("op", "=")
        if not isinstance(fact, str) or not fact:
            raise MalformedRuleError(f"Condition {dict(raw)} has no 'fact'", source=source)
        if op not in OPERATORS:
            raise MalformedRuleError(
                f"Unknown operator {op!r}; expected one of {list(OPERATORS)}",
                source=source,
            )
        if op in UNARY_OPERATORS:
            return Comparison(fact=fact, op=op)
        if "value" not in raw:
            raise MalformedRuleError(f"Condition on '{fact}' has no 'value'", source=source)
        value = raw["value"]
        if not isinstance(value, SCALAR_TYPES):
            raise MalformedRuleError(
                f"Condition on '{fact}' must compare against a scalar, "
                f"got {type(value).__name__}",
                source=source,
            )
        return Comparison(fact=fact, op=op, value=value)

    raise MalformedRuleError(
        f"Condition must be a string or a mapping, got {type(raw).__name__}",
        source=source,
    )


def build_rule(
    spec: Any, kind: ResourceKind, order: int, source: str | None = None
) -> DiagnosticRule:
    if not isinstance(spec, Mapping):
        raise MalformedRuleError("Each rule must be a mapping", source=source)

    rule_id = spec.get("id")
    if not isinstance(rule_id, str) or not rule_id.strip():
        raise MalformedRuleError(f"Rule #{order} has no 'id'", source=source)

    unknown = set(spec) - _RULE_KEYS
    if unknown:
        raise MalformedRuleError(
            f"Rule {rule_id} has unknown keys: {sorted(unknown)}", source=source
        )

    # A rule may restate its kind, but it must agree with the file
    if "kind" in spec:
        try:
            declared = parse_kind(spec["kind"])
        except UnknownKindError as e:
            raise MalformedRuleError(f"Rule {rule_id}: {e}", source=source) from e
        if declared is not kind:
            raise MalformedRuleError(
                f"Rule {rule_id} declares kind {declared} inside a {kind} rule set",
                source=source,
            )

    when = spec.get("when")
    if isinstance(when, (str, Mapping)):
        when = [when]
    if not isinstance(when, list) or not when:
        raise MalformedRuleError(
            f"Rule {rule_id}.when must be a non-empty list of conditions", source=source
        )
    conditions = tuple(parse_condition(c, source=source) for c in when)

    then = spec.get("then")
    if not isinstance(then, Mapping):
        raise MalformedRuleError(f"Rule {rule_id}.then must be a mapping", source=source)
    message = then.get("message")
    if not isinstance(message, str) or not message.strip():
        raise MalformedRuleError(f"Rule {rule_id}.then.message is required", source=source)
    action = then.get("suggested_action")
    if action is not None and not isinstance(action, str):
        raise MalformedRuleError(
            f"Rule {rule_id}.then.suggested_action must be a string", source=source
        )
    checks = then.get("checks", [])
    if not isinstance(checks, list) or not all(isinstance(c, str) for c in checks):
        raise MalformedRuleError(
            f"Rule {rule_id}.then.checks must be a list of strings", source=source
        )

    rule = DiagnosticRule(
        id=rule_id.strip(),
        kind=kind,
        priority=spec.get("priority", 100),
        conditions=conditions,
        remediation=Remediation(
            message=message.strip(),
            suggested_action=action,
            checks=tuple(checks),
        ),
        category=spec.get("category", "Generic"),
        severity=spec.get("severity", "Medium"),
        source=source,
    )
    validate_rule(rule)
    return rule


def validate_rule(rule: DiagnosticRule) -> None:
    required_fields = ["id", "kind", "priority", "category", "conditions", "remediation"]
    for name in required_fields:
        if not hasattr(rule, name):
            raise MalformedRuleError(f"Rule {rule} missing required field '{name}'")

    source = getattr(rule, "source", None)

    if not isinstance(rule.id, str) or not rule.id:
        raise MalformedRuleError("Rule.id must be a non-empty string", source=source)
    if not isinstance(rule.kind, ResourceKind):
        raise MalformedRuleError(f"Rule {rule.id}.kind must be a ResourceKind", source=source)
    if not isinstance(rule.category, str) or not rule.category:
        raise MalformedRuleError(
            f"Rule {rule.id}.category must be a non-empty string", source=source
        )
    if isinstance(rule.priority, bool) or not isinstance(rule.priority, int):
        raise MalformedRuleError(f"Rule {rule.id}.priority must be an integer", source=source)
    if not (0 <= rule.priority <= 1000):
        raise MalformedRuleError(
            f"Rule {rule.id}.priority must be between 0 and 1000", source=source
        )
    if rule.severity not in SEVERITIES:
        raise MalformedRuleError(
            f"Rule {rule.id}.severity must be one of {list(SEVERITIES)}", source=source
        )
    if not rule.conditions:
        raise MalformedRuleError(f"Rule {rule.id} has no conditions", source=source)
    for c in rule.conditions:
        if c.op not in OPERATORS:
            raise MalformedRuleError(
                f"Rule {rule.id} uses unknown operator {c.op!r}", source=source
            )


def build_rule_set(spec: Any, source: str | None = None) -> list[DiagnosticRule]:
    """
    A rule-set document is a mapping with a `kind` and a `rules` list.
    Returns the rules in declaration order.
    """
    if not spec:
        return []
    if not isinstance(spec, Mapping):
        raise MalformedRuleError("Rule-set file must be a mapping", source=source)

    try:
        kind = parse_kind(spec.get("kind"))
    except UnknownKindError as e:
        raise MalformedRuleError(str(e), source=source) from e

    items = spec.get("rules", [])
    if not isinstance(items, list):
        raise MalformedRuleError("'rules' must be a list", source=source)

    return [build_rule(item, kind, i, source=source) for i, item in enumerate(items)]


# ----------------------------
# Static loader
# ----------------------------


def load_rule_file(path: str) -> list[DiagnosticRule]:
    try:
        with open(path, encoding="utf-8") as f:
            spec = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise MalformedRuleError(f"Invalid YAML: {e}", source=path) from e
    except OSError as e:
        raise MalformedRuleError(f"Cannot read rule file: {e}", source=path) from e
    return build_rule_set(spec, source=path)


def load_rules(rule_folder=None, verbose: bool = False) -> RuleSet:
    if rule_folder is None:
        rule_folder = os.path.join(os.path.dirname(__file__), "rules")
    if not os.path.isdir(rule_folder):
        raise MalformedRuleError("Rule folder does not exist", source=rule_folder)

    rules: list[DiagnosticRule] = []
    files = sorted(
        glob.glob(os.path.join(rule_folder, "*.yaml"))
        + glob.glob(os.path.join(rule_folder, "*.yml"))
    )
    for yfile in files:
        loaded = load_rule_file(yfile)
        if verbose:
            print(f"[DEBUG] Loaded {len(loaded)} rules from {yfile}")
        rules.extend(loaded)

    return RuleSet(rules)


def load_plugins(plugin_folder=None, verbose: bool = False) -> RuleSet:
    if plugin_folder is None or not os.path.exists(plugin_folder):
        return RuleSet()
    return load_rules(plugin_folder, verbose=verbose)


# ----------------------------
# Process-wide default rules
# ----------------------------

_DEFAULT_RULES: RuleSet | None = None


def get_default_rules() -> RuleSet:
    """
    Built-in rules plus the optional plugins folder, loaded once and
    shared by reference afterwards.
    """
    global _DEFAULT_RULES
    if _DEFAULT_RULES is None:
        rules_path = os.path.join(os.path.dirname(__file__), "rules")
        plugin_path = os.path.join(os.path.dirname(__file__), "plugins")
        _DEFAULT_RULES = load_rules(rules_path) + load_plugins(plugin_path)
    return _DEFAULT_RULES
