import os

import pytest

from kubectl_runbook.errors import MalformedRuleError
from kubectl_runbook.kinds import ResourceKind
from kubectl_runbook.loader import (
    RuleSet,
    build_rule_set,
    get_default_rules,
    load_plugins,
    load_rules,
    parse_condition,
    validate_rule,
)
from kubectl_runbook.rules.base_rule import OPERATORS, Comparison, DiagnosticRule, Remediation

RULES_DIR = os.path.join(os.path.dirname(__file__), "..", "rules")


def _rule(**overrides):
    spec = {
        "id": "r1",
        "priority": 10,
        "when": ["pod.phase = Pending"],
        "then": {"message": "do something"},
    }
    spec.update(overrides)
    return spec


# ----------------------------
# Built-in rules
# ----------------------------


def test_all_rules_have_metadata():
    rules = load_rules(RULES_DIR)
    assert len(rules) > 0
    for r in rules:
        assert r.id
        assert r.category
        assert 0 <= r.priority <= 1000
        assert r.severity in ("Low", "Medium", "High")
        assert r.conditions
        assert r.remediation.message
        assert all(c.op in OPERATORS for c in r.conditions)


def test_every_kind_has_a_rule_file():
    rules = load_rules(RULES_DIR)
    assert set(rules.kinds()) == set(ResourceKind)


def test_default_rules_are_loaded_once():
    assert get_default_rules() is get_default_rules()


def test_rule_ids_are_unique():
    rules = load_rules(RULES_DIR)
    ids = [r.id for r in rules]
    assert len(ids) == len(set(ids))


# ----------------------------
# Condition parsing
# ----------------------------


@pytest.mark.parametrize(
    "text, expected",
    [
        ("pod.phase = Pending", Comparison("pod.phase", "=", "Pending")),
        ("pod.phase=Pending", Comparison("pod.phase", "=", "Pending")),
        ("pod.ready = true", Comparison("pod.ready", "=", True)),
        ("node.taint.count >= 2", Comparison("node.taint.count", ">=", 2)),
        ("ratio < 0.9", Comparison("ratio", "<", 0.9)),
        ("pod.phase != Running", Comparison("pod.phase", "!=", "Running")),
        ("pod.ip exists", Comparison("pod.ip", "exists")),
        (
            'pod.events contains "Insufficient cpu"',
            Comparison("pod.events", "contains", "Insufficient cpu"),
        ),
        ('pod.ready = "true"', Comparison("pod.ready", "=", "true")),
        ("pod.reason = off", Comparison("pod.reason", "=", "off")),
        ("pod.exitCode = 0137", Comparison("pod.exitCode", "=", "0137")),
        ("pod.events contains Warning # x3", Comparison("pod.events", "contains", "Warning # x3")),
    ],
)
def test_parse_condition_strings(text, expected):
    assert parse_condition(text) == expected


def test_parse_condition_mapping():
    assert parse_condition({"fact": "x", "op": "<=", "value": 3}) == Comparison("x", "<=", 3)
    assert parse_condition({"fact": "x", "op": "exists"}) == Comparison("x", "exists")
    assert parse_condition({"fact": "x", "value": "y"}) == Comparison("x", "=", "y")


@pytest.mark.parametrize(
    "raw",
    [
        "pod.phase",
        "pod.phase ~= Pending",
        "pod.phase =",
        "pod.ip exists yes",
        "pod.phase = null",
        {"op": "="},
        {"fact": "x", "op": "matches", "value": "y"},
        {"fact": "x", "op": "="},
        {"fact": "x", "value": ["a"]},
        42,
    ],
)
def test_malformed_conditions_are_rejected(raw):
    with pytest.raises(MalformedRuleError):
        parse_condition(raw)


# ----------------------------
# Rule contract
# ----------------------------


def test_build_rule_set_keeps_declaration_order():
    rules = build_rule_set(
        {"kind": "Pod", "rules": [_rule(id="b"), _rule(id="a"), _rule(id="c")]}
    )
    assert [r.id for r in rules] == ["b", "a", "c"]
    assert all(r.kind is ResourceKind.POD for r in rules)


@pytest.mark.parametrize(
    "spec",
    [
        {"kind": "Widget", "rules": [_rule()]},
        {"rules": [_rule()]},
        {"kind": "Pod", "rules": {"id": "x"}},
        {"kind": "Pod", "rules": ["not-a-mapping"]},
        {"kind": "Pod", "rules": [_rule(id="")]},
        {"kind": "Pod", "rules": [_rule(priority=-1)]},
        {"kind": "Pod", "rules": [_rule(priority=1001)]},
        {"kind": "Pod", "rules": [_rule(priority="10")]},
        {"kind": "Pod", "rules": [_rule(priority=True)]},
        {"kind": "Pod", "rules": [_rule(severity="Critical")]},
        {"kind": "Pod", "rules": [_rule(when=[])]},
        {"kind": "Pod", "rules": [_rule(then={"suggested_action": "x"})]},
        {"kind": "Pod", "rules": [_rule(then={"message": "m", "checks": "kubectl"})]},
        {"kind": "Pod", "rules": [_rule(kind="Node")]},
        {"kind": "Pod", "rules": [_rule(unexpected=True)]},
        ["not", "a", "mapping"],
    ],
)
def test_malformed_rule_sets_are_rejected(spec):
    with pytest.raises(MalformedRuleError):
        build_rule_set(spec)


def test_malformed_rule_error_is_a_value_error():
    with pytest.raises(ValueError):
        build_rule_set({"kind": "Pod", "rules": [_rule(priority=-1)]})


def test_validate_rule_rejects_bad_priority():
    rule = DiagnosticRule(
        id="BadPriority",
        kind=ResourceKind.POD,
        priority=-1,
        conditions=(Comparison("x", "exists"),),
        remediation=Remediation("m"),
    )
    with pytest.raises(MalformedRuleError):
        validate_rule(rule)


def test_duplicate_ids_rejected():
    rules = build_rule_set({"kind": "Pod", "rules": [_rule(id="dup")]})
    more = build_rule_set({"kind": "Node", "rules": [_rule(id="dup", when=["node.ready = false"])]})
    with pytest.raises(MalformedRuleError):
        RuleSet(rules + more)


# ----------------------------
# Files on disk
# ----------------------------


def test_invalid_yaml_file_is_fatal(tmp_path):
    (tmp_path / "pod.yaml").write_text("kind: Pod\nrules: [\n", encoding="utf-8")
    with pytest.raises(MalformedRuleError) as exc:
        load_rules(str(tmp_path))
    assert "pod.yaml" in str(exc.value)


def test_missing_rule_folder_is_fatal(tmp_path):
    with pytest.raises(MalformedRuleError):
        load_rules(str(tmp_path / "missing"))


def test_plugins_extend_built_in_rules(tmp_path):
    (tmp_path / "extra.yaml").write_text(
        "kind: Pod\n"
        "rules:\n"
        "  - id: plugin-rule\n"
        "    priority: 1\n"
        "    when: [pod.phase = Unknown]\n"
        "    then: {message: Node lost contact with the control plane}\n",
        encoding="utf-8",
    )

    combined = load_rules(RULES_DIR) + load_plugins(str(tmp_path))

    assert combined.get("plugin-rule") is not None
    assert combined.for_kind(ResourceKind.POD)[-1].id == "plugin-rule"


def test_missing_plugin_folder_is_empty(tmp_path):
    assert len(load_plugins(str(tmp_path / "nope"))) == 0
    assert len(load_plugins(None)) == 0


def test_empty_rule_file_is_skipped(tmp_path):
    (tmp_path / "empty.yaml").write_text("", encoding="utf-8")
    assert len(load_rules(str(tmp_path))) == 0
