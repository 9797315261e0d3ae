import pytest

from kubectl_runbook.errors import UnknownKindError
from kubectl_runbook.kinds import ResourceKind, parse_kind
from kubectl_runbook.model import (
    flatten_facts,
    load_facts,
    normalize_facts,
    parse_fact_assignment,
    parse_scalar,
)

# ----------------------------
# Resource kinds
# ----------------------------


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Pod", ResourceKind.POD),
        ("pods", ResourceKind.POD),
        ("po", ResourceKind.POD),
        ("DEPLOY", ResourceKind.DEPLOYMENT),
        ("svc", ResourceKind.SERVICE),
        ("ingresses", ResourceKind.INGRESS),
        ("no", ResourceKind.NODE),
        ("ns", ResourceKind.NAMESPACE),
        ("rbac", ResourceKind.RBAC),
        ("rolebinding", ResourceKind.RBAC),
        ("pvc", ResourceKind.STORAGE),
        ("netpol", ResourceKind.NETWORKING),
        ("secret", ResourceKind.CONFIGMAP),
        ("cm", ResourceKind.CONFIGMAP),
        ("quota", ResourceKind.RESOURCEQUOTA),
        (" ResourceQuota ", ResourceKind.RESOURCEQUOTA),
        (ResourceKind.NODE, ResourceKind.NODE),
    ],
)
def test_parse_kind(value, expected):
    assert parse_kind(value) is expected


@pytest.mark.parametrize("value", ["Widget", "", "  ", None, 3, "AKS"])
def test_unknown_kinds(value):
    with pytest.raises(UnknownKindError):
        parse_kind(value)


def test_kind_set_is_closed():
    assert [k.value for k in ResourceKind] == [
        "Pod",
        "Deployment",
        "Service",
        "Ingress",
        "Node",
        "Namespace",
        "RBAC",
        "Storage",
        "Networking",
        "ConfigMap",
        "ResourceQuota",
    ]


# ----------------------------
# Fact bundles
# ----------------------------


def test_normalize_facts_is_read_only_and_sorted():
    facts = normalize_facts({"z.last": 1, "a.first": "x"})

    assert list(facts) == ["a.first", "z.last"]
    with pytest.raises(TypeError):
        facts["a.first"] = "y"  # type: ignore[index]


def test_normalize_facts_drops_none():
    assert dict(normalize_facts({"pod.ip": None, "pod.phase": "Pending"})) == {
        "pod.phase": "Pending"
    }


@pytest.mark.parametrize(
    "facts",
    [
        {"pod.containers": ["a"]},
        {"pod": {"phase": "Pending"}},
        {"": "x"},
        {3: "x"},
        ["pod.phase"],
    ],
)
def test_normalize_facts_rejects_invalid(facts):
    with pytest.raises(ValueError):
        normalize_facts(facts)


def test_flatten_facts():
    nested = {"pod": {"phase": "Pending", "init": {"waitingReason": "CrashLoopBackOff"}}}
    assert flatten_facts(nested) == {
        "pod.phase": "Pending",
        "pod.init.waitingReason": "CrashLoopBackOff",
    }


@pytest.mark.parametrize(
    "text, expected",
    [
        ("true", True),
        ("3", 3),
        ("0.5", 0.5),
        ("Pending", "Pending"),
        ('"42"', "42"),
        ("0/3 nodes: Insufficient cpu", "0/3 nodes: Insufficient cpu"),
        ("[a, b]", "[a, b]"),
        ("", ""),
        ("TRUE", True),
        ("-7", -7),
        ("1.5e3", 1500.0),
        ("'it''s'", "it's"),
    ],
)
def test_parse_scalar(text, expected):
    assert parse_scalar(text) == expected


def test_parse_fact_assignment():
    assert parse_fact_assignment("pod.ready=false") == ("pod.ready", False)
    assert parse_fact_assignment("pod.events = a=b") == ("pod.events", "a=b")
    with pytest.raises(ValueError):
        parse_fact_assignment("pod.ready")
    with pytest.raises(ValueError):
        parse_fact_assignment("=true")


def test_load_facts_from_yaml(tmp_path):
    path = tmp_path / "facts.yaml"
    path.write_text("pod:\n  phase: Pending\n  restartCount: 2\n", encoding="utf-8")

    assert dict(load_facts(str(path))) == {"pod.phase": "Pending", "pod.restartCount": 2}


def test_load_facts_from_json(tmp_path):
    path = tmp_path / "facts.json"
    path.write_text('{"ingress.backendExists": false}', encoding="utf-8")

    assert dict(load_facts(str(path))) == {"ingress.backendExists": False}


def test_load_facts_rejects_lists(tmp_path):
    path = tmp_path / "facts.yaml"
    path.write_text("- pod.phase\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_facts(str(path))


@pytest.mark.parametrize(
    "text, expected",
    [
        ("pod.reason=off", ("pod.reason", "off")),
        ("pod.reason=on", ("pod.reason", "on")),
        ("pod.reason=yes", ("pod.reason", "yes")),
        ("pod.reason=no", ("pod.reason", "no")),
        ("pod.exitCode=0137", ("pod.exitCode", "0137")),
        ("pod.uptime=1:30", ("pod.uptime", "1:30")),
        ("pod.events=Warning # x3", ("pod.events", "Warning # x3")),
        ("pod.phase=null", ("pod.phase", "null")),
        ("pod.version=1.2.3", ("pod.version", "1.2.3")),
    ],
)
def test_fact_values_are_not_reinterpreted(text, expected):
    assert parse_fact_assignment(text) == expected
