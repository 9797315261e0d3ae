import json
import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import yaml

SCALAR_TYPES = (str, int, float, bool)

# ----------------------------
# Parsing utilities
# ----------------------------


def load_json(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_document(path: str) -> Any:
    """
    Load a JSON or YAML document. JSON is a subset of YAML, but
    .json files go through the json module to keep its error messages.
    """
    if path.endswith(".json"):
        return load_json(path)
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


_INT_RE = re.compile(r"^[-+]?(0|[1-9][0-9]*)$")
_FLOAT_RE = re.compile(r"^[-+]?([0-9]+\.[0-9]*|\.[0-9]+)([eE][-+]?[0-9]+)?$")


def parse_scalar(text: str) -> Any:
    """
    Type a literal given on the command line or in a rule condition.

    Only `true`/`false` (any case), plain decimal numbers and quoted strings
    are typed; everything else stays the stripped text. YAML's wider
    resolution (`off` -> False, `0137` -> 95, `1:30` -> 90, `# comments`)
    would silently change operator-supplied values.
    """
    text = text.strip()
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        try:
            value = yaml.safe_load(text)
        except yaml.YAMLError:
            return text
        if isinstance(value, str):
            return value
    return text


def parse_fact_assignment(text: str) -> tuple[str, Any]:
    key, sep, raw = text.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ValueError(f"Fact must be given as key=value, got {text!r}")
    return key, parse_scalar(raw)


# ----------------------------
# Fact bundles
# ----------------------------


def flatten_facts(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """
    {"pod": {"phase": "Pending"}} -> {"pod.phase": "Pending"}
    """
    flat: dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten_facts(value, full_key))
        else:
            flat[full_key] = value
    return flat


def normalize_facts(facts: Mapping[str, Any] | None) -> Mapping[str, Any]:
    """
    Validate a fact bundle and return a read-only, key-sorted view of it.
    Facts whose value is None are treated as not observed and dropped.
    """
    if facts is None:
        return MappingProxyType({})
    if not isinstance(facts, Mapping):
        raise ValueError(f"Fact bundle must be a mapping, got {type(facts).__name__}")

    bundle: dict[str, Any] = {}
    for key in sorted(facts, key=str):
        value = facts[key]
        if not isinstance(key, str) or not key.strip():
            raise ValueError(f"Fact key must be a non-empty string, got {key!r}")
        if value is None:
            continue
        if not isinstance(value, SCALAR_TYPES):
            raise ValueError(
                f"Fact '{key}' must be a string, number or boolean, "
                f"got {type(value).__name__}"
            )
        bundle[key] = value
    return MappingProxyType(bundle)


def load_facts(path: str) -> Mapping[str, Any]:
    try:
        data = load_document(path)
    except yaml.YAMLError as e:
        raise ValueError(f"{path}: invalid YAML: {e}") from e
    if data is None:
        return normalize_facts({})
    if not isinstance(data, Mapping):
        raise ValueError(f"{path}: facts file must contain a mapping")
    return normalize_facts(flatten_facts(data))
