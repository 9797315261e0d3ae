from collections.abc import Mapping
from typing import Any

from kubectl_runbook.kinds import parse_kind
from kubectl_runbook.loader import RuleSet, get_default_rules
from kubectl_runbook.rules.base_rule import DiagnosticRule


def select_rules(
    kind,
    facts: Mapping[str, Any] | None = None,
    rules: RuleSet | None = None,
    enabled_categories: list[str] | None = None,
    disabled_categories: list[str] | None = None,
) -> tuple[DiagnosticRule, ...]:
    """
    Narrow the rule set to the rules declared for `kind`, in declaration order.

    Raises UnknownKindError before touching the rule set if `kind`
    is outside the closed set. `facts` does not influence selection;
    conditions are evaluated by the engine.
    """
    resource_kind = parse_kind(kind)

    if rules is None:
        rules = get_default_rules()

    selected = []
    for rule in rules.for_kind(resource_kind):
        if enabled_categories and rule.category not in enabled_categories:
            continue
        if disabled_categories and rule.category in disabled_categories:
            continue
        selected.append(rule)

    return tuple(selected)
