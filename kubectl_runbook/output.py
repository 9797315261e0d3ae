import json
from typing import Any

import yaml

from kubectl_runbook.engine import Diagnosis, SweepResult
from kubectl_runbook.loader import RuleSet

# ----------------------------
# Output formatting
# ----------------------------


def _print_structured(data: Any, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(data, indent=2))
    else:
        print(yaml.safe_dump(data, sort_keys=False), end="")


def _print_diagnosis_text(diagnosis: Diagnosis) -> None:
    header = f"{diagnosis.kind}"
    if diagnosis.resource:
        header += f": {diagnosis.resource}"
    print(header)

    if not diagnosis:
        print("  No matching runbook entries")
        return

    for i, finding in enumerate(diagnosis, start=1):
        print(f"\n{i}. [{finding.severity}] {finding.rule_id} ({finding.category})")
        print(f"   {finding.message}")
        if finding.suggested_action:
            print(f"   Suggested action: {finding.suggested_action}")
        if finding.checks:
            print("   Checks:")
            for check in finding.checks:
                print(f"     $ {check}")
        if finding.evidence:
            print("   Evidence:")
            for item in finding.evidence:
                print(f"     - {item}")


def output_result(diagnosis: Diagnosis, fmt: str = "text") -> None:
    """
    Print one diagnosis. Findings keep diagnosis order in every
    format; that order is the priority order.
    """
    if fmt in ("json", "yaml"):
        _print_structured(diagnosis.to_dict(), fmt)
        return
    _print_diagnosis_text(diagnosis)


def output_sweep(results: list[SweepResult], fmt: str = "text") -> None:
    if fmt in ("json", "yaml"):
        data = []
        for r in results:
            entry: dict[str, Any] = {"resource": r.identifier}
            if r.ok and r.diagnosis is not None:
                entry["findings"] = [f.to_dict() for f in r.diagnosis]
            else:
                entry["error"] = str(r.error)
            data.append(entry)
        _print_structured(data, fmt)
        return

    for i, r in enumerate(results):
        if i:
            print()
        if r.ok and r.diagnosis is not None:
            _print_diagnosis_text(r.diagnosis)
        else:
            print(f"{r.identifier}")
            print(f"  [ERROR] {r.error}")


def output_rules(rules: RuleSet, kinds=None, fmt: str = "text") -> None:
    selected = [r for r in rules if kinds is None or r.kind in kinds]
    selected.sort(key=lambda r: (r.kind.value, r.priority))

    if fmt in ("json", "yaml"):
        _print_structured(
            [
                {
                    "id": r.id,
                    "kind": r.kind.value,
                    "priority": r.priority,
                    "category": r.category,
                    "severity": r.severity,
                    "when": [c.describe() for c in r.conditions],
                    "message": r.remediation.message,
                }
                for r in selected
            ],
            fmt,
        )
        return

    for r in selected:
        print(f"{r.kind.value:<14} {r.priority:>4}  {r.id}  [{r.category}/{r.severity}]")
