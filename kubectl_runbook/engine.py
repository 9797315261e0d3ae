import threading
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from kubectl_runbook.collector import EvidenceCollector
from kubectl_runbook.errors import CollectionError
from kubectl_runbook.kinds import ResourceKind, parse_kind
from kubectl_runbook.loader import RuleSet, get_default_rules
from kubectl_runbook.matcher import select_rules
from kubectl_runbook.model import normalize_facts
from kubectl_runbook.rules.base_rule import DiagnosticRule

__all__ = [
    "Diagnosis",
    "Finding",
    "SweepResult",
    "diagnose",
    "diagnose_many",
    "diagnose_resource",
    "evaluate",
    "get_default_rules",
]


@dataclass(frozen=True)
class Finding:
    """
    One matched runbook entry.
    """

    rule_id: str
    message: str
    suggested_action: str | None = None
    checks: tuple[str, ...] = ()
    category: str = "Generic"
    severity: str = "Medium"
    priority: int = 100
    evidence: tuple[str, ...] = ()

    @classmethod
    def from_rule(cls, rule: DiagnosticRule, facts: Mapping[str, Any]) -> "Finding":
        return cls(
            rule_id=rule.id,
            message=rule.remediation.message,
            suggested_action=rule.remediation.suggested_action,
            checks=rule.remediation.checks,
            category=rule.category,
            severity=rule.severity,
            priority=rule.priority,
            evidence=tuple(rule.evidence(facts)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "message": self.message,
            "suggested_action": self.suggested_action,
            "checks": list(self.checks),
            "category": self.category,
            "severity": self.severity,
            "priority": self.priority,
            "evidence": list(self.evidence),
        }


@dataclass(frozen=True)
class Diagnosis:
    """
    Ordered remediations for one fact bundle. An empty diagnosis
    means nothing in the runbook applies; it is not an error.
    """

    kind: ResourceKind | None
    findings: tuple[Finding, ...] = ()
    resource: str | None = None

    def __len__(self) -> int:
        return len(self.findings)

    def __iter__(self):
        return iter(self.findings)

    def __bool__(self) -> bool:
        return bool(self.findings)

    def rule_ids(self) -> list[str]:
        return [f.rule_id for f in self.findings]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind) if self.kind is not None else None,
            "resource": self.resource,
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass
class SweepResult:
    identifier: str
    diagnosis: Diagnosis | None = None
    error: CollectionError | None = field(default=None)

    @property
    def ok(self) -> bool:
        return self.error is None


# ----------------------------
# Rule engine
# ----------------------------


def evaluate(
    rules: Iterable[DiagnosticRule],
    facts: Mapping[str, Any],
    verbose: bool = False,
) -> Diagnosis:
    """
    Evaluate every rule against `facts` and collect all matches.

    - Ascending priority; equal priorities keep declaration order
      (sorted() is stable, so no hash ordering leaks into the result)
    - A missing fact never raises; the comparison simply does not hold
    - Pure: neither `rules` nor `facts` is modified
    """
    facts = normalize_facts(facts)
    ordered = sorted(rules, key=lambda r: r.priority)

    kinds = {r.kind for r in ordered}
    kind = kinds.pop() if len(kinds) == 1 else None

    findings: list[Finding] = []
    for rule in ordered:
        if rule.matches(facts):
            findings.append(Finding.from_rule(rule, facts))
            if verbose:
                print(
                    f"[DEBUG] Rule '{rule.id}' matched "
                    f"(category='{rule.category}', priority={rule.priority})"
                )
        elif verbose:
            print(f"[DEBUG] Rule '{rule.id}' did not match")

    return Diagnosis(kind=kind, findings=tuple(findings))


def diagnose(
    kind,
    facts: Mapping[str, Any],
    rules: RuleSet | None = None,
    enabled_categories: list[str] | None = None,
    disabled_categories: list[str] | None = None,
    resource: str | None = None,
    verbose: bool = False,
) -> Diagnosis:
    """
    Match -> Evaluate -> Return for a single fact bundle.
    Raises UnknownKindError synchronously for unsupported kinds.
    """
    resource_kind = parse_kind(kind)
    selected = select_rules(
        resource_kind,
        facts,
        rules=rules,
        enabled_categories=enabled_categories,
        disabled_categories=disabled_categories,
    )
    if verbose:
        print(f"[DEBUG] {len(selected)} rules selected for kind {resource_kind}")

    result = evaluate(selected, facts, verbose=verbose)
    return Diagnosis(kind=resource_kind, findings=result.findings, resource=resource)


def _collect(kind: ResourceKind, identifier: str, collector: EvidenceCollector):
    try:
        raw = collector.collect(kind, identifier)
    except CollectionError:
        raise
    except Exception as e:
        raise CollectionError(
            f"Collector failed for {kind} '{identifier}': {e}",
            kind=kind,
            identifier=identifier,
        ) from e

    try:
        return normalize_facts(raw)
    except ValueError as e:
        raise CollectionError(
            f"Collector returned an invalid fact bundle for {kind} '{identifier}': {e}",
            kind=kind,
            identifier=identifier,
        ) from e


def diagnose_resource(
    kind,
    identifier: str,
    collector: EvidenceCollector,
    rules: RuleSet | None = None,
    enabled_categories: list[str] | None = None,
    disabled_categories: list[str] | None = None,
    verbose: bool = False,
) -> Diagnosis:
    """
    Collect facts for one resource and diagnose them.

    Collection failures surface as CollectionError; nothing is retried
    and no rule is evaluated against a partial bundle.
    """
    resource_kind = parse_kind(kind)
    facts = _collect(resource_kind, identifier, collector)
    if verbose:
        print(f"[DEBUG] Collected {len(facts)} facts for {resource_kind} '{identifier}'")
    return diagnose(
        resource_kind,
        facts,
        rules=rules,
        enabled_categories=enabled_categories,
        disabled_categories=disabled_categories,
        resource=identifier,
        verbose=verbose,
    )


def _collect_within(
    kind: ResourceKind,
    identifier: str,
    collector: EvidenceCollector,
    timeout: float | None,
):
    """
    Run one collector call with a deadline measured from the moment the
    call starts. The call itself runs on a daemon thread, so a collector
    that never returns is abandoned instead of holding a sweep worker or
    interpreter exit.
    """
    if timeout is None:
        return _collect(kind, identifier, collector)

    outcome: dict[str, Any] = {}

    def run():
        try:
            outcome["facts"] = _collect(kind, identifier, collector)
        except CollectionError as e:
            outcome["error"] = e

    call = threading.Thread(target=run, name=f"collect-{identifier}", daemon=True)
    call.start()
    call.join(timeout)
    if call.is_alive():
        raise CollectionError(
            f"Timed out collecting facts for {kind} '{identifier}' after {timeout}s",
            kind=kind,
            identifier=identifier,
        )
    if "error" in outcome:
        raise outcome["error"]
    return outcome["facts"]


def diagnose_many(
    kind,
    identifiers: Iterable[str],
    collector: EvidenceCollector,
    rules: RuleSet | None = None,
    max_workers: int = 4,
    timeout: float | None = None,
    enabled_categories: list[str] | None = None,
    disabled_categories: list[str] | None = None,
    verbose: bool = False,
) -> list[SweepResult]:
    """
    Diagnose many resources of one kind concurrently (e.g. every Pod in a
    namespace). Results come back in input order. A collector call that
    runs longer than `timeout` seconds from its own start is reported as a
    CollectionError for that identifier and nothing is evaluated for it.
    Resources still queued behind a slow call are not charged for the wait.
    """
    resource_kind = parse_kind(kind)
    identifiers = list(identifiers)
    if rules is None:
        rules = get_default_rules()

    results: list[SweepResult] = []
    if not identifiers:
        return results

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = [
            executor.submit(_collect_within, resource_kind, ident, collector, timeout)
            for ident in identifiers
        ]
        for ident, future in zip(identifiers, futures):
            try:
                facts = future.result()
            except CollectionError as e:
                if verbose:
                    print(f"[DEBUG] {e}")
                results.append(SweepResult(identifier=ident, error=e))
                continue

            if verbose:
                print(f"[DEBUG] Collected {len(facts)} facts for {resource_kind} '{ident}'")
            diagnosis = diagnose(
                resource_kind,
                facts,
                rules=rules,
                enabled_categories=enabled_categories,
                disabled_categories=disabled_categories,
                resource=ident,
                verbose=verbose,
            )
            results.append(SweepResult(identifier=ident, diagnosis=diagnosis))

    return results
