import argparse
import os
import sys

from kubectl_runbook.collector import SnapshotCollector
from kubectl_runbook.engine import diagnose, diagnose_many, diagnose_resource
from kubectl_runbook.errors import CollectionError, MalformedRuleError, UnknownKindError
from kubectl_runbook.kinds import parse_kind
from kubectl_runbook.loader import load_plugins, load_rules
from kubectl_runbook.model import load_facts, normalize_facts, parse_fact_assignment
from kubectl_runbook.output import output_result, output_rules, output_sweep

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_COLLECTION = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubectl-runbook",
        description="Match Kubernetes resource facts against troubleshooting runbooks",
    )

    parser.add_argument("--kind", help="Resource kind (Pod, Service, Ingress, ...)")

    facts = parser.add_argument_group("fact sources")
    facts.add_argument("--facts", help="Path to a JSON or YAML fact bundle")
    facts.add_argument(
        "--fact",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Single fact, repeatable (e.g. pod.phase=Pending)",
    )
    facts.add_argument("--snapshot", help="Directory of saved `kubectl get -o json` dumps")
    facts.add_argument("--name", help="Resource in the snapshot: name or namespace/name")
    facts.add_argument(
        "--all", action="store_true", help="Diagnose every resource of --kind in the snapshot"
    )
    facts.add_argument("--namespace", help="Restrict --all to one namespace")
    facts.add_argument("--jobs", type=int, default=4, help="Concurrent collectors for --all")
    facts.add_argument(
        "--timeout", type=float, default=None, help="Seconds to wait per collector call"
    )

    parser.add_argument("--rules", help="Rule folder (defaults to the built-in rules)")
    parser.add_argument("--plugins", help="Extra rule folder merged after --rules")
    parser.add_argument("--list-rules", action="store_true", help="Print loaded rules and exit")

    parser.add_argument(
        "--format",
        choices=["text", "json", "yaml"],
        default="text",
        help="Output format (text, json, yaml)",
    )
    parser.add_argument("--enable-categories", nargs="*", default=None)
    parser.add_argument("--disable-categories", nargs="*", default=None)
    parser.add_argument("--verbose", action="store_true")
    return parser


def _error(message: str) -> None:
    print(f"[ERROR] {message}", file=sys.stderr)


def _gather_facts(args) -> dict:
    facts: dict = {}
    if args.facts:
        facts.update(load_facts(args.facts))
    for item in args.fact:
        key, value = parse_fact_assignment(item)
        facts[key] = value
    return facts


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Rules are loaded once; a malformed definition stops here
    rules_folder = args.rules or os.path.join(os.path.dirname(__file__), "rules")
    plugin_folder = args.plugins or os.path.join(os.path.dirname(__file__), "plugins")
    try:
        rules = load_rules(rules_folder, verbose=args.verbose) + load_plugins(
            plugin_folder, verbose=args.verbose
        )
    except MalformedRuleError as e:
        _error(f"Malformed rule definition: {e}")
        return EXIT_USAGE

    if args.verbose:
        print(f"[DEBUG] Loaded {len(rules)} rules")
    if not len(rules):
        print("[WARNING] No rules loaded, check your rules/ and plugins/ folders")

    try:
        kind = parse_kind(args.kind) if args.kind else None
    except UnknownKindError as e:
        _error(str(e))
        return EXIT_USAGE

    if args.list_rules:
        output_rules(rules, kinds={kind} if kind else None, fmt=args.format)
        return EXIT_OK

    if kind is None:
        parser.error("--kind is required")
    if args.snapshot and (args.fact or args.facts):
        parser.error("--fact/--facts cannot be combined with --snapshot")
    if not args.snapshot and (args.name or args.all):
        parser.error("--name and --all need --snapshot")

    options = {
        "rules": rules,
        "enabled_categories": args.enable_categories,
        "disabled_categories": args.disable_categories,
    }

    if args.snapshot:
        collector = SnapshotCollector(args.snapshot)
        if args.all:
            identifiers = collector.identifiers(kind, args.namespace)
            results = diagnose_many(
                kind,
                identifiers,
                collector,
                max_workers=args.jobs,
                timeout=args.timeout,
                verbose=args.verbose,
                **options,
            )
            output_sweep(results, args.format)
            return EXIT_COLLECTION if any(not r.ok for r in results) else EXIT_OK

        if not args.name:
            parser.error("--snapshot needs --name or --all")
        try:
            diagnosis = diagnose_resource(
                kind, args.name, collector, verbose=args.verbose, **options
            )
        except CollectionError as e:
            _error(str(e))
            return EXIT_COLLECTION
        output_result(diagnosis, args.format)
        return EXIT_OK

    try:
        facts = normalize_facts(_gather_facts(args))
    except (OSError, ValueError) as e:
        _error(f"Invalid facts: {e}")
        return EXIT_USAGE

    if args.verbose:
        for k, v in facts.items():
            print(f"[DEBUG] {k} = {v!r}")

    diagnosis = diagnose(kind, facts, verbose=args.verbose, **options)
    output_result(diagnosis, args.format)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
