from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from kubectl_runbook.errors import CollectionError
from kubectl_runbook.facts import SWEEP_PLURALS, extract_facts
from kubectl_runbook.kinds import ResourceKind, parse_kind
from kubectl_runbook.snapshot import ClusterSnapshot


class EvidenceCollector(ABC):
    """
    Adapter that gathers a fact bundle for one resource.

    Implementations raise CollectionError on any transport, auth or
    lookup failure. Retry policy, if any, lives in the adapter.
    """

    @abstractmethod
    def collect(self, kind: ResourceKind, identifier: str) -> Mapping[str, Any]:
        raise NotImplementedError

    def identifiers(self, kind: ResourceKind, namespace: str | None = None) -> list[str]:
        """
        Every resource of `kind` the adapter can see; used by sweeps.
        """
        raise NotImplementedError(f"{type(self).__name__} cannot enumerate resources")


class StaticCollector(EvidenceCollector):
    """
    In-memory fact bundles keyed by (kind, identifier).
    """

    def __init__(self, bundles: Mapping[tuple[Any, str], Mapping[str, Any]] | None = None):
        self._bundles: dict[tuple[ResourceKind, str], Mapping[str, Any]] = {}
        for (kind, identifier), facts in (bundles or {}).items():
            self._bundles[(parse_kind(kind), identifier)] = dict(facts)

    def collect(self, kind: ResourceKind, identifier: str) -> Mapping[str, Any]:
        kind = parse_kind(kind)
        try:
            return dict(self._bundles[(kind, identifier)])
        except KeyError:
            raise CollectionError(
                f"No facts recorded for {kind} '{identifier}'",
                kind=kind,
                identifier=identifier,
            ) from None

    def identifiers(self, kind: ResourceKind, namespace: str | None = None) -> list[str]:
        kind = parse_kind(kind)
        return [
            ident
            for (k, ident) in self._bundles
            if k is kind and (namespace is None or ident.startswith(f"{namespace}/"))
        ]


class SnapshotCollector(EvidenceCollector):
    """
    Facts extracted from saved `kubectl get -o json` output.
    """

    def __init__(self, snapshot: ClusterSnapshot | str):
        if isinstance(snapshot, str):
            snapshot = ClusterSnapshot(snapshot)
        self.snapshot = snapshot

    def collect(self, kind: ResourceKind, identifier: str) -> Mapping[str, Any]:
        kind = parse_kind(kind)
        try:
            return extract_facts(self.snapshot, kind, identifier)
        except (OSError, ValueError) as e:
            raise CollectionError(
                f"Cannot collect {kind} '{identifier}' from snapshot: {e}",
                kind=kind,
                identifier=identifier,
            ) from e

    def identifiers(self, kind: ResourceKind, namespace: str | None = None) -> list[str]:
        kind = parse_kind(kind)
        plurals = SWEEP_PLURALS.get(kind, [kind.plural])
        result: list[str] = []
        for plural in plurals:
            result.extend(self.snapshot.identifiers(plural, namespace))
        return list(dict.fromkeys(result))
