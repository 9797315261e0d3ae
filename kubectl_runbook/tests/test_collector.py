import os
import threading

import pytest

from kubectl_runbook.collector import EvidenceCollector, SnapshotCollector, StaticCollector
from kubectl_runbook.engine import diagnose_many, diagnose_resource
from kubectl_runbook.errors import CollectionError, UnknownKindError
from kubectl_runbook.kinds import ResourceKind

SNAPSHOT_DIR = os.path.join(os.path.dirname(__file__), "fixtures", "snapshot")


class FailingCollector(EvidenceCollector):
    def __init__(self, exc):
        self.exc = exc
        self.calls = 0

    def collect(self, kind, identifier):
        self.calls += 1
        raise self.exc


class BlockingCollector(EvidenceCollector):
    """
    Blocks on one identifier until released; answers the rest immediately.
    """

    def __init__(self, slow_identifier):
        self.slow_identifier = slow_identifier
        self.release = threading.Event()
        self.calls = []

    def collect(self, kind, identifier):
        self.calls.append(identifier)
        if identifier == self.slow_identifier:
            self.release.wait(5)
            return {"pod.phase": "Pending", "pod.events": "Insufficient cpu"}
        return {"pod.phase": "Running", "pod.ready": True}


# ----------------------------
# Static collector
# ----------------------------


def test_static_collector_feeds_engine():
    collector = StaticCollector(
        {("Ingress", "default/web"): {"ingress.backendExists": False}}
    )

    result = diagnose_resource("Ingress", "default/web", collector)

    assert result.resource == "default/web"
    assert result.rule_ids() == ["ingress-backend-service-missing"]


def test_static_collector_unknown_identifier():
    collector = StaticCollector({})
    with pytest.raises(CollectionError) as exc:
        diagnose_resource("Pod", "default/missing", collector)
    assert exc.value.identifier == "default/missing"
    assert exc.value.kind is ResourceKind.POD


def test_unknown_kind_is_raised_before_collection():
    collector = FailingCollector(RuntimeError("should not be called"))
    with pytest.raises(UnknownKindError):
        diagnose_resource("Widget", "x", collector)
    assert collector.calls == 0


# ----------------------------
# Failure propagation
# ----------------------------


def test_collection_error_propagates_unchanged():
    error = CollectionError("api server unreachable")
    collector = FailingCollector(error)

    with pytest.raises(CollectionError) as exc:
        diagnose_resource("Pod", "default/web", collector)

    assert exc.value is error
    assert collector.calls == 1  # no retry


def test_adapter_exceptions_are_wrapped():
    collector = FailingCollector(PermissionError("401 Unauthorized"))

    with pytest.raises(CollectionError) as exc:
        diagnose_resource("Pod", "default/web", collector)

    assert isinstance(exc.value.__cause__, PermissionError)
    assert collector.calls == 1


def test_invalid_bundle_from_collector_is_collection_error():
    collector = StaticCollector({("Pod", "p"): {"pod.containers": ["a", "b"]}})
    with pytest.raises(CollectionError):
        diagnose_resource("Pod", "p", collector)


# ----------------------------
# Snapshot collector
# ----------------------------


def test_snapshot_pending_pod():
    collector = SnapshotCollector(SNAPSHOT_DIR)

    result = diagnose_resource("Pod", "default/web-pending", collector)

    assert result.rule_ids() == ["pod-pending-insufficient-resources"]


def test_snapshot_healthy_pod_is_empty():
    collector = SnapshotCollector(SNAPSHOT_DIR)
    assert diagnose_resource("Pod", "default/web-running", collector).rule_ids() == []


def test_snapshot_crashloop_pod_reports_all_causes():
    collector = SnapshotCollector(SNAPSHOT_DIR)

    result = diagnose_resource("Pod", "default/worker-crashloop", collector)

    assert result.rule_ids() == [
        "pod-crashloop-oomkilled",
        "pod-crashloop-backoff",
        "pod-frequent-restarts",
    ]


def test_snapshot_ingress_missing_backend():
    collector = SnapshotCollector(SNAPSHOT_DIR)

    assert diagnose_resource("Ingress", "default/broken", collector).rule_ids() == [
        "ingress-backend-service-missing"
    ]
    assert diagnose_resource("Ingress", "default/web", collector).rule_ids() == []


def test_snapshot_missing_object():
    collector = SnapshotCollector(SNAPSHOT_DIR)
    with pytest.raises(CollectionError) as exc:
        collector.collect(ResourceKind.POD, "default/nope")
    assert "default/nope" in str(exc.value)


def test_snapshot_corrupt_object(tmp_path):
    pods = tmp_path / "pods" / "default"
    pods.mkdir(parents=True)
    (pods / "bad.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(CollectionError):
        SnapshotCollector(str(tmp_path)).collect(ResourceKind.POD, "default/bad")


def test_snapshot_identifiers():
    collector = SnapshotCollector(SNAPSHOT_DIR)

    assert collector.identifiers(ResourceKind.POD) == [
        "default/web-pending",
        "default/web-running",
        "default/worker-crashloop",
    ]
    assert collector.identifiers(ResourceKind.NODE) == ["node-1"]
    assert collector.identifiers(ResourceKind.RBAC) == ["default/reader"]
    assert collector.identifiers(ResourceKind.POD, namespace="kube-system") == []


# ----------------------------
# Sweeps
# ----------------------------


def test_sweep_results_keep_input_order():
    collector = SnapshotCollector(SNAPSHOT_DIR)
    identifiers = collector.identifiers(ResourceKind.POD) + ["default/ghost"]

    results = diagnose_many("Pod", identifiers, collector, max_workers=3)

    assert [r.identifier for r in results] == identifiers
    assert results[0].diagnosis.rule_ids() == ["pod-pending-insufficient-resources"]
    assert results[1].diagnosis.rule_ids() == []
    assert results[2].diagnosis.rule_ids()[0] == "pod-crashloop-oomkilled"
    assert not results[3].ok
    assert isinstance(results[3].error, CollectionError)


def test_sweep_timeout_skips_evaluation():
    collector = BlockingCollector("default/slow")
    try:
        results = diagnose_many(
            "Pod", ["default/slow", "default/fast"], collector, max_workers=2, timeout=0.2
        )
    finally:
        collector.release.set()

    slow, fast = results
    assert slow.diagnosis is None
    assert isinstance(slow.error, CollectionError)
    assert "Timed out" in str(slow.error)
    assert fast.ok
    assert fast.diagnosis.rule_ids() == []


def test_sweep_unknown_kind():
    with pytest.raises(UnknownKindError):
        diagnose_many("Widget", ["a"], StaticCollector({}))


def test_sweep_empty():
    assert diagnose_many("Pod", [], StaticCollector({})) == []


def test_sweep_timeout_counts_from_call_start():
    collector = BlockingCollector("default/slow")
    try:
        results = diagnose_many(
            "Pod", ["default/slow", "default/fast"], collector, max_workers=1, timeout=0.3
        )
    finally:
        collector.release.set()

    slow, fast = results
    assert not slow.ok
    assert "Timed out" in str(slow.error)
    # queued behind the slow call, but its own call finished in time
    assert fast.ok
    assert fast.diagnosis.rule_ids() == []
    assert collector.calls == ["default/slow", "default/fast"]
