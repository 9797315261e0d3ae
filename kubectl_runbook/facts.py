import re
from collections.abc import Callable
from typing import Any

from kubectl_runbook.kinds import ResourceKind
from kubectl_runbook.snapshot import ClusterSnapshot

# ----------------------------
# Shared helpers
# ----------------------------

_QUANTITY_RE = re.compile(r"^([+-]?[0-9.]+(?:[eE][+-]?[0-9]+)?)([a-zA-Z]*)$")

_QUANTITY_SUFFIXES = {
    "": 1,
    "n": 1e-9,
    "u": 1e-6,
    "m": 1e-3,
    "k": 1e3,
    "M": 1e6,
    "G": 1e9,
    "T": 1e12,
    "P": 1e15,
    "E": 1e18,
    "Ki": 2**10,
    "Mi": 2**20,
    "Gi": 2**30,
    "Ti": 2**40,
    "Pi": 2**50,
    "Ei": 2**60,
}


def parse_quantity(value: Any) -> float | None:
    """
    Kubernetes resource quantity -> float ("500m" -> 0.5, "1Gi" -> 1073741824).
    Returns None for anything unparseable.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    m = _QUANTITY_RE.match(value.strip())
    if not m or m.group(2) not in _QUANTITY_SUFFIXES:
        return None
    return float(m.group(1)) * _QUANTITY_SUFFIXES[m.group(2)]


def _extract_conditions(obj: dict[str, Any]) -> dict[str, str]:
    conditions = {}
    for c in obj.get("status", {}).get("conditions", []) or []:
        cond_type = c.get("type")
        status = c.get("status")
        if cond_type and status:
            conditions[cond_type] = status
    return conditions


def _condition(obj: dict[str, Any], cond_type: str) -> dict[str, Any] | None:
    for c in obj.get("status", {}).get("conditions", []) or []:
        if c.get("type") == cond_type:
            return c
    return None


def _is_true(status: str | None) -> bool | None:
    if status is None:
        return None
    return status == "True"


def _event_facts(prefix: str, events: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Event messages and reasons collapsed into searchable strings, so
    rules can say `pod.events contains Insufficient`.
    """
    if not events:
        return {f"{prefix}.eventCount": 0, f"{prefix}.warningCount": 0}

    messages = [e.get("message", "") for e in events if e.get("message")]
    reasons = [e.get("reason", "") for e in events if e.get("reason")]
    warnings = [e for e in events if e.get("type") == "Warning"]

    return {
        f"{prefix}.events": " | ".join(dict.fromkeys(messages)),
        f"{prefix}.eventReasons": ",".join(dict.fromkeys(reasons)),
        f"{prefix}.eventCount": len(events),
        f"{prefix}.warningCount": len(warnings),
    }


def _matches_selector(labels: dict[str, str], selector: dict[str, str]) -> bool:
    return bool(selector) and all(labels.get(k) == v for k, v in selector.items())


# ----------------------------
# Per-kind extractors
# ----------------------------


def pod_facts(pod: dict[str, Any], events: list[dict[str, Any]]) -> dict[str, Any]:
    status = pod.get("status", {})
    spec = pod.get("spec", {})
    facts: dict[str, Any] = {
        "pod.phase": status.get("phase", "Unknown"),
        "pod.reason": status.get("reason"),
        "pod.nodeName": spec.get("nodeName"),
        "pod.qosClass": status.get("qosClass"),
    }

    ready = _condition(pod, "Ready")
    facts["pod.ready"] = _is_true(ready.get("status")) if ready else False
    scheduled = _condition(pod, "PodScheduled")
    if scheduled:
        facts["pod.scheduled"] = _is_true(scheduled.get("status"))
        facts["pod.scheduledReason"] = scheduled.get("reason")

    statuses = status.get("containerStatuses", []) or []
    init_statuses = status.get("initContainerStatuses", []) or []
    facts["pod.containerCount"] = len(spec.get("containers", []) or statuses)
    facts["pod.restartCount"] = max(
        (c.get("restartCount", 0) for c in statuses), default=0
    )

    for prefix, group in (("pod", statuses), ("pod.init", init_statuses)):
        for c in group:
            state = c.get("state", {})
            last = c.get("lastState", {})
            if "waiting" in state and f"{prefix}.waitingReason" not in facts:
                facts[f"{prefix}.waitingReason"] = state["waiting"].get("reason")
                facts[f"{prefix}.waitingMessage"] = state["waiting"].get("message")
            if "terminated" in state and f"{prefix}.terminatedReason" not in facts:
                facts[f"{prefix}.terminatedReason"] = state["terminated"].get("reason")
                facts[f"{prefix}.exitCode"] = state["terminated"].get("exitCode")
            if "terminated" in last and f"{prefix}.lastTerminatedReason" not in facts:
                facts[f"{prefix}.lastTerminatedReason"] = last["terminated"].get("reason")
                facts[f"{prefix}.lastExitCode"] = last["terminated"].get("exitCode")

    containers = spec.get("containers", []) or []
    facts["pod.missingResourceRequests"] = any(
        not (c.get("resources") or {}).get("requests") for c in containers
    )
    facts["pod.livenessProbe"] = any("livenessProbe" in c for c in containers)
    facts["pod.readinessProbe"] = any("readinessProbe" in c for c in containers)

    facts.update(_event_facts("pod", events))
    return facts


def deployment_facts(
    deploy: dict[str, Any], events: list[dict[str, Any]]
) -> dict[str, Any]:
    spec = deploy.get("spec", {})
    status = deploy.get("status", {})
    desired = spec.get("replicas", 1)
    available = status.get("availableReplicas", 0)

    facts: dict[str, Any] = {
        "deployment.replicas": desired,
        "deployment.readyReplicas": status.get("readyReplicas", 0),
        "deployment.availableReplicas": available,
        "deployment.updatedReplicas": status.get("updatedReplicas", 0),
        "deployment.unavailableReplicas": status.get(
            "unavailableReplicas", max(0, desired - available)
        ),
        "deployment.paused": bool(spec.get("paused", False)),
        "deployment.strategy": spec.get("strategy", {}).get("type", "RollingUpdate"),
    }

    progressing = _condition(deploy, "Progressing")
    if progressing:
        facts["deployment.progressing"] = _is_true(progressing.get("status"))
        facts["deployment.progressingReason"] = progressing.get("reason")
    available_cond = _condition(deploy, "Available")
    if available_cond:
        facts["deployment.available"] = _is_true(available_cond.get("status"))
    failure = _condition(deploy, "ReplicaFailure")
    if failure:
        facts["deployment.replicaFailure"] = _is_true(failure.get("status"))
        facts["deployment.replicaFailureMessage"] = failure.get("message")

    facts.update(_event_facts("deployment", events))
    return facts


def service_facts(
    svc: dict[str, Any],
    endpoints: dict[str, Any] | None,
    pods: list[dict[str, Any]],
    events: list[dict[str, Any]],
) -> dict[str, Any]:
    spec = svc.get("spec", {})
    selector = spec.get("selector") or {}

    facts: dict[str, Any] = {
        "service.type": spec.get("type", "ClusterIP"),
        "service.selectorCount": len(selector),
        "service.portCount": len(spec.get("ports", []) or []),
        "service.matchingPods": sum(
            1
            for p in pods
            if _matches_selector(p.get("metadata", {}).get("labels") or {}, selector)
        ),
    }
    if spec.get("type") == "LoadBalancer":
        ingress = svc.get("status", {}).get("loadBalancer", {}).get("ingress") or []
        facts["service.loadBalancerReady"] = bool(ingress)

    if endpoints is not None:
        ready = not_ready = 0
        for subset in endpoints.get("subsets", []) or []:
            ready += len(subset.get("addresses", []) or [])
            not_ready += len(subset.get("notReadyAddresses", []) or [])
        facts["service.endpoints"] = ready
        facts["service.notReadyEndpoints"] = not_ready

    # targetPort vs containerPort mismatch
    container_ports = {
        port.get("containerPort")
        for p in pods
        if _matches_selector(p.get("metadata", {}).get("labels") or {}, selector)
        for c in p.get("spec", {}).get("containers", []) or []
        for port in c.get("ports", []) or []
    }
    if container_ports:
        target_ports = [
            port.get("targetPort", port.get("port")) for port in spec.get("ports", []) or []
        ]
        facts["service.targetPortMismatch"] = any(
            isinstance(t, int) and t not in container_ports for t in target_ports
        )

    facts.update(_event_facts("service", events))
    return facts


def _ingress_backends(ing: dict[str, Any]) -> list[str]:
    spec = ing.get("spec", {})
    names = []

    default = spec.get("defaultBackend") or spec.get("backend") or {}
    if default.get("service", {}).get("name"):
        names.append(default["service"]["name"])
    elif default.get("serviceName"):
        names.append(default["serviceName"])

    for rule in spec.get("rules", []) or []:
        for path in (rule.get("http") or {}).get("paths", []) or []:
            backend = path.get("backend", {})
            name = backend.get("service", {}).get("name") or backend.get("serviceName")
            if name:
                names.append(name)
    return list(dict.fromkeys(names))


def ingress_facts(
    ing: dict[str, Any],
    existing_services: set[str],
    events: list[dict[str, Any]],
) -> dict[str, Any]:
    spec = ing.get("spec", {})
    backends = _ingress_backends(ing)
    missing = [b for b in backends if b not in existing_services]
    lb = ing.get("status", {}).get("loadBalancer", {}).get("ingress") or []
    annotations = ing.get("metadata", {}).get("annotations") or {}

    facts: dict[str, Any] = {
        "ingress.backendCount": len(backends),
        # unset without backends; nothing to resolve
        "ingress.backendExists": not missing if backends else None,
        "ingress.missingBackends": ",".join(missing),
        "ingress.ruleCount": len(spec.get("rules", []) or []),
        "ingress.tls": bool(spec.get("tls")),
        "ingress.addressAssigned": bool(lb),
        "ingress.className": spec.get("ingressClassName")
        or annotations.get("kubernetes.io/ingress.class"),
    }
    facts.update(_event_facts("ingress", events))
    return facts


def node_facts(node: dict[str, Any], events: list[dict[str, Any]]) -> dict[str, Any]:
    conditions = _extract_conditions(node)
    spec = node.get("spec", {})
    status = node.get("status", {})
    taints = spec.get("taints", []) or []

    facts: dict[str, Any] = {
        "node.ready": conditions.get("Ready") == "True",
        "node.readyStatus": conditions.get("Ready", "Unknown"),
        "node.memoryPressure": conditions.get("MemoryPressure") == "True",
        "node.diskPressure": conditions.get("DiskPressure") == "True",
        "node.pidPressure": conditions.get("PIDPressure") == "True",
        "node.networkUnavailable": conditions.get("NetworkUnavailable") == "True",
        "node.unschedulable": bool(spec.get("unschedulable", False)),
        "node.taint.count": len(taints),
        "node.taint.noExecute": any(t.get("effect") == "NoExecute" for t in taints),
        "node.taint.noSchedule": any(t.get("effect") == "NoSchedule" for t in taints),
        "node.kubeletVersion": status.get("nodeInfo", {}).get("kubeletVersion"),
    }
    for resource in ("cpu", "memory", "pods"):
        value = parse_quantity(status.get("allocatable", {}).get(resource))
        if value is not None:
            facts[f"node.allocatable.{resource}"] = value

    facts.update(_event_facts("node", events))
    return facts


def namespace_facts(
    ns: dict[str, Any],
    quotas: list[dict[str, Any]],
    events: list[dict[str, Any]],
) -> dict[str, Any]:
    spec = ns.get("spec", {})
    phase = ns.get("status", {}).get("phase", "Active")
    finalizers = spec.get("finalizers", []) or ns.get("metadata", {}).get("finalizers", [])

    facts: dict[str, Any] = {
        "namespace.phase": phase,
        "namespace.terminating": phase == "Terminating",
        "namespace.finalizerCount": len(finalizers or []),
        "namespace.quotaCount": len(quotas),
    }
    blocked = [
        c.get("message", "")
        for c in ns.get("status", {}).get("conditions", []) or []
        if c.get("status") == "True"
    ]
    if blocked:
        facts["namespace.conditionMessages"] = " | ".join(blocked)

    facts.update(_event_facts("namespace", events))
    return facts


def rbac_facts(
    binding: dict[str, Any],
    role_exists: bool,
    missing_service_accounts: list[str],
    events: list[dict[str, Any]],
) -> dict[str, Any]:
    role_ref = binding.get("roleRef", {})
    subjects = binding.get("subjects", []) or []
    facts: dict[str, Any] = {
        "rbac.bindingKind": binding.get("kind"),
        "rbac.roleRefKind": role_ref.get("kind"),
        "rbac.roleRefName": role_ref.get("name"),
        "rbac.roleExists": role_exists,
        "rbac.subjectCount": len(subjects),
        "rbac.serviceAccountMissing": bool(missing_service_accounts),
        "rbac.missingServiceAccounts": ",".join(missing_service_accounts),
    }
    facts.update(_event_facts("rbac", events))
    return facts


def storage_facts(
    pvc: dict[str, Any],
    storage_class: dict[str, Any] | None,
    storage_class_known: bool,
    events: list[dict[str, Any]],
) -> dict[str, Any]:
    spec = pvc.get("spec", {})
    status = pvc.get("status", {})
    requested = spec.get("resources", {}).get("requests", {}).get("storage")

    facts: dict[str, Any] = {
        "storage.phase": status.get("phase", "Pending"),
        "storage.bound": status.get("phase") == "Bound",
        "storage.storageClass": spec.get("storageClassName"),
        "storage.accessModes": ",".join(spec.get("accessModes", []) or []),
        "storage.volumeName": spec.get("volumeName"),
    }
    quantity = parse_quantity(requested)
    if quantity is not None:
        facts["storage.requestedBytes"] = quantity
    if spec.get("storageClassName") and storage_class_known:
        facts["storage.storageClassExists"] = storage_class is not None
    if storage_class is not None:
        facts["storage.provisioner"] = storage_class.get("provisioner")
        facts["storage.volumeBindingMode"] = storage_class.get(
            "volumeBindingMode", "Immediate"
        )

    facts.update(_event_facts("storage", events))
    return facts


def networking_facts(
    policy: dict[str, Any], selected_pods: int, events: list[dict[str, Any]]
) -> dict[str, Any]:
    spec = policy.get("spec", {})
    policy_types = spec.get("policyTypes") or ["Ingress"]
    ingress = spec.get("ingress") or []
    egress = spec.get("egress") or []
    selector = spec.get("podSelector") or {}

    facts: dict[str, Any] = {
        "networking.policyTypes": ",".join(policy_types),
        "networking.ingressRuleCount": len(ingress),
        "networking.egressRuleCount": len(egress),
        "networking.selectsAllPods": not selector.get("matchLabels")
        and not selector.get("matchExpressions"),
        "networking.denyAllIngress": "Ingress" in policy_types and not ingress,
        "networking.denyAllEgress": "Egress" in policy_types and not egress,
        "networking.selectedPods": selected_pods,
    }
    # Egress restricted without a rule for port 53 breaks DNS
    if "Egress" in policy_types:
        facts["networking.allowsDNS"] = any(
            not rule.get("ports")
            or any(p.get("port") in (53, "53", "dns") for p in rule.get("ports", []))
            for rule in egress
        )

    facts.update(_event_facts("networking", events))
    return facts


def configmap_facts(
    obj: dict[str, Any], referencing_pods: int, events: list[dict[str, Any]]
) -> dict[str, Any]:
    data = obj.get("data") or {}
    binary = obj.get("binaryData") or {}
    facts: dict[str, Any] = {
        "configmap.objectKind": obj.get("kind", "ConfigMap"),
        "configmap.keyCount": len(data) + len(binary),
        "configmap.empty": not data and not binary,
        "configmap.immutable": bool(obj.get("immutable", False)),
        "configmap.sizeBytes": sum(len(str(v)) for v in data.values())
        + sum(len(str(v)) for v in binary.values()),
        "configmap.referencingPods": referencing_pods,
    }
    if obj.get("kind") == "Secret":
        facts["configmap.secretType"] = obj.get("type", "Opaque")

    facts.update(_event_facts("configmap", events))
    return facts


def resourcequota_facts(
    quota: dict[str, Any], events: list[dict[str, Any]]
) -> dict[str, Any]:
    status = quota.get("status", {})
    hard = status.get("hard") or quota.get("spec", {}).get("hard") or {}
    used = status.get("used") or {}

    facts: dict[str, Any] = {"resourcequota.resourceCount": len(hard)}
    exhausted = []
    max_ratio = 0.0
    for resource in sorted(hard):
        hard_value = parse_quantity(hard[resource])
        used_value = parse_quantity(used.get(resource, 0))
        if hard_value is None or used_value is None:
            continue
        facts[f"resourcequota.{resource}.hard"] = hard_value
        facts[f"resourcequota.{resource}.used"] = used_value
        if hard_value > 0:
            max_ratio = max(max_ratio, used_value / hard_value)
        if used_value >= hard_value:
            exhausted.append(resource)

    facts["resourcequota.exhausted"] = bool(exhausted)
    facts["resourcequota.exhaustedResources"] = ",".join(exhausted)
    facts["resourcequota.maxUsageRatio"] = round(max_ratio, 4)

    facts.update(_event_facts("resourcequota", events))
    return facts


# ----------------------------
# Snapshot-backed dispatch
# ----------------------------


def _references(pod: dict[str, Any], kind: str, name: str) -> bool:
    spec = pod.get("spec", {})
    key = "configMap" if kind == "ConfigMap" else "secret"
    ref_key = "configMapRef" if kind == "ConfigMap" else "secretRef"
    key_ref = "configMapKeyRef" if kind == "ConfigMap" else "secretKeyRef"
    name_field = "name" if kind == "ConfigMap" else "secretName"

    for v in spec.get("volumes", []) or []:
        if (v.get(key) or {}).get(name_field) == name:
            return True
    for c in (spec.get("containers", []) or []) + (spec.get("initContainers", []) or []):
        for source in c.get("envFrom", []) or []:
            if (source.get(ref_key) or {}).get("name") == name:
                return True
        for env in c.get("env", []) or []:
            if ((env.get("valueFrom") or {}).get(key_ref) or {}).get("name") == name:
                return True
    return False


def _from_pod(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, pod = snapshot.find(["pods"], identifier)
    return pod_facts(pod, snapshot.events_for(pod))


def _from_deployment(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, deploy = snapshot.find(["deployments"], identifier)
    return deployment_facts(deploy, snapshot.events_for(deploy))


def _from_service(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, svc = snapshot.find(["services"], identifier)
    meta = svc.get("metadata", {})
    namespace, name = meta.get("namespace"), meta.get("name")
    endpoints = (
        snapshot.get("endpoints", name, namespace)
        if snapshot.exists("endpoints", name, namespace)
        else None
    )
    pods = snapshot.objects("pods", namespace)
    return service_facts(svc, endpoints, pods, snapshot.events_for(svc))


def _from_ingress(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, ing = snapshot.find(["ingresses"], identifier)
    namespace = ing.get("metadata", {}).get("namespace")
    services = {
        ident.rpartition("/")[2] for ident in snapshot.identifiers("services", namespace)
    }
    return ingress_facts(ing, services, snapshot.events_for(ing))


def _from_node(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, node = snapshot.find(["nodes"], identifier)
    return node_facts(node, snapshot.events_for(node))


def _from_namespace(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, ns = snapshot.find(["namespaces"], identifier)
    name = ns.get("metadata", {}).get("name", identifier)
    quotas = snapshot.objects("resourcequotas", name)
    return namespace_facts(ns, quotas, snapshot.events(name))


def _from_rbac(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, binding = snapshot.find(["rolebindings", "clusterrolebindings"], identifier)
    namespace = binding.get("metadata", {}).get("namespace")
    role_ref = binding.get("roleRef", {})

    if role_ref.get("kind") == "ClusterRole":
        role_exists = snapshot.exists("clusterroles", role_ref.get("name", ""))
    else:
        role_exists = snapshot.exists("roles", role_ref.get("name", ""), namespace)

    missing = []
    for s in binding.get("subjects", []) or []:
        if s.get("kind") != "ServiceAccount":
            continue
        sa_ns = s.get("namespace") or namespace
        if not snapshot.exists("serviceaccounts", s.get("name", ""), sa_ns):
            missing.append(f"{sa_ns}/{s.get('name')}" if sa_ns else s.get("name"))

    return rbac_facts(binding, role_exists, missing, snapshot.events_for(binding))


def _from_storage(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, pvc = snapshot.find(["persistentvolumeclaims"], identifier)
    sc_name = pvc.get("spec", {}).get("storageClassName")
    known = bool(snapshot.identifiers("storageclasses"))
    storage_class = (
        snapshot.get("storageclasses", sc_name)
        if sc_name and snapshot.exists("storageclasses", sc_name)
        else None
    )
    return storage_facts(pvc, storage_class, known, snapshot.events_for(pvc))


def _from_networking(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, policy = snapshot.find(["networkpolicies"], identifier)
    namespace = policy.get("metadata", {}).get("namespace")
    match_labels = policy.get("spec", {}).get("podSelector", {}).get("matchLabels") or {}
    pods = snapshot.objects("pods", namespace)
    if match_labels:
        selected = sum(
            1
            for p in pods
            if _matches_selector(p.get("metadata", {}).get("labels") or {}, match_labels)
        )
    else:
        selected = len(pods)
    return networking_facts(policy, selected, snapshot.events_for(policy))


def _from_configmap(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    plural, obj = snapshot.find(["configmaps", "secrets"], identifier)
    obj.setdefault("kind", "ConfigMap" if plural == "configmaps" else "Secret")
    meta = obj.get("metadata", {})
    pods = snapshot.objects("pods", meta.get("namespace"))
    referencing = sum(1 for p in pods if _references(p, obj["kind"], meta.get("name")))
    return configmap_facts(obj, referencing, snapshot.events_for(obj))


def _from_resourcequota(snapshot: ClusterSnapshot, identifier: str) -> dict[str, Any]:
    _, quota = snapshot.find(["resourcequotas"], identifier)
    return resourcequota_facts(quota, snapshot.events_for(quota))


EXTRACTORS: dict[ResourceKind, Callable[[ClusterSnapshot, str], dict[str, Any]]] = {
    ResourceKind.POD: _from_pod,
    ResourceKind.DEPLOYMENT: _from_deployment,
    ResourceKind.SERVICE: _from_service,
    ResourceKind.INGRESS: _from_ingress,
    ResourceKind.NODE: _from_node,
    ResourceKind.NAMESPACE: _from_namespace,
    ResourceKind.RBAC: _from_rbac,
    ResourceKind.STORAGE: _from_storage,
    ResourceKind.NETWORKING: _from_networking,
    ResourceKind.CONFIGMAP: _from_configmap,
    ResourceKind.RESOURCEQUOTA: _from_resourcequota,
}

# Directories scanned when sweeping every object of a kind
SWEEP_PLURALS: dict[ResourceKind, list[str]] = {
    ResourceKind.RBAC: ["rolebindings", "clusterrolebindings"],
    ResourceKind.CONFIGMAP: ["configmaps", "secrets"],
}


def extract_facts(
    snapshot: ClusterSnapshot, kind: ResourceKind, identifier: str
) -> dict[str, Any]:
    return EXTRACTORS[kind](snapshot, identifier)
