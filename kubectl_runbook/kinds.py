from enum import Enum

from kubectl_runbook.errors import UnknownKindError


class ResourceKind(str, Enum):
    """
    Closed set of resource kinds that carry a runbook.
    """

    POD = "Pod"
    DEPLOYMENT = "Deployment"
    SERVICE = "Service"
    INGRESS = "Ingress"
    NODE = "Node"
    NAMESPACE = "Namespace"
    RBAC = "RBAC"
    STORAGE = "Storage"
    NETWORKING = "Networking"
    CONFIGMAP = "ConfigMap"
    RESOURCEQUOTA = "ResourceQuota"

    def __str__(self) -> str:
        return self.value

    @property
    def plural(self) -> str:
        return _PLURALS[self]


_PLURALS = {
    ResourceKind.POD: "pods",
    ResourceKind.DEPLOYMENT: "deployments",
    ResourceKind.SERVICE: "services",
    ResourceKind.INGRESS: "ingresses",
    ResourceKind.NODE: "nodes",
    ResourceKind.NAMESPACE: "namespaces",
    ResourceKind.RBAC: "rbac",
    ResourceKind.STORAGE: "persistentvolumeclaims",
    ResourceKind.NETWORKING: "networkpolicies",
    ResourceKind.CONFIGMAP: "configmaps",
    ResourceKind.RESOURCEQUOTA: "resourcequotas",
}

# kubectl short names and the object kinds each runbook covers
_ALIASES = {
    "po": ResourceKind.POD,
    "deploy": ResourceKind.DEPLOYMENT,
    "svc": ResourceKind.SERVICE,
    "ing": ResourceKind.INGRESS,
    "no": ResourceKind.NODE,
    "ns": ResourceKind.NAMESPACE,
    "role": ResourceKind.RBAC,
    "roles": ResourceKind.RBAC,
    "rolebinding": ResourceKind.RBAC,
    "rolebindings": ResourceKind.RBAC,
    "clusterrole": ResourceKind.RBAC,
    "clusterroles": ResourceKind.RBAC,
    "serviceaccount": ResourceKind.RBAC,
    "sa": ResourceKind.RBAC,
    "pvc": ResourceKind.STORAGE,
    "pv": ResourceKind.STORAGE,
    "persistentvolumeclaim": ResourceKind.STORAGE,
    "persistentvolume": ResourceKind.STORAGE,
    "storageclass": ResourceKind.STORAGE,
    "sc": ResourceKind.STORAGE,
    "networkpolicy": ResourceKind.NETWORKING,
    "netpol": ResourceKind.NETWORKING,
    "network": ResourceKind.NETWORKING,
    "cm": ResourceKind.CONFIGMAP,
    "secret": ResourceKind.CONFIGMAP,
    "secrets": ResourceKind.CONFIGMAP,
    "quota": ResourceKind.RESOURCEQUOTA,
}


def _build_lookup() -> dict[str, ResourceKind]:
    lookup: dict[str, ResourceKind] = {}
    for kind in ResourceKind:
        lookup[kind.value.lower()] = kind
        lookup[kind.plural] = kind
    lookup.update(_ALIASES)
    return lookup


_LOOKUP = _build_lookup()


def parse_kind(value) -> ResourceKind:
    """
    Resolve a kind name, plural or kubectl short name to a ResourceKind.
    Raises UnknownKindError for anything outside the closed set.
    """
    if isinstance(value, ResourceKind):
        return value
    if not isinstance(value, str) or not value.strip():
        raise UnknownKindError(value)

    kind = _LOOKUP.get(value.strip().lower())
    if kind is None:
        raise UnknownKindError(value)
    return kind
