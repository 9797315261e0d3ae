import os
from typing import Any

from kubectl_runbook.model import load_json


def split_identifier(identifier: str) -> tuple[str | None, str]:
    """
    "default/web-0" -> ("default", "web-0"); "node-1" -> (None, "node-1")
    """
    namespace, sep, name = identifier.rpartition("/")
    if not sep:
        return None, identifier
    return namespace or None, name


def normalize_list(data: Any) -> list[dict[str, Any]]:
    if data is None:
        return []
    if isinstance(data, list):
        return data
    if (data.get("kind") or "").endswith("List"):
        return data.get("items", [])
    return [data]


class ClusterSnapshot:
    """
    Read-only view over saved `kubectl get -o json` dumps.

    Layout:
      <root>/<plural>/<namespace>/<name>.json   namespaced objects
      <root>/<plural>/<name>.json               cluster-scoped objects
      <root>/events/<namespace>.json            Event list per namespace
      <root>/events/cluster.json                Events of cluster-scoped objects
    """

    def __init__(self, root: str):
        self.root = root

    def _object_path(self, plural: str, name: str, namespace: str | None) -> str:
        if namespace:
            return os.path.join(self.root, plural, namespace, f"{name}.json")
        return os.path.join(self.root, plural, f"{name}.json")

    def exists(self, plural: str, name: str, namespace: str | None = None) -> bool:
        return os.path.isfile(self._object_path(plural, name, namespace))

    def get(self, plural: str, name: str, namespace: str | None = None) -> dict[str, Any]:
        """
        Raises OSError if the object was not captured, ValueError if
        the dump is not valid JSON.
        """
        return load_json(self._object_path(plural, name, namespace))

    def find(self, plurals: list[str], identifier: str) -> tuple[str, dict[str, Any]]:
        """
        Return (plural, object) for the first plural that holds `identifier`.
        """
        namespace, name = split_identifier(identifier)
        for plural in plurals:
            if self.exists(plural, name, namespace):
                return plural, self.get(plural, name, namespace)
        raise FileNotFoundError(
            f"No {'/'.join(plurals)} object '{identifier}' in snapshot {self.root}"
        )

    def identifiers(self, plural: str, namespace: str | None = None) -> list[str]:
        """
        Identifiers of every captured object of one plural kind,
        sorted so sweeps are reproducible.
        """
        base = os.path.join(self.root, plural)
        if not os.path.isdir(base):
            return []

        identifiers = []
        for entry in sorted(os.listdir(base)):
            path = os.path.join(base, entry)
            if os.path.isdir(path):
                if namespace and entry != namespace:
                    continue
                for f in sorted(os.listdir(path)):
                    if f.endswith(".json"):
                        identifiers.append(f"{entry}/{f[:-5]}")
            elif entry.endswith(".json") and not namespace:
                identifiers.append(entry[:-5])
        return identifiers

    def objects(self, plural: str, namespace: str | None = None) -> list[dict[str, Any]]:
        result = []
        for identifier in self.identifiers(plural, namespace):
            ns, name = split_identifier(identifier)
            result.append(self.get(plural, name, ns))
        return result

    def events(self, namespace: str | None = None) -> list[dict[str, Any]]:
        path = os.path.join(self.root, "events", f"{namespace or 'cluster'}.json")
        if not os.path.isfile(path):
            return []
        return normalize_list(load_json(path))

    def events_for(self, obj: dict[str, Any]) -> list[dict[str, Any]]:
        meta = obj.get("metadata", {})
        name = meta.get("name")
        kind = obj.get("kind")
        result = []
        for e in self.events(meta.get("namespace")):
            involved = e.get("involvedObject") or e.get("regarding") or {}
            if involved.get("name") != name:
                continue
            if kind and involved.get("kind") and involved["kind"] != kind:
                continue
            result.append(e)
        return result
