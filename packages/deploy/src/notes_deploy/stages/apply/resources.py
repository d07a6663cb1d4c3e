from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping

import yaml

from notes_deploy.core import sha256_json

# Lower rank applies first: namespaces, then the config/storage/identity objects
# workloads mount or run as, then workloads, then what routes to them.
KIND_RANK: dict[str, int] = {
    "Namespace": 0,
    "CustomResourceDefinition": 0,
    "ServiceAccount": 1,
    "ClusterRole": 1,
    "Role": 1,
    "ConfigMap": 1,
    "Secret": 1,
    "PersistentVolume": 1,
    "PersistentVolumeClaim": 1,
    "ClusterRoleBinding": 2,
    "RoleBinding": 2,
    "Deployment": 3,
    "StatefulSet": 3,
    "DaemonSet": 3,
    "Job": 3,
    "Service": 4,
    "Ingress": 5,
}
DEFAULT_RANK = 4

CLUSTER_SCOPED_KINDS = frozenset(
    {
        "Namespace",
        "ClusterRole",
        "ClusterRoleBinding",
        "PersistentVolume",
        "CustomResourceDefinition",
    }
)

HASH_ANNOTATION = "notes-deploy/content-sha256"


@dataclass(frozen=True, slots=True, eq=False)
class ResourceSpec:
    """
    One declarative document (apiVersion/kind/metadata/...). Treated as read-only;
    the `with_*` helpers return modified copies.
    """

    document: Mapping[str, Any]

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> "ResourceSpec":
        return cls(document=copy.deepcopy(dict(doc)))

    @property
    def api_version(self) -> str | None:
        v = self.document.get("apiVersion")
        return str(v) if v else None

    @property
    def kind(self) -> str:
        return str(self.document.get("kind") or "")

    @property
    def metadata(self) -> Mapping[str, Any]:
        md = self.document.get("metadata")
        return md if isinstance(md, Mapping) else {}

    @property
    def name(self) -> str:
        return str(self.metadata.get("name") or "")

    @property
    def namespace(self) -> str | None:
        ns = self.metadata.get("namespace")
        return str(ns) if ns else None

    @property
    def namespaced(self) -> bool:
        return self.kind not in CLUSTER_SCOPED_KINDS

    @property
    def rank(self) -> int:
        return KIND_RANK.get(self.kind, DEFAULT_RANK)

    @property
    def key(self) -> str:
        if self.namespaced:
            return f"{self.kind}/{self.namespace or '-'}/{self.name}"
        return f"{self.kind}/{self.name}"

    def annotations(self) -> Mapping[str, str]:
        ann = self.metadata.get("annotations")
        return ann if isinstance(ann, Mapping) else {}

    def problems(self) -> list[str]:
        out: list[str] = []
        if not self.api_version:
            out.append("missing apiVersion")
        if not self.kind:
            out.append("missing kind")
        if not isinstance(self.document.get("metadata"), Mapping):
            out.append("missing metadata")
        elif not self.name:
            out.append("missing metadata.name")
        if not self.namespaced and self.namespace:
            out.append(f"{self.kind} is cluster-scoped but sets metadata.namespace")
        return out

    def _with_metadata(self, **updates: Any) -> "ResourceSpec":
        doc = copy.deepcopy(dict(self.document))
        md = dict(doc.get("metadata") or {})
        md.update(updates)
        doc["metadata"] = md
        return ResourceSpec(document=doc)

    def with_namespace(self, namespace: str) -> "ResourceSpec":
        return self._with_metadata(namespace=namespace)

    def with_annotation(self, key: str, value: str) -> "ResourceSpec":
        ann = dict(self.annotations())
        ann[key] = value
        return self._with_metadata(annotations=ann)

    def content_hash(self) -> str:
        """Digest of the document, ignoring our own hash annotation."""
        doc = copy.deepcopy(dict(self.document))
        md = dict(doc.get("metadata") or {})
        ann = dict(md.get("annotations") or {})
        ann.pop(HASH_ANNOTATION, None)
        if ann:
            md["annotations"] = ann
        else:
            md.pop("annotations", None)
        doc["metadata"] = md
        return sha256_json(doc)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.document))


@dataclass(frozen=True, slots=True)
class ClusterResourceSet:
    """
    Resources in dependency order. Construct through `ordered` so namespaces
    always precede the objects that live in them; ties keep input order.
    """

    name: str
    resources: tuple[ResourceSpec, ...]

    @classmethod
    def ordered(
        cls, name: str, resources: Iterable[ResourceSpec | Mapping[str, Any]]
    ) -> "ClusterResourceSet":
        specs = [
            r if isinstance(r, ResourceSpec) else ResourceSpec.from_dict(r)
            for r in resources
        ]
        return cls(name=name, resources=tuple(sorted(specs, key=lambda s: s.rank)))

    def to_yaml(self) -> str:
        return yaml.safe_dump_all(
            [r.to_dict() for r in self.resources], sort_keys=False, explicit_start=True
        )

    def keys(self) -> list[str]:
        return [r.key for r in self.resources]

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)
