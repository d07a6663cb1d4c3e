from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from .cluster import ApplyAction, ClusterClient, ClusterError
from .resources import HASH_ANNOTATION, ClusterResourceSet, ResourceSpec

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ResourceOutcome:
    key: str
    action: ApplyAction
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.action is not ApplyAction.FAILED

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"key": self.key, "action": self.action.value}
        if self.error:
            out["error"] = self.error
        return out


@dataclass(slots=True)
class ApplyResult:
    resource_set: str
    namespace: str
    outcomes: list[ResourceOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [o.key for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[str]:
        return [o.key for o in self.outcomes if not o.ok]

    @property
    def changed(self) -> list[str]:
        return [
            o.key
            for o in self.outcomes
            if o.action in (ApplyAction.CREATED, ApplyAction.CONFIGURED)
        ]

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_set": self.resource_set,
            "namespace": self.namespace,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "changed": self.changed,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


OutcomeCallback = Callable[[ResourceOutcome], None]


class ClusterStateApplier:
    """
    Converges the cluster towards a resource set, in dependency order.

    Every applied object carries a content hash annotation; an object whose live
    hash matches is left untouched, so re-applying the same set is a no-op.
    Failures are recorded per resource and applying continues, except that
    objects inside a namespace that failed to apply are marked failed without
    being attempted. Nothing already applied is rolled back.
    """

    def __init__(self, cluster: ClusterClient) -> None:
        self.cluster = cluster

    def apply(
        self,
        resource_set: ClusterResourceSet,
        target_namespace: str,
        *,
        on_outcome: OutcomeCallback | None = None,
    ) -> ApplyResult:
        result = ApplyResult(resource_set=resource_set.name, namespace=target_namespace)
        failed_namespaces: set[str] = set()

        for spec in resource_set:
            if spec.namespaced and spec.namespace is None:
                spec = spec.with_namespace(target_namespace)
            outcome = self._apply_one(spec, failed_namespaces)
            if not outcome.ok and spec.kind == "Namespace":
                failed_namespaces.add(spec.name)
            result.outcomes.append(outcome)
            if on_outcome is not None:
                on_outcome(outcome)

        log.info(
            "apply.finish",
            resource_set=resource_set.name,
            namespace=target_namespace,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            changed=len(result.changed),
        )
        return result

    def _apply_one(
        self, spec: ResourceSpec, failed_namespaces: set[str]
    ) -> ResourceOutcome:
        problems = spec.problems()
        if problems:
            return ResourceOutcome(
                spec.key, ApplyAction.FAILED, "malformed: " + "; ".join(problems)
            )
        if spec.namespaced and spec.namespace in failed_namespaces:
            return ResourceOutcome(
                spec.key,
                ApplyAction.FAILED,
                f"namespace {spec.namespace!r} was not applied",
            )

        digest = spec.content_hash()
        try:
            live = self.cluster.get(spec.kind, spec.name, spec.namespace)
            if live is not None:
                live_ann = (live.get("metadata") or {}).get("annotations") or {}
                if live_ann.get(HASH_ANNOTATION) == digest:
                    return ResourceOutcome(spec.key, ApplyAction.UNCHANGED)
            action = self.cluster.apply(
                spec.with_annotation(HASH_ANNOTATION, digest).document
            )
        except ClusterError as e:
            log.warning("apply.resource_failed", key=spec.key, error=str(e))
            return ResourceOutcome(spec.key, ApplyAction.FAILED, str(e))

        log.debug("apply.resource", key=spec.key, action=action.value)
        return ResourceOutcome(spec.key, action)
