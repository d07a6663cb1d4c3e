from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from notes_deploy.core import ApplyFailure, PipelineConfig
from notes_deploy.pipeline.context import RunContext
from notes_deploy.pipeline.events import EventType

from .applier import ClusterStateApplier, ResourceOutcome
from .resources import ClusterResourceSet

ResourceFactory = Callable[[PipelineConfig], ClusterResourceSet]
NamespaceOf = Callable[[PipelineConfig], str]


@dataclass(slots=True)
class ApplyStage:
    """Applies one resource set; used for both `apply-monitoring` and `apply-app`."""

    applier: ClusterStateApplier
    resources: ResourceFactory
    namespace_of: NamespaceOf
    stage_id: str

    def run(self, ctx: RunContext) -> dict[str, Any]:
        resource_set = self.resources(ctx.config)
        namespace = self.namespace_of(ctx.config)
        ctx.emit(
            EventType.APPLY_PLAN,
            stage=self.stage_id,
            resource_set=resource_set.name,
            namespace=namespace,
            resources=resource_set.keys(),
        )

        def _on_outcome(outcome: ResourceOutcome) -> None:
            ctx.emit(EventType.APPLY_RESOURCE, stage=self.stage_id, **outcome.to_dict())
            ctx.cancel.raise_if_cancelled()

        result = self.applier.apply(resource_set, namespace, on_outcome=_on_outcome)
        ctx.emit(EventType.APPLY_FINISH, stage=self.stage_id, **result.to_dict())

        if not result.ok:
            raise ApplyFailure(
                f"{len(result.failed)} of {len(result.outcomes)} resource(s) in "
                f"{resource_set.name!r} failed to apply: {', '.join(result.failed)}",
                result=result,
            )

        return {
            "resource_set": resource_set.name,
            "namespace": namespace,
            "succeeded": result.succeeded,
            "changed": result.changed,
            "_metrics": {
                "resources": len(result.outcomes),
                "changed": len(result.changed),
            },
        }


def monitoring_namespace(cfg: PipelineConfig) -> str:
    return cfg.monitoring_namespace


def app_namespace(cfg: PipelineConfig) -> str:
    return cfg.namespace
