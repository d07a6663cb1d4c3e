from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import structlog

from notes_deploy.core import (
    DiagnosticsUnavailable,
    atomic_write_json,
    utc_now_iso,
)
from notes_deploy.pipeline.context import RunContext
from notes_deploy.pipeline.events import EventType
from notes_deploy.pipeline.types import PipelineRun
from notes_deploy.stages.apply.cluster import ClusterClient

log = structlog.get_logger(__name__)

DIAGNOSTICS_FILE = "diagnostics.json"


@dataclass(slots=True)
class DiagnosticsBundle:
    collected_at_utc: str
    namespace: str
    deployment: str
    sections: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    path: str | None = None

    @property
    def available(self) -> bool:
        return bool(self.sections)

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "collected_at_utc": self.collected_at_utc,
            "namespace": self.namespace,
            "deployment": self.deployment,
            "sections": dict(self.sections),
            "errors": dict(self.errors),
            "path": self.path,
        }


def _fetch(name: str, fetch: Callable[[], str]) -> str:
    try:
        return fetch()
    except Exception as e:
        raise DiagnosticsUnavailable(f"{name}: {type(e).__name__}: {e}") from e


class DiagnosticsCollector:
    """
    Best-effort snapshot of cluster state after a failure. Each section is
    gathered independently; a failing section is recorded in `errors` and
    never raised.
    """

    def __init__(self, cluster: ClusterClient) -> None:
        self.cluster = cluster

    def _sections(
        self, namespace: str, deployment: str, log_lines: int
    ) -> dict[str, Callable[[], str]]:
        return {
            "pods": lambda: self.cluster.pods(namespace, f"app={deployment}"),
            "deployment": lambda: self.cluster.describe(
                "deployment", deployment, namespace
            ),
            "events": lambda: self.cluster.events(namespace),
            "logs": lambda: self.cluster.logs(namespace, deployment, tail=log_lines),
        }

    def collect(self, ctx: RunContext) -> DiagnosticsBundle:
        cfg = ctx.config
        bundle = DiagnosticsBundle(
            collected_at_utc=utc_now_iso(),
            namespace=cfg.namespace,
            deployment=cfg.deployment_name,
        )
        sections = self._sections(
            cfg.namespace, cfg.deployment_name, cfg.diagnostics_log_lines
        )
        for name, fetch in sections.items():
            try:
                bundle.sections[name] = _fetch(name, fetch)
            except DiagnosticsUnavailable as e:
                bundle.errors[name] = str(e)
                log.warning("diagnostics.section_failed", section=name, error=str(e))

        path = Path(ctx.run_root) / DIAGNOSTICS_FILE
        try:
            atomic_write_json(path, bundle.to_dict())
            bundle.path = str(path)
        except OSError as e:
            bundle.errors["write"] = f"{type(e).__name__}: {e}"
            log.warning("diagnostics.write_failed", path=str(path), error=str(e))

        log.info(
            "diagnostics.collected",
            available=bundle.available,
            sections=sorted(bundle.sections),
            errors=sorted(bundle.errors),
        )
        return bundle


def collect_diagnostics(
    collector: DiagnosticsCollector,
) -> Callable[[RunContext, PipelineRun], None]:
    """Post-action that attaches a diagnostics bundle to the run."""

    def collect_diagnostics(ctx: RunContext, run: PipelineRun) -> None:
        bundle = collector.collect(ctx)
        run.diagnostics = bundle.to_dict()
        ctx.emit(
            EventType.DIAGNOSTICS_COLLECTED,
            available=bundle.available,
            sections=sorted(bundle.sections),
            errors=bundle.errors,
            path=bundle.path,
        )

    return collect_diagnostics
