from __future__ import annotations

from pathlib import Path
from typing import Any

from notes_deploy.core import atomic_write_json

from .types import PipelineRun, RunStatus, StageStatus


def summarize_run(run: PipelineRun) -> str:
    """One-line human summary: which stage failed, with which error kind."""
    total = len(run.stages)
    done = sum(1 for s in run.stages if s.status == StageStatus.SUCCEEDED)
    head = f"build {run.build_number} {run.status.value if run.status else 'running'}"

    if run.status == RunStatus.SUCCESS:
        line = f"{head}: {done}/{total} stages succeeded"
        warned = [s.name for s in run.stages if s.warnings]
        if warned:
            line += f" (warnings in: {', '.join(warned)})"
        return line

    failed = run.failed_stage
    if failed is None or failed.error is None:
        return f"{head}: {done}/{total} stages succeeded"

    line = (
        f"{head} at stage {failed.name!r} "
        f"({failed.error.exc_type}): {failed.error.message}"
    )
    if run.diagnostics is not None:
        line += (
            "; diagnostics collected"
            if run.diagnostics.get("available")
            else "; diagnostics unavailable"
        )
    return line


def build_run_report(run: PipelineRun, *, events_jsonl: str | None) -> dict[str, Any]:
    d = run.to_dict()
    d["events_jsonl"] = events_jsonl
    return d


def write_run_report(path: Path, report: dict[str, Any]) -> None:
    atomic_write_json(Path(path), report)
