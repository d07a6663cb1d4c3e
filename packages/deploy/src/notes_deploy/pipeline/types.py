from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional, Sequence

from notes_deploy.core import InternalError, StageError


class StageStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"


_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.PENDING: frozenset({StageStatus.RUNNING, StageStatus.SKIPPED}),
    StageStatus.RUNNING: frozenset({StageStatus.SUCCEEDED, StageStatus.FAILED}),
}

TERMINAL_STAGE_STATUSES = frozenset(
    {StageStatus.SUCCEEDED, StageStatus.FAILED, StageStatus.SKIPPED}
)


class _Sealable:
    """Refuses attribute writes once `_sealed` is set."""

    __slots__ = ()

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_sealed", False):
            raise InternalError(
                f"{type(self).__name__} is terminal; refusing to set {name!r}"
            )
        object.__setattr__(self, name, value)


@dataclass(frozen=True, slots=True)
class Event:
    """
    Structured event emitted by the pipeline.
    """

    type: str
    ts_utc: str
    run_id: str
    stage: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class StageRecord(_Sealable):
    name: str
    status: StageStatus = StageStatus.PENDING
    started_at_utc: Optional[str] = None
    finished_at_utc: Optional[str] = None
    duration_ms: Optional[int] = None

    outputs: dict[str, Any] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    error: Optional[StageError] = None
    _sealed: bool = field(default=False, repr=False, compare=False)

    def advance(self, to: StageStatus) -> None:
        """pending -> running -> succeeded|failed, or pending -> skipped."""
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if to not in allowed:
            raise InternalError(
                f"Illegal stage transition for {self.name!r}: {self.status} -> {to}"
            )
        self.status = to

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STAGE_STATUSES

    def seal(self) -> None:
        self._sealed = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "outputs": self.outputs,
            "metrics": self.metrics,
            "warnings": list(self.warnings),
            "error": (
                None
                if self.error is None
                else {
                    "exc_type": self.error.exc_type,
                    "message": self.error.message,
                    "details": self.error.details,
                }
            ),
        }


@dataclass(slots=True)
class PostActionRecord:
    name: str
    hook: str  # "always" | "on_success" | "on_failure"
    ok: bool
    error: Optional[str] = None


@dataclass(slots=True)
class PipelineRun(_Sealable):
    """
    One execution of the pipeline. Mutated only by the driver; sealed once terminal.
    """

    run_id: str
    build_number: int
    stages: Sequence[StageRecord]
    started_at_utc: str
    status: Optional[RunStatus] = None
    summary: str = ""
    finished_at_utc: Optional[str] = None
    duration_ms: Optional[int] = None
    report_path: Optional[str] = None
    diagnostics: Optional[dict[str, Any]] = None
    post_actions: list[PostActionRecord] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)
    _sealed: bool = field(default=False, repr=False, compare=False)

    def stage(self, name: str) -> StageRecord:
        for rec in self.stages:
            if rec.name == name:
                return rec
        raise KeyError(name)

    @property
    def terminal(self) -> bool:
        return self.status is not None

    @property
    def failed_stage(self) -> StageRecord | None:
        for rec in self.stages:
            if rec.status == StageStatus.FAILED:
                return rec
        return None

    def finalize(
        self, *, status: RunStatus, finished_at_utc: str, duration_ms: int
    ) -> None:
        if self.terminal:
            raise InternalError(f"Run {self.run_id} already terminal ({self.status})")
        self.status = status
        self.finished_at_utc = finished_at_utc
        self.duration_ms = duration_ms
        self.stages = tuple(self.stages)

    def seal(self) -> None:
        for rec in self.stages:
            rec.seal()
        self._sealed = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "build_number": self.build_number,
            "status": self.status.value if self.status else None,
            "summary": self.summary,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "stages": [s.to_dict() for s in self.stages],
            "post_actions": [
                {"name": p.name, "hook": p.hook, "ok": p.ok, "error": p.error}
                for p in self.post_actions
            ],
            "diagnostics": self.diagnostics,
            "meta": self.meta,
        }
