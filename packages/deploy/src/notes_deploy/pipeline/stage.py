from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol

from notes_deploy.core import monotonic_ms, stage_error_from_exc, utc_now_iso

from .context import RunContext
from .events import EventType
from .types import StageRecord, StageStatus


def format_duration_ms(ms: int) -> str:
    """Return a short human-readable duration string."""
    if ms < 1000:
        return f"{ms} ms"
    return f"{ms / 1000:.2f} s"


class Stage(Protocol):
    stage_id: str

    def run(self, ctx: RunContext) -> dict[str, Any] | None: ...


StageFn = Callable[[RunContext], dict[str, Any] | None]


@dataclass(slots=True)
class FunctionStage:
    """
    Adapter that turns a plain function into a Stage.
    """

    stage_id: str
    fn: StageFn

    def run(self, ctx: RunContext) -> dict[str, Any] | None:
        return self.fn(ctx)


def run_stage(
    *,
    ctx: RunContext,
    stage: Stage,
    record: StageRecord,
    index: int | None = None,
    total: int | None = None,
) -> StageRecord:
    """
    Execute one stage and move its record pending -> running -> succeeded|failed.

    Any exception is caught here, at the stage boundary, and recorded on the
    record; nothing propagates to the driver.
    """
    stage_id = stage.stage_id
    log = ctx.stage_logger(stage_id)

    t0 = monotonic_ms()
    position = f"{index}/{total}" if index is not None and total is not None else None

    record.advance(StageStatus.RUNNING)
    record.started_at_utc = utc_now_iso()

    ctx.emit(EventType.STAGE_START, stage=stage_id, position=position)
    log.info("Stage starting", position=position, started_at=record.started_at_utc)

    try:
        ctx.cancel.raise_if_cancelled()

        out = stage.run(ctx) or {}
        if not isinstance(out, dict):
            raise TypeError(
                f"Stage {stage_id} returned {type(out).__name__}, expected dict or None"
            )

        if "_warnings" in out:
            w = out.pop("_warnings")
            if isinstance(w, list):
                record.warnings.extend(str(x) for x in w)

        if "_metrics" in out:
            m = out.pop("_metrics")
            if isinstance(m, dict):
                record.metrics.update(m)

        for w in record.warnings:
            ctx.emit(EventType.STAGE_WARN, stage=stage_id, message=w)
            log.warning(w)

        if record.metrics:
            ctx.emit(EventType.STAGE_METRICS, stage=stage_id, metrics=record.metrics)

        duration = monotonic_ms() - t0
        record.outputs = out
        record.finished_at_utc = utc_now_iso()
        record.duration_ms = duration
        record.advance(StageStatus.SUCCEEDED)
        ctx.outputs[stage_id] = out

        ctx.emit(EventType.STAGE_SUCCESS, stage=stage_id, duration_ms=duration)
        log.info(
            "Stage succeeded",
            status=record.status.value,
            position=position,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            warnings=len(record.warnings),
            outputs=sorted(out.keys()),
        )
        return record

    except Exception as e:
        duration = monotonic_ms() - t0
        record.error = stage_error_from_exc(e)
        record.finished_at_utc = utc_now_iso()
        record.duration_ms = duration
        record.advance(StageStatus.FAILED)

        ctx.emit(
            EventType.STAGE_FAILED,
            stage=stage_id,
            duration_ms=duration,
            exc_type=type(e).__name__,
            message=str(e),
        )
        log.error(
            "Stage failed",
            status=record.status.value,
            position=position,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            exc_type=type(e).__name__,
            error=str(e),
        )
        log.debug("Stage exception", traceback=record.error.traceback)
        return record


def skip_stage(*, ctx: RunContext, record: StageRecord, reason: str) -> StageRecord:
    record.advance(StageStatus.SKIPPED)
    ctx.emit(EventType.STAGE_SKIPPED, stage=record.name, reason=reason)
    ctx.stage_logger(record.name).info("Stage skipped", reason=reason)
    return record
