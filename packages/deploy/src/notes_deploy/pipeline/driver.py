from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

from notes_deploy.core import (
    CancelToken,
    ILogger,
    PipelineConfig,
    configure_logging,
    get_logger,
    monotonic_ms,
    utc_now_iso,
)

from .context import RunContext
from .events import EventSink, EventType
from .report import build_run_report, summarize_run, write_run_report
from .stage import (
    FunctionStage,
    Stage,
    StageFn,
    format_duration_ms,
    run_stage,
    skip_stage,
)
from .types import (
    PipelineRun,
    PostActionRecord,
    RunStatus,
    StageRecord,
    StageStatus,
)

PostAction = Callable[[RunContext, PipelineRun], None]


@dataclass(slots=True)
class PostActions:
    """
    Hooks run after the forward sequence, wherever it stopped.

    on_success / on_failure run first (aborted runs count as failures),
    then always.
    """

    always: list[PostAction] = field(default_factory=list)
    on_success: list[PostAction] = field(default_factory=list)
    on_failure: list[PostAction] = field(default_factory=list)


def default_logger() -> ILogger:
    configure_logging()
    return get_logger("pipeline")


def _action_name(fn: PostAction) -> str:
    return str(getattr(fn, "__name__", None) or type(fn).__name__)


class PipelineDriver:
    """
    Runs a fixed, ordered list of stages. Each call to `run` is independent;
    the only state kept between calls is configuration.
    """

    def __init__(
        self,
        *,
        config: PipelineConfig,
        run_root: Path,
        post_actions: PostActions | None = None,
        logger: ILogger | None = None,
    ) -> None:
        self.config = config
        self.run_root = Path(run_root)
        self.post_actions = post_actions or PostActions()
        self.logger: ILogger = logger or default_logger()
        self._active: CancelToken | None = None

    @staticmethod
    def fn(stage_id: str, fn: StageFn) -> Stage:
        return FunctionStage(stage_id=stage_id, fn=fn)

    def abort(self, reason: str = "aborted") -> None:
        """Interrupt the active run at its next suspension point."""
        token = self._active
        if token is not None:
            self.logger.warning("Abort requested", reason=reason)
            token.cancel(reason)

    def run(
        self,
        stages: Sequence[Stage],
        *,
        run_id: str | None = None,
        meta: dict[str, Any] | None = None,
        cancel: CancelToken | None = None,
    ) -> PipelineRun:
        stages = list(stages)
        ids = [s.stage_id for s in stages]
        if len(ids) != len(set(ids)):
            dupes = sorted({x for x in ids if ids.count(x) > 1})
            raise ValueError(f"Duplicate stage_id(s): {dupes}")

        meta = dict(meta or {})
        rid = run_id or uuid.uuid4().hex
        run_dir = self.run_root / rid
        run_dir.mkdir(parents=True, exist_ok=True)

        events_path = run_dir / "events.jsonl"
        token = cancel or CancelToken()
        self._active = token

        ctx = RunContext(
            run_id=rid,
            run_root=run_dir,
            config=self.config,
            logger=self.logger,
            events=EventSink(events_path),
            cancel=token,
            meta=meta,
        )

        run = PipelineRun(
            run_id=rid,
            build_number=self.config.build_number,
            stages=[StageRecord(name=s.stage_id) for s in stages],
            started_at_utc=utc_now_iso(),
            meta=meta,
        )
        t0 = monotonic_ms()

        self.logger.info(
            "Pipeline starting",
            run_id=rid,
            build_number=run.build_number,
            stages=ids,
            run_root=str(run_dir),
        )
        ctx.emit(EventType.RUN_START, build_number=run.build_number, stages=ids)

        try:
            self._run_forward(ctx, run, stages)
            status = self._resolve_status(ctx, run)
            self._run_post_actions(ctx, run, status)
        finally:
            self._active = None

        duration = monotonic_ms() - t0
        run.finalize(
            status=status, finished_at_utc=utc_now_iso(), duration_ms=duration
        )
        run.summary = summarize_run(run)

        report_json = run_dir / "run_report.json"
        run.report_path = str(report_json)
        write_run_report(
            report_json, build_run_report(run, events_jsonl=str(events_path))
        )
        run.seal()

        ctx.emit(
            EventType.RUN_FINISH,
            status=status.value,
            duration_ms=duration,
            report_json=str(report_json),
        )
        log = self.logger.info if status == RunStatus.SUCCESS else self.logger.error
        log(
            "Run complete",
            status=status.value,
            summary=run.summary,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            report=str(report_json),
            events=str(events_path),
        )
        return run

    def _run_forward(
        self, ctx: RunContext, run: PipelineRun, stages: list[Stage]
    ) -> None:
        halted_by: str | None = None
        total = len(stages)
        for idx, (st, rec) in enumerate(zip(stages, run.stages), start=1):
            if halted_by is None and ctx.cancel.cancelled:
                halted_by = "run aborted"
                ctx.emit(EventType.RUN_ABORT, reason=ctx.cancel.reason)
            if halted_by is not None:
                skip_stage(ctx=ctx, record=rec, reason=halted_by)
                continue

            run_stage(ctx=ctx, stage=st, record=rec, index=idx, total=total)

            if rec.status == StageStatus.FAILED:
                self.logger.error("Stopping on first failure", stage=st.stage_id)
                halted_by = f"stage {st.stage_id!r} failed"

    @staticmethod
    def _resolve_status(ctx: RunContext, run: PipelineRun) -> RunStatus:
        failed = run.failed_stage
        completed = all(s.status == StageStatus.SUCCEEDED for s in run.stages)
        if ctx.cancel.cancelled and not completed:
            return RunStatus.ABORTED
        if failed is not None and failed.error is not None:
            if failed.error.exc_type == "PipelineAborted":
                return RunStatus.ABORTED
        if failed is not None:
            return RunStatus.FAILED
        return RunStatus.SUCCESS

    def _run_post_actions(
        self, ctx: RunContext, run: PipelineRun, status: RunStatus
    ) -> None:
        plan: list[tuple[str, PostAction]] = []
        if status == RunStatus.SUCCESS:
            plan.extend(("on_success", fn) for fn in self.post_actions.on_success)
        else:
            plan.extend(("on_failure", fn) for fn in self.post_actions.on_failure)
        plan.extend(("always", fn) for fn in self.post_actions.always)

        for hook, fn in plan:
            name = _action_name(fn)
            ctx.emit(EventType.POST_ACTION_START, hook=hook, action=name)
            try:
                fn(ctx, run)
            except Exception as e:
                # A post-action failure is reported but never changes the run outcome.
                run.post_actions.append(
                    PostActionRecord(name=name, hook=hook, ok=False, error=repr(e))
                )
                ctx.emit(
                    EventType.POST_ACTION_FAILED, hook=hook, action=name, error=repr(e)
                )
                self.logger.exception("Post-action failed", hook=hook, action=name)
                continue
            run.post_actions.append(PostActionRecord(name=name, hook=hook, ok=True))
            ctx.emit(EventType.POST_ACTION_FINISH, hook=hook, action=name)
