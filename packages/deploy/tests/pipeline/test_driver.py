from __future__ import annotations

import json
import threading
import time
from pathlib import Path

import pytest
import structlog
from notes_deploy.core import BuildFailure, InternalError, PipelineConfig, read_json
from notes_deploy.pipeline import (
    PipelineDriver,
    PipelineRun,
    PostActions,
    RunContext,
    RunStatus,
    StageRecord,
    StageStatus,
)


def _driver(
    cfg: PipelineConfig, root: Path, post: PostActions | None = None
) -> PipelineDriver:
    return PipelineDriver(
        config=cfg,
        run_root=root,
        post_actions=post,
        logger=structlog.get_logger("test"),
    )


def _ok(ctx: RunContext) -> dict:
    return {"value": 1}


def _boom(ctx: RunContext) -> dict:
    raise BuildFailure("compile error: Foo.java:12")


def test_success_runs_on_success_then_always(
    cfg: PipelineConfig, tmp_path: Path
) -> None:
    calls: list[str] = []

    def on_success(ctx: RunContext, run: PipelineRun) -> None:
        calls.append("on_success")

    def on_failure(ctx: RunContext, run: PipelineRun) -> None:
        calls.append("on_failure")

    def always(ctx: RunContext, run: PipelineRun) -> None:
        calls.append("always")

    post = PostActions(
        always=[always], on_success=[on_success], on_failure=[on_failure]
    )
    run = _driver(cfg, tmp_path, post).run(
        [PipelineDriver.fn("a", _ok), PipelineDriver.fn("b", _ok)], run_id="r-ok"
    )

    assert run.status == RunStatus.SUCCESS
    assert calls == ["on_success", "always"]
    assert run.summary == "build 42 success: 2/2 stages succeeded"
    assert [(p.name, p.hook, p.ok) for p in run.post_actions] == [
        ("on_success", "on_success", True),
        ("always", "always", True),
    ]


def test_first_failure_skips_the_rest(cfg: PipelineConfig, tmp_path: Path) -> None:
    calls: list[str] = []
    post = PostActions(
        always=[lambda ctx, run: calls.append("always")],
        on_success=[lambda ctx, run: calls.append("on_success")],
        on_failure=[lambda ctx, run: calls.append("on_failure")],
    )
    ran: list[str] = []

    def _track(ctx: RunContext) -> dict:
        ran.append("c")
        return {}

    run = _driver(cfg, tmp_path, post).run(
        [
            PipelineDriver.fn("a", _ok),
            PipelineDriver.fn("b", _boom),
            PipelineDriver.fn("c", _track),
        ],
        run_id="r-fail",
    )

    assert run.status == RunStatus.FAILED
    assert [s.status for s in run.stages] == [
        StageStatus.SUCCEEDED,
        StageStatus.FAILED,
        StageStatus.SKIPPED,
    ]
    assert ran == []
    assert calls == ["on_failure", "always"]

    failed = run.stage("b")
    assert failed.error is not None
    assert failed.error.exc_type == "BuildFailure"
    assert "stage 'b'" in run.summary and "BuildFailure" in run.summary

    report = read_json(tmp_path / "r-fail" / "run_report.json")
    assert report["status"] == "failed"
    assert [s["status"] for s in report["stages"]] == ["succeeded", "failed", "skipped"]


def test_post_action_errors_never_change_the_outcome(
    cfg: PipelineConfig, tmp_path: Path
) -> None:
    after: list[str] = []

    def broken(ctx: RunContext, run: PipelineRun) -> None:
        raise RuntimeError("webhook down")

    def later(ctx: RunContext, run: PipelineRun) -> None:
        after.append("ran")

    post = PostActions(always=[broken, later])
    run = _driver(cfg, tmp_path, post).run([PipelineDriver.fn("a", _ok)])

    assert run.status == RunStatus.SUCCESS
    assert after == ["ran"]
    assert run.post_actions[0].ok is False
    assert "webhook down" in (run.post_actions[0].error or "")
    assert run.post_actions[1].ok is True


def test_stage_outputs_warnings_and_metrics(
    cfg: PipelineConfig, tmp_path: Path
) -> None:
    def producer(ctx: RunContext) -> dict:
        return {"v": 2, "_warnings": ["slow"], "_metrics": {"n": 3}}

    def consumer(ctx: RunContext) -> dict:
        return {"seen": ctx.output("producer")["v"]}

    run = _driver(cfg, tmp_path).run(
        [
            PipelineDriver.fn("producer", producer),
            PipelineDriver.fn("consumer", consumer),
        ]
    )
    rec = run.stage("producer")
    assert rec.outputs == {"v": 2}
    assert rec.warnings == ["slow"]
    assert rec.metrics == {"n": 3}
    assert run.stage("consumer").outputs == {"seen": 2}
    assert "warnings in: producer" in run.summary


def test_abort_interrupts_a_waiting_stage(cfg: PipelineConfig, tmp_path: Path) -> None:
    driver = _driver(cfg, tmp_path, PostActions(always=[lambda ctx, run: None]))

    def waits(ctx: RunContext) -> dict:
        ctx.cancel.sleep(30)
        return {}

    timer = threading.Timer(0.05, driver.abort, kwargs={"reason": "SIGTERM"})
    timer.start()
    t0 = time.monotonic()
    try:
        run = driver.run(
            [
                PipelineDriver.fn("a", _ok),
                PipelineDriver.fn("wait", waits),
                PipelineDriver.fn("c", _ok),
            ]
        )
    finally:
        timer.cancel()

    assert time.monotonic() - t0 < 10
    assert run.status == RunStatus.ABORTED
    assert run.stage("wait").status == StageStatus.FAILED
    assert run.stage("wait").error.exc_type == "PipelineAborted"
    assert run.stage("c").status == StageStatus.SKIPPED
    assert [p.hook for p in run.post_actions] == ["always"]


def test_finished_run_is_sealed(cfg: PipelineConfig, tmp_path: Path) -> None:
    run = _driver(cfg, tmp_path).run([PipelineDriver.fn("a", _ok)])
    with pytest.raises(InternalError):
        run.status = RunStatus.FAILED
    with pytest.raises(InternalError):
        run.stages[0].status = StageStatus.FAILED
    assert isinstance(run.stages, tuple)


def test_illegal_stage_transition() -> None:
    rec = StageRecord(name="x")
    with pytest.raises(InternalError):
        rec.advance(StageStatus.SUCCEEDED)
    rec.advance(StageStatus.RUNNING)
    with pytest.raises(InternalError):
        rec.advance(StageStatus.SKIPPED)


def test_duplicate_stage_ids_rejected(cfg: PipelineConfig, tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        _driver(cfg, tmp_path).run(
            [PipelineDriver.fn("a", _ok), PipelineDriver.fn("a", _ok)]
        )


def test_event_log(cfg: PipelineConfig, tmp_path: Path) -> None:
    driver = _driver(cfg, tmp_path)
    driver.run(
        [PipelineDriver.fn("a", _boom), PipelineDriver.fn("b", _ok)], run_id="r-ev"
    )
    lines = (tmp_path / "r-ev" / "events.jsonl").read_text().splitlines()
    events = [json.loads(line) for line in lines]
    types = [e["type"] for e in events]
    assert types[0] == "run.env"
    assert "run.start" in types
    assert ("stage.failed", "a") in [(e["type"], e["stage"]) for e in events]
    assert ("stage.skipped", "b") in [(e["type"], e["stage"]) for e in events]
    assert types.index("run.finish") > types.index("stage.skipped")
