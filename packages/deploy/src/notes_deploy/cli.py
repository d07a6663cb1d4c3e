from __future__ import annotations

import argparse
import signal
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

from notes_deploy.core import (
    PipelineConfig,
    bind,
    clear_bindings,
    configure_logging,
    get_logger,
    load_settings,
)
from notes_deploy.manifests import app_resources, monitoring_resources, render_yaml
from notes_deploy.pipeline import PipelineDriver, PipelineRun, RunStatus, Stage
from notes_deploy.pipeline.stage import format_duration_ms
from notes_deploy.pipeline.types import StageStatus
from notes_deploy.plan import Adapters, build_post_actions, build_stages
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

console = Console()

EXIT_CODES: dict[RunStatus, int] = {
    RunStatus.SUCCESS: 0,
    RunStatus.FAILED: 1,
    RunStatus.ABORTED: 130,
}

_STATUS_STYLE: dict[str, str] = {
    StageStatus.SUCCEEDED.value: "green",
    StageStatus.FAILED.value: "red",
    StageStatus.SKIPPED.value: "dim",
    StageStatus.PENDING.value: "dim",
    StageStatus.RUNNING.value: "yellow",
}


@dataclass(frozen=True, slots=True)
class _CommonArgs:
    cmd: str
    build_number: int
    source_dir: str | None
    skip_monitoring: bool
    run_id: str | None


def _add_common_args(p: argparse.ArgumentParser, *, build_required: bool) -> None:
    p.add_argument(
        "--build-number",
        type=int,
        required=build_required,
        default=None if build_required else 1,
        help="CI build number; also the default version tag of the artifact",
    )
    p.add_argument(
        "--run-id",
        default=None,
        help="Run directory name under NOTES_DEPLOY_RUN_ROOT (default: random)",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="notes-deploy")
    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Build, publish, deploy and verify one build")
    _add_common_args(run, build_required=True)
    run.add_argument(
        "--source-dir",
        default=None,
        help="Application source tree with pom.xml and Dockerfile "
        "(default: NOTES_DEPLOY_SOURCE_DIR or .)",
    )
    run.add_argument(
        "--skip-monitoring",
        action="store_true",
        help="Do not apply the monitoring stack",
    )

    apply = sub.add_parser("apply", help="Apply monitoring and application manifests")
    _add_common_args(apply, build_required=False)
    apply.add_argument("--skip-monitoring", action="store_true")

    render = sub.add_parser("render", help="Print the manifests as YAML")
    _add_common_args(render, build_required=False)
    render.add_argument("--skip-monitoring", action="store_true")

    verify = sub.add_parser("verify", help="Run the health verification only")
    _add_common_args(verify, build_required=False)

    return p


def _common(args: argparse.Namespace) -> _CommonArgs:
    return _CommonArgs(
        cmd=str(args.cmd),
        build_number=int(args.build_number),
        source_dir=getattr(args, "source_dir", None),
        skip_monitoring=bool(getattr(args, "skip_monitoring", False)),
        run_id=args.run_id,
    )


_PIPELINES: dict[str, tuple[str, ...] | None] = {
    "run": None,
    "apply": ("apply-monitoring", "apply-app"),
    "verify": ("verify",),
}


def _with_status(stage: Stage) -> Stage:
    run = stage.run

    def _run_with_status(ctx):
        with console.status(f"[bold]{stage.stage_id}[/]", spinner="dots"):
            return run(ctx)

    return PipelineDriver.fn(stage.stage_id, _run_with_status)


def _install_abort_handler(driver: PipelineDriver) -> Callable[[], None]:
    previous: dict[int, Any] = {}

    def _handler(signum, frame) -> None:
        driver.abort(f"received {signal.Signals(signum).name}")

    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)

    def _restore() -> None:
        for sig, h in previous.items():
            signal.signal(sig, h)

    return _restore


def _print_result(run: PipelineRun) -> None:
    tbl = Table(title="Stages", show_header=True, box=None)
    tbl.add_column("stage")
    tbl.add_column("status")
    tbl.add_column("duration", justify="right")
    tbl.add_column("note")
    for rec in run.stages:
        style = _STATUS_STYLE.get(rec.status.value, "")
        if rec.error is not None:
            note = (rec.error.message.splitlines() or [""])[0]
        else:
            note = "; ".join(rec.warnings)
        tbl.add_row(
            rec.name,
            f"[{style}]{rec.status.value}[/{style}]" if style else rec.status.value,
            format_duration_ms(rec.duration_ms) if rec.duration_ms is not None else "",
            note,
        )
    console.print(tbl)

    colour = "green" if run.status == RunStatus.SUCCESS else "red"
    summary = Table(title="Result", show_header=False, box=None)
    summary.add_row("status", f"[{colour}]{run.status.value}[/{colour}]")
    summary.add_row("summary", run.summary)
    summary.add_row("report", str(run.report_path))
    console.print(summary)


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    common = _common(args)

    s = load_settings()
    configure_logging(level=s.log_level, fmt=s.log_format)
    log = get_logger("notes_deploy")

    try:
        cfg = PipelineConfig.from_settings(s, build_number=common.build_number)
    except ValidationError as e:
        console.print(Panel.fit(str(e), title="Invalid configuration", style="red"))
        return 2

    if common.cmd == "render":
        sets = [app_resources(cfg)]
        if not common.skip_monitoring:
            sets.insert(0, monitoring_resources(cfg))
        console.print(
            render_yaml(*sets), markup=False, highlight=False, soft_wrap=True
        )
        return 0

    run_id = common.run_id or uuid.uuid4().hex
    bind(run_id=run_id, command=common.cmd, build_number=cfg.build_number)

    source_dir = Path(common.source_dir) if common.source_dir else Path(s.source_dir)
    adapters = Adapters.from_settings(s, cfg)
    stages = build_stages(
        cfg,
        adapters,
        source_dir=source_dir,
        only=_PIPELINES[common.cmd],
        skip_monitoring=common.skip_monitoring,
        registry_server=s.registry_server,
    )

    driver = PipelineDriver(
        config=cfg,
        run_root=Path(s.run_root),
        post_actions=build_post_actions(cfg, adapters),
        logger=log,
    )

    console.print(
        Panel.fit(
            Text(
                f"notes-deploy - {common.cmd}\nrun_id={run_id}\n"
                f"build={cfg.build_number} image={cfg.image_ref}",
                style="bold",
            ),
            title="Run",
        )
    )

    restore = _install_abort_handler(driver)
    try:
        run = driver.run(
            [_with_status(st) for st in stages],
            run_id=run_id,
            meta={"command": common.cmd, "source_dir": str(source_dir)},
        )
    finally:
        restore()
        adapters.http.close()
        clear_bindings()

    _print_result(run)
    return EXIT_CODES[run.status]


if __name__ == "__main__":
    raise SystemExit(main())
