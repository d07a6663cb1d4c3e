from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable

import httpx
import structlog
from notes_deploy.cli import EXIT_CODES
from notes_deploy.core import PipelineConfig, TransientError
from notes_deploy.credentials import Credential, CredentialVault
from notes_deploy.pipeline import PipelineDriver, PipelineRun, RunStatus, StageStatus
from notes_deploy.plan import STAGE_ORDER, build_post_actions, build_stages
from pydantic import SecretStr

from fakes import FakeCluster, FakeRegistry, deployment_state

HEALTH_PATH = "/actuator/health"


def _health(
    responses: list[httpx.Response | Exception],
) -> Callable[[httpx.Request], httpx.Response]:
    seq = iter(responses)
    last: list[httpx.Response | Exception] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path != HEALTH_PATH:
            return httpx.Response(200, text="jvm_threads_live 12\n")
        item = next(seq, None)
        if item is None:
            item = last[0]
        else:
            last[:] = [item]
        if isinstance(item, Exception):
            raise item
        return item

    return handler


def _starting() -> httpx.Response:
    return httpx.Response(503, json={"status": "OUT_OF_SERVICE"})


def _rolling_cluster(**kw) -> FakeCluster:
    return FakeCluster(
        states=[
            deployment_state(image="notes-app:41"),
            deployment_state(image="notes-app:42"),
        ],
        **kw,
    )


def _run(
    cfg: PipelineConfig,
    tmp_path: Path,
    fakes,
    *,
    vault: CredentialVault,
    handler: Callable[[httpx.Request], httpx.Response],
    registry: FakeRegistry | None = None,
    cluster: FakeCluster | None = None,
    on_driver: Callable[[PipelineDriver], None] | None = None,
) -> tuple[PipelineRun, FakeRegistry, FakeCluster]:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    adapters, registry, cluster = fakes(
        http=http, vault=vault, registry=registry, cluster=cluster or _rolling_cluster()
    )
    driver = PipelineDriver(
        config=cfg,
        run_root=tmp_path / "runs",
        post_actions=build_post_actions(cfg, adapters),
        logger=structlog.get_logger("test"),
    )
    if on_driver is not None:
        on_driver(driver)
    run = driver.run(
        build_stages(cfg, adapters, source_dir=tmp_path), run_id="scenario"
    )
    return run, registry, cluster


def test_full_deploy_succeeds(
    cfg: PipelineConfig, tmp_path: Path, fakes, vault: CredentialVault
) -> None:
    handler = _health(
        [
            httpx.ConnectError("connection refused"),
            _starting(),
            httpx.Response(200, json={"status": "UP"}),
        ]
    )
    run, registry, cluster = _run(cfg, tmp_path, fakes, vault=vault, handler=handler)

    assert run.status == RunStatus.SUCCESS
    assert EXIT_CODES[run.status] == 0
    assert [s.name for s in run.stages] == list(STAGE_ORDER)
    assert all(s.status == StageStatus.SUCCEEDED for s in run.stages)
    assert run.stage("verify").outputs["attempts"] == 3
    assert registry.tags["notes-app:latest"] == registry.tags["notes-app:42"]
    assert vault.revocations == [1]
    assert cluster.images_set == ["notes-app:42"]
    assert "Namespace/monitoring" in cluster.applied
    assert "Deployment/notes-app" in cluster.applied
    assert [p.hook for p in run.post_actions] == ["always"]
    assert run.diagnostics is None
    assert Path(run.report_path).exists()


def test_redeploy_leaves_manifests_unchanged(
    cfg: PipelineConfig, tmp_path: Path, fakes, vault: CredentialVault
) -> None:
    cluster = _rolling_cluster()
    up = httpx.Response(200, json={"status": "UP"})
    _run(cfg, tmp_path, fakes, vault=vault, handler=_health([up]), cluster=cluster)
    first = list(cluster.applied)

    nxt = cfg.model_copy(update={"build_number": 43, "build_tag": "43"})
    cluster.states = [
        deployment_state(image="notes-app:42"),
        deployment_state(image="notes-app:43"),
    ]
    run, _, _ = _run(
        nxt,
        tmp_path,
        fakes,
        vault=CredentialVault(
            {"registry": Credential(username="ci", secret=SecretStr("s3cret"))}
        ),
        handler=_health([up]),
        cluster=cluster,
    )

    assert run.status == RunStatus.SUCCESS
    assert cluster.applied == first
    assert run.stage("apply-app").outputs["changed"] == []
    assert cluster.images_set == ["notes-app:42", "notes-app:43"]


def test_monitoring_apply_failure_stops_pipeline(
    cfg: PipelineConfig, tmp_path: Path, fakes, vault: CredentialVault
) -> None:
    cluster = _rolling_cluster(
        fail_apply={"Namespace/monitoring": "forbidden: cannot create namespaces"}
    )
    run, registry, cluster = _run(
        cfg,
        tmp_path,
        fakes,
        vault=vault,
        handler=_health([_starting()]),
        cluster=cluster,
    )

    assert run.status == RunStatus.FAILED
    assert EXIT_CODES[run.status] == 1
    failed = run.stage("apply-monitoring")
    assert failed.status == StageStatus.FAILED
    assert failed.error is not None
    assert failed.error.exc_type == "ApplyFailure"
    for name in ("apply-app", "rollout", "verify"):
        assert run.stage(name).status == StageStatus.SKIPPED
    assert run.stage("publish").status == StageStatus.SUCCEEDED
    assert cluster.applied == []
    assert cluster.images_set == []
    assert [p.hook for p in run.post_actions] == ["on_failure", "always"]
    assert all(p.ok for p in run.post_actions)
    assert run.diagnostics is not None
    assert run.diagnostics["available"] is True


def test_publish_exhaustion_fails_before_cluster_changes(
    cfg: PipelineConfig, tmp_path: Path, fakes, vault: CredentialVault
) -> None:
    registry = FakeRegistry(push_failures=[TransientError("503")] * 3)
    run, registry, cluster = _run(
        cfg,
        tmp_path,
        fakes,
        vault=vault,
        handler=_health([_starting()]),
        registry=registry,
    )

    assert run.status == RunStatus.FAILED
    rec = run.stage("publish")
    assert rec.error is not None
    assert rec.error.exc_type == "PublishFailure"
    assert "notes-app:latest" not in registry.tags
    assert registry.logouts == 1
    assert vault.revocations == [1]
    assert cluster.applied == []


def test_health_down_rolls_back_when_enabled(
    cfg: PipelineConfig, tmp_path: Path, fakes, vault: CredentialVault
) -> None:
    cfg = cfg.model_copy(update={"rollback_on_failure": True})
    handler = _health([httpx.Response(503, json={"status": "DOWN"})])
    run, _, cluster = _run(cfg, tmp_path, fakes, vault=vault, handler=handler)

    assert run.status == RunStatus.FAILED
    verify = run.stage("verify")
    assert verify.error is not None
    assert verify.error.exc_type == "HealthDown"
    assert verify.error.details["attempts"] == 1
    assert cluster.undo_calls == ["notes-app/notes-app"]
    assert [p.name for p in run.post_actions] == [
        "collect_diagnostics",
        "rollback_deployment",
        "revoke_credentials",
    ]


def test_no_rollback_when_image_was_never_changed(
    cfg: PipelineConfig, tmp_path: Path, fakes, vault: CredentialVault
) -> None:
    cfg = cfg.model_copy(update={"rollback_on_failure": True})
    cluster = _rolling_cluster(fail_set_image="forbidden")
    run, _, cluster = _run(
        cfg,
        tmp_path,
        fakes,
        vault=vault,
        handler=_health([httpx.Response(200, json={"status": "UP"})]),
        cluster=cluster,
    )

    assert run.status == RunStatus.FAILED
    rollout = run.stage("rollout")
    assert rollout.error is not None
    assert rollout.error.exc_type == "RolloutConfigError"
    assert "forbidden" in rollout.error.message
    assert cluster.images_set == []
    assert cluster.undo_calls == []


def test_warn_policy_completes_with_warning(
    cfg: PipelineConfig, tmp_path: Path, fakes, vault: CredentialVault
) -> None:
    cfg = cfg.model_copy(
        update={"health_failure_policy": "warn", "health_max_attempts": 2}
    )
    run, _, cluster = _run(
        cfg, tmp_path, fakes, vault=vault, handler=_health([_starting()])
    )

    assert run.status == RunStatus.SUCCESS
    assert run.stage("verify").warnings
    assert cluster.undo_calls == []


def test_abort_during_health_wait(
    cfg: PipelineConfig, tmp_path: Path, fakes, vault: CredentialVault
) -> None:
    cfg = cfg.model_copy(
        update={"health_retry_delay_seconds": 30, "health_max_attempts": 10}
    )
    drivers: list[PipelineDriver] = []
    timers: list[threading.Timer] = []
    starting = _health([_starting()])

    def handler(request: httpx.Request) -> httpx.Response:
        if not timers:
            timer = threading.Timer(0.2, drivers[0].abort, kwargs={"reason": "SIGINT"})
            timers.append(timer)
            timer.start()
        return starting(request)

    run, _, _ = _run(
        cfg,
        tmp_path,
        fakes,
        vault=vault,
        handler=handler,
        on_driver=drivers.append,
    )
    for t in timers:
        t.cancel()

    assert run.status == RunStatus.ABORTED
    assert EXIT_CODES[run.status] == 130
    verify = run.stage("verify")
    assert verify.error is not None
    assert verify.error.exc_type == "PipelineAborted"
    assert run.stage("rollout").status == StageStatus.SUCCEEDED
    assert vault.revocations == [1]
