from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import httpx

from notes_deploy.core import PipelineConfig, RetryPolicy, Settings
from notes_deploy.credentials import Credential, CredentialVault
from notes_deploy.manifests import app_resources, monitoring_resources
from notes_deploy.pipeline import PostAction, PostActions, RunContext, Stage
from notes_deploy.pipeline.types import PipelineRun
from notes_deploy.stages.apply import (
    ApplyStage,
    ClusterClient,
    ClusterStateApplier,
    KubectlClusterClient,
    app_namespace,
    monitoring_namespace,
)
from notes_deploy.stages.build import (
    ArtifactBuilder,
    BuildProducer,
    CommandBuildProducer,
    CompileStage,
    DockerImagePackager,
    ImagePackager,
    PackageStage,
    TestStage,
)
from notes_deploy.stages.diagnostics import DiagnosticsCollector, collect_diagnostics
from notes_deploy.stages.publish import (
    DockerRegistryClient,
    PublishStage,
    RegistryClient,
    RegistryPublisher,
)
from notes_deploy.stages.rollout import (
    IMAGE_SET_KEY,
    DeploymentRef,
    RolloutController,
    RolloutStage,
)
from notes_deploy.stages.verify import (
    HealthVerifier,
    HttpHealthProbe,
    VerifyStage,
    make_http_client,
)

STAGE_ORDER: tuple[str, ...] = (
    "build",
    "test",
    "package",
    "publish",
    "apply-monitoring",
    "apply-app",
    "rollout",
    "verify",
)


@dataclass(slots=True)
class Adapters:
    """Everything that talks to the outside world, swappable in tests."""

    producer: BuildProducer
    packager: ImagePackager
    registry: RegistryClient
    cluster: ClusterClient
    http: httpx.Client
    vault: CredentialVault

    @classmethod
    def from_settings(cls, settings: Settings, cfg: PipelineConfig) -> "Adapters":
        compile_cmd, test_cmd, package_cmd = settings.build_commands
        credentials = {}
        if settings.registry_username:
            credentials[cfg.registry_credential] = Credential(
                username=settings.registry_username,
                secret=settings.registry_password,
            )
        return cls(
            producer=CommandBuildProducer(
                source_dir=Path(settings.source_dir),
                compile_cmd=compile_cmd,
                test_cmd=test_cmd,
                package_cmd=package_cmd,
                timeout_s=settings.build_timeout_seconds,
            ),
            packager=DockerImagePackager(),
            registry=DockerRegistryClient(),
            cluster=KubectlClusterClient(
                kubectl=settings.kubectl, context=settings.kube_context
            ),
            http=make_http_client(timeout_s=cfg.health_probe_timeout_seconds),
            vault=CredentialVault(credentials),
        )


def build_stages(
    cfg: PipelineConfig,
    adapters: Adapters,
    *,
    source_dir: Path,
    only: Sequence[str] | None = None,
    skip_monitoring: bool = False,
    registry_server: str | None = None,
) -> list[Stage]:
    """
    Stages in pipeline order. `only` restricts the plan to a subset (kept in
    pipeline order); `skip_monitoring` drops the monitoring apply.
    """
    builder = ArtifactBuilder(
        producer=adapters.producer,
        packager=adapters.packager,
        source_dir=source_dir,
        repository=cfg.registry_repo,
    )
    applier = ClusterStateApplier(adapters.cluster)
    stages: dict[str, Stage] = {
        "build": CompileStage(builder),
        "test": TestStage(builder),
        "package": PackageStage(builder),
        "publish": PublishStage(
            publisher=RegistryPublisher(
                registry=adapters.registry,
                policy=RetryPolicy(
                    max_attempts=cfg.publish_max_attempts,
                    delay_s=cfg.publish_retry_delay_seconds,
                    backoff="exponential",
                ),
                registry_server=registry_server,
            ),
            vault=adapters.vault,
        ),
        "apply-monitoring": ApplyStage(
            applier=applier,
            resources=monitoring_resources,
            namespace_of=monitoring_namespace,
            stage_id="apply-monitoring",
        ),
        "apply-app": ApplyStage(
            applier=applier,
            resources=app_resources,
            namespace_of=app_namespace,
            stage_id="apply-app",
        ),
        "rollout": RolloutStage(
            RolloutController(
                cluster=adapters.cluster,
                repository=cfg.registry_repo,
                poll_interval_s=cfg.rollout_poll_seconds,
            )
        ),
        "verify": VerifyStage(
            verifier=HealthVerifier.from_config(cfg, HttpHealthProbe(adapters.http)),
            client=adapters.http,
        ),
    }

    wanted = set(only) if only is not None else set(STAGE_ORDER)
    unknown = wanted - set(STAGE_ORDER)
    if unknown:
        raise ValueError(f"Unknown stage(s): {sorted(unknown)}")
    if skip_monitoring:
        wanted.discard("apply-monitoring")
    return [stages[sid] for sid in STAGE_ORDER if sid in wanted]


def revoke_credentials(vault: CredentialVault) -> PostAction:
    def revoke_credentials(ctx: RunContext, run: PipelineRun) -> None:
        leaked = vault.revoke_outstanding()
        if leaked:
            ctx.logger.warning("Revoked outstanding credentials", count=leaked)

    return revoke_credentials


def rollback_deployment(controller: RolloutController) -> PostAction:
    """Undo the rollout, only if this run got as far as changing the image."""

    def rollback_deployment(ctx: RunContext, run: PipelineRun) -> None:
        if IMAGE_SET_KEY not in ctx.meta:
            ctx.logger.info("Rollback skipped; deployment image was not changed")
            return
        controller.rollback(DeploymentRef.from_config(ctx.config))

    return rollback_deployment


def build_post_actions(cfg: PipelineConfig, adapters: Adapters) -> PostActions:
    on_failure: list[PostAction] = [
        collect_diagnostics(DiagnosticsCollector(adapters.cluster))
    ]
    if cfg.rollback_on_failure:
        on_failure.append(
            rollback_deployment(
                RolloutController(
                    cluster=adapters.cluster, repository=cfg.registry_repo
                )
            )
        )
    return PostActions(
        always=[revoke_credentials(adapters.vault)],
        on_failure=on_failure,
    )
