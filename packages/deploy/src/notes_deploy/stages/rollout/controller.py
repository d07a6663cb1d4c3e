from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass
from typing import Any, Callable

import structlog

from notes_deploy.core import (
    PipelineConfig,
    RetryPolicy,
    RolloutConfigError,
    poll_until,
)
from notes_deploy.core.retry import Clock, Sleeper
from notes_deploy.stages.apply.cluster import (
    ClusterClient,
    ClusterError,
    DeploymentState,
)

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DeploymentRef:
    namespace: str
    name: str
    container: str

    @classmethod
    def from_config(cls, cfg: PipelineConfig) -> "DeploymentRef":
        return cls(
            namespace=cfg.namespace,
            name=cfg.deployment_name,
            container=cfg.container_name,
        )

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True, slots=True)
class RolloutStatus:
    deployment: str
    target_image: str
    converged: bool
    desired: int = 0
    ready: int = 0
    updated: int = 0
    available: int = 0
    generation: int = 0
    observed_generation: int = 0
    current_image: str | None = None
    previous_image: str | None = None
    polls: int = 0
    elapsed_s: float = 0.0
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def is_converged(state: DeploymentState, *, container: str, image: str) -> bool:
    """
    The controller has seen the latest spec, every pod runs the target image,
    and the updated, ready and desired replica counts agree.
    """
    return (
        state.observed_generation >= state.generation
        and state.images.get(container) == image
        and state.updated_replicas == state.desired_replicas
        and state.ready_replicas == state.desired_replicas
    )


class RolloutController:
    def __init__(
        self,
        *,
        cluster: ClusterClient,
        repository: str,
        poll_interval_s: float = 5.0,
    ) -> None:
        self.cluster = cluster
        self.repository = repository
        self.poll_interval_s = poll_interval_s

    def rollout(
        self,
        ref: DeploymentRef,
        new_version_tag: str,
        timeout_s: float,
        *,
        sleep: Sleeper = time.sleep,
        clock: Clock = time.monotonic,
        on_image_set: Callable[[str | None], None] | None = None,
    ) -> RolloutStatus:
        """
        Point the deployment at `repository:new_version_tag` and wait until it
        converges or `timeout_s` elapses. A timeout returns a non-converged status.

        `on_image_set(previous_image)` is called once the cluster accepted the new
        image, i.e. from the moment there is something to roll back.
        """
        try:
            state = self.cluster.deployment_state(ref.namespace, ref.name)
        except ClusterError as e:
            raise RolloutConfigError(f"Could not read deployment {ref}: {e}") from e
        if state is None:
            raise RolloutConfigError(f"Deployment {ref} does not exist")
        if state.desired_replicas == 0:
            raise RolloutConfigError(f"Deployment {ref} is scaled to 0 replicas")
        if ref.container not in state.images:
            raise RolloutConfigError(
                f"Deployment {ref} has no container {ref.container!r} "
                f"(found: {', '.join(sorted(state.images)) or 'none'})"
            )

        image = f"{self.repository}:{new_version_tag}"
        previous = state.images.get(ref.container)
        try:
            self.cluster.set_image(ref.namespace, ref.name, ref.container, image)
        except ClusterError as e:
            raise RolloutConfigError(
                f"Could not set {ref.container}={image} on {ref}: {e}"
            ) from e
        started = clock()
        if on_image_set is not None:
            on_image_set(previous)
        log.info("rollout.start", deployment=str(ref), image=image, previous=previous)

        def _remaining() -> float:
            # Floor of 1s for the poll that lands on the deadline.
            return max(timeout_s - (clock() - started), 1.0)

        def _poll(attempt: int) -> RolloutStatus:
            try:
                current = self.cluster.deployment_state(
                    ref.namespace, ref.name, timeout_s=_remaining()
                )
            except ClusterError as e:
                log.warning("rollout.poll_error", deployment=str(ref), error=str(e))
                return RolloutStatus(
                    deployment=str(ref),
                    target_image=image,
                    converged=False,
                    previous_image=previous,
                    message=str(e),
                )
            if current is None:
                return RolloutStatus(
                    deployment=str(ref),
                    target_image=image,
                    converged=False,
                    previous_image=previous,
                    message="deployment disappeared during rollout",
                )
            status = RolloutStatus(
                deployment=str(ref),
                target_image=image,
                converged=is_converged(current, container=ref.container, image=image),
                desired=current.desired_replicas,
                ready=current.ready_replicas,
                updated=current.updated_replicas,
                available=current.available_replicas,
                generation=current.generation,
                observed_generation=current.observed_generation,
                current_image=current.images.get(ref.container),
                previous_image=previous,
            )
            log.debug(
                "rollout.poll",
                attempt=attempt,
                ready=status.ready,
                updated=status.updated,
                desired=status.desired,
            )
            return status

        outcome = poll_until(
            _poll,
            done=lambda s: s.converged,
            policy=RetryPolicy(
                max_attempts=None, delay_s=self.poll_interval_s, deadline_s=timeout_s
            ),
            sleep=sleep,
            clock=clock,
            label="rollout",
        )
        status = dataclasses.replace(
            outcome.value,
            polls=outcome.attempts,
            elapsed_s=round(outcome.elapsed_s, 3),
            message=outcome.value.message
            or ("converged" if outcome.done else f"not converged after {timeout_s}s"),
        )
        log.info(
            "rollout.finish",
            deployment=str(ref),
            converged=status.converged,
            polls=status.polls,
        )
        return status

    def rollback(self, ref: DeploymentRef) -> None:
        """Revert the deployment to its previous revision."""
        log.warning("rollout.rollback", deployment=str(ref))
        self.cluster.rollout_undo(ref.namespace, ref.name)
