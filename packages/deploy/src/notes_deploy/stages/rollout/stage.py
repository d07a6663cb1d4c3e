from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from notes_deploy.core import RolloutTimeout
from notes_deploy.pipeline.context import RunContext
from notes_deploy.pipeline.events import EventType

from .controller import DeploymentRef, RolloutController

# ctx.meta key set once the cluster accepted the new image.
IMAGE_SET_KEY = "rollout.image_set"


@dataclass(slots=True)
class RolloutStage:
    controller: RolloutController
    stage_id: str = "rollout"

    def run(self, ctx: RunContext) -> dict[str, Any]:
        cfg = ctx.config
        ref = DeploymentRef.from_config(cfg)
        ctx.emit(
            EventType.ROLLOUT_START,
            stage=self.stage_id,
            deployment=str(ref),
            version_tag=cfg.build_tag,
        )

        def _image_set(previous: str | None) -> None:
            ctx.meta[IMAGE_SET_KEY] = {
                "deployment": str(ref),
                "previous_image": previous,
            }
            ctx.emit(
                EventType.ROLLOUT_IMAGE_SET,
                stage=self.stage_id,
                deployment=str(ref),
                previous_image=previous,
            )

        status = self.controller.rollout(
            ref,
            cfg.build_tag,
            cfg.rollout_timeout_seconds,
            sleep=ctx.cancel.sleep,
            on_image_set=_image_set,
        )
        ctx.emit(EventType.ROLLOUT_FINISH, stage=self.stage_id, **status.to_dict())
        if not status.converged:
            raise RolloutTimeout(
                f"Deployment {ref} did not converge on {status.target_image} within "
                f"{cfg.rollout_timeout_seconds}s "
                f"(ready {status.ready}/{status.desired}, updated {status.updated})",
                status=status,
            )
        return {
            "deployment": str(ref),
            "image": status.target_image,
            "previous_image": status.previous_image,
            "_metrics": {"polls": status.polls, "elapsed_s": status.elapsed_s},
        }
