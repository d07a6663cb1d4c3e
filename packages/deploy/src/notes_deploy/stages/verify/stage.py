from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from notes_deploy.core import HealthDown, HealthTimeout
from notes_deploy.pipeline.context import RunContext
from notes_deploy.pipeline.events import EventType

from .probe import ProbeOutcome
from .verifier import HealthVerdict, HealthVerifier, check_metrics_endpoint


@dataclass(slots=True)
class VerifyStage:
    verifier: HealthVerifier
    client: httpx.Client
    stage_id: str = "verify"

    def run(self, ctx: RunContext) -> dict[str, Any]:
        cfg = ctx.config

        def _on_attempt(outcome: ProbeOutcome) -> None:
            ctx.emit(EventType.HEALTH_ATTEMPT, stage=self.stage_id, **outcome.to_dict())

        result = self.verifier.verify(
            cfg.health_url, sleep=ctx.cancel.sleep, on_attempt=_on_attempt
        )
        ctx.emit(EventType.HEALTH_FINISH, stage=self.stage_id, **result.to_dict())

        warnings: list[str] = []
        err: HealthDown | HealthTimeout | None = None
        if result.verdict is HealthVerdict.DOWN:
            err = HealthDown(
                f"{cfg.health_url} reported DOWN on attempt {result.attempts}",
                result=result,
            )
        elif result.verdict is HealthVerdict.TIMEOUT:
            err = HealthTimeout(
                f"{cfg.health_url} not healthy after {result.attempts} attempt(s)",
                result=result,
            )
        if err is not None:
            if cfg.health_failure_policy == "fatal":
                raise err
            warnings.append(f"health check {result.verdict.value}: {err}")
        elif cfg.metrics_url:
            metrics = check_metrics_endpoint(self.client, cfg.metrics_url)
            if not metrics.reachable:
                warnings.append(
                    f"metrics endpoint {metrics.url} unreachable: "
                    f"{metrics.error or f'HTTP {metrics.status_code}'}"
                )

        out: dict[str, Any] = {
            "verdict": result.verdict.value,
            "attempts": result.attempts,
            "_metrics": {"attempts": result.attempts, "elapsed_s": result.elapsed_s},
        }
        if warnings:
            out["_warnings"] = warnings
        return out
