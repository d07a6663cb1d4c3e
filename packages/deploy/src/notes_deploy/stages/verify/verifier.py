from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Protocol

import httpx
import structlog

from notes_deploy.core import PipelineConfig, RetryPolicy, poll_until
from notes_deploy.core.retry import Clock, Sleeper

from .probe import ProbeKind, ProbeOutcome

log = structlog.get_logger(__name__)


class HealthVerdict(StrEnum):
    UP = "up"
    DOWN = "down"
    TIMEOUT = "timeout"


class HealthProbe(Protocol):
    def __call__(self, url: str, attempt: int) -> ProbeOutcome: ...


@dataclass(frozen=True, slots=True)
class HealthCheckResult:
    url: str
    verdict: HealthVerdict
    attempts: int
    elapsed_s: float
    observations: tuple[ProbeOutcome, ...] = ()

    @property
    def last_observation(self) -> ProbeOutcome | None:
        return self.observations[-1] if self.observations else None

    @property
    def last_status_code(self) -> int | None:
        last = self.last_observation
        return last.status_code if last else None

    @property
    def last_error(self) -> str | None:
        last = self.last_observation
        return last.error if last else None

    def to_dict(self) -> dict[str, Any]:
        last = self.last_observation
        return {
            "url": self.url,
            "verdict": self.verdict.value,
            "attempts": self.attempts,
            "elapsed_s": self.elapsed_s,
            "last_observation": last.to_dict() if last else None,
        }


class HealthVerifier:
    """
    Probes the health endpoint until it reports UP, a definitive DOWN is seen,
    or the attempt budget is spent. There is no sleep after the last attempt.
    """

    def __init__(
        self,
        *,
        probe: HealthProbe,
        policy: RetryPolicy,
        down_is_terminal: bool = True,
    ) -> None:
        self.probe = probe
        self.policy = policy
        self.down_is_terminal = down_is_terminal

    @classmethod
    def from_config(cls, cfg: PipelineConfig, probe: HealthProbe) -> "HealthVerifier":
        return cls(
            probe=probe,
            policy=RetryPolicy(
                max_attempts=cfg.health_max_attempts,
                delay_s=cfg.health_retry_delay_seconds,
                backoff=cfg.health_backoff,
                cap_s=(
                    cfg.health_backoff_cap_seconds
                    if cfg.health_backoff == "exponential"
                    else None
                ),
            ),
            down_is_terminal=cfg.health_down_is_terminal,
        )

    def verify(
        self,
        url: str,
        *,
        sleep: Sleeper = time.sleep,
        clock: Clock = time.monotonic,
        on_attempt: Callable[[ProbeOutcome], None] | None = None,
    ) -> HealthCheckResult:
        seen: list[ProbeOutcome] = []

        def _attempt(n: int) -> ProbeOutcome:
            outcome = self.probe(url, n)
            seen.append(outcome)
            log.info(
                "health.attempt",
                url=url,
                attempt=n,
                kind=outcome.kind.value,
                status_code=outcome.status_code,
                error=outcome.error,
            )
            if on_attempt is not None:
                on_attempt(outcome)
            return outcome

        polled = poll_until(
            _attempt,
            done=lambda o: o.kind is ProbeKind.UP,
            stop_early=(
                (lambda o: o.kind is ProbeKind.DOWN) if self.down_is_terminal else None
            ),
            policy=self.policy,
            sleep=sleep,
            clock=clock,
            label="health",
        )

        last = polled.value
        if last.kind is ProbeKind.UP:
            verdict = HealthVerdict.UP
        elif last.kind is ProbeKind.DOWN and self.down_is_terminal:
            verdict = HealthVerdict.DOWN
        else:
            verdict = HealthVerdict.TIMEOUT

        result = HealthCheckResult(
            url=url,
            verdict=verdict,
            attempts=polled.attempts,
            elapsed_s=round(polled.elapsed_s, 3),
            observations=tuple(seen),
        )
        log.info(
            "health.finish", url=url, verdict=verdict.value, attempts=result.attempts
        )
        return result


@dataclass(frozen=True, slots=True)
class MetricsCheck:
    url: str
    reachable: bool
    status_code: int | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def check_metrics_endpoint(client: httpx.Client, url: str) -> MetricsCheck:
    """Single reachability probe; the exposition body is not parsed."""
    try:
        response = client.get(url, headers={"Accept": "text/plain"})
    except httpx.HTTPError as e:
        return MetricsCheck(url=url, reachable=False, error=f"{type(e).__name__}: {e}")
    return MetricsCheck(
        url=url,
        reachable=response.is_success,
        status_code=response.status_code,
        extra={"bytes": len(response.content)},
    )
