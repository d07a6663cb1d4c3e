from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx

from notes_deploy.core import monotonic_ms


class ProbeKind(StrEnum):
    UP = "up"
    DOWN = "down"
    NOT_READY = "not_ready"


@dataclass(frozen=True, slots=True)
class ProbeOutcome:
    attempt: int
    kind: ProbeKind
    status_code: int | None = None
    health_status: str | None = None
    error: str | None = None
    latency_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt": self.attempt,
            "kind": self.kind.value,
            "status_code": self.status_code,
            "health_status": self.health_status,
            "error": self.error,
            "latency_ms": self.latency_ms,
        }


def make_http_client(
    *,
    timeout_s: float = 5.0,
    user_agent: str = "notes-deploy/0.1",
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=True,
        headers={"User-Agent": user_agent, "Accept": "application/json"},
        transport=transport,
    )


def _health_status(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("status"), str):
        return body["status"]
    return None


def classify(response: httpx.Response) -> tuple[ProbeKind, str | None]:
    """
    2xx with status UP is ready; a body reporting DOWN is a definitive down
    whatever the HTTP code (Spring answers DOWN with 503). Anything else,
    including OUT_OF_SERVICE, is not ready yet.
    """
    status = _health_status(response)
    if status == "DOWN":
        return ProbeKind.DOWN, status
    if response.is_success and status == "UP":
        return ProbeKind.UP, status
    return ProbeKind.NOT_READY, status


class HttpHealthProbe:
    def __init__(self, client: httpx.Client) -> None:
        self.client = client

    def __call__(self, url: str, attempt: int) -> ProbeOutcome:
        t0 = monotonic_ms()
        try:
            response = self.client.get(url)
        except httpx.HTTPError as e:
            return ProbeOutcome(
                attempt=attempt,
                kind=ProbeKind.NOT_READY,
                error=f"{type(e).__name__}: {e}",
                latency_ms=monotonic_ms() - t0,
            )
        kind, status = classify(response)
        return ProbeOutcome(
            attempt=attempt,
            kind=kind,
            status_code=response.status_code,
            health_status=status,
            latency_ms=monotonic_ms() - t0,
        )
