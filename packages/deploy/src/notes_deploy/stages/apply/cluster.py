from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Mapping, Protocol, Sequence

import structlog
import yaml

from notes_deploy.core import DeployError

log = structlog.get_logger(__name__)


class ClusterError(DeployError):
    """A cluster API call failed (unreachable, forbidden, invalid object)."""


class ApplyAction(StrEnum):
    CREATED = "created"
    CONFIGURED = "configured"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DeploymentState:
    name: str
    namespace: str
    generation: int
    observed_generation: int
    desired_replicas: int
    ready_replicas: int
    updated_replicas: int
    available_replicas: int
    images: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> "DeploymentState":
        md = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        containers = ((spec.get("template") or {}).get("spec") or {}).get(
            "containers"
        ) or []
        return cls(
            name=str(md.get("name", "")),
            namespace=str(md.get("namespace", "")),
            generation=int(md.get("generation") or 0),
            observed_generation=int(status.get("observedGeneration") or 0),
            # An unset spec.replicas means the API default of 1.
            desired_replicas=int(spec.get("replicas", 1)),
            ready_replicas=int(status.get("readyReplicas") or 0),
            updated_replicas=int(status.get("updatedReplicas") or 0),
            available_replicas=int(status.get("availableReplicas") or 0),
            images={str(c.get("name")): str(c.get("image")) for c in containers},
        )


class ClusterClient(Protocol):
    def get(self, kind: str, name: str, namespace: str | None) -> dict[str, Any] | None:
        """Live object, or None when it does not exist."""
        ...

    def apply(self, document: Mapping[str, Any]) -> ApplyAction: ...

    def deployment_state(
        self, namespace: str, name: str, *, timeout_s: float | None = None
    ) -> DeploymentState | None: ...

    def set_image(
        self, namespace: str, deployment: str, container: str, image: str
    ) -> None: ...

    def rollout_undo(self, namespace: str, deployment: str) -> None: ...

    def pods(self, namespace: str, selector: str | None = None) -> str: ...

    def describe(self, kind: str, name: str, namespace: str) -> str: ...

    def events(self, namespace: str) -> str: ...

    def logs(self, namespace: str, deployment: str, *, tail: int) -> str: ...


Runner = Callable[..., subprocess.CompletedProcess]


def parse_apply_action(stdout: str) -> ApplyAction:
    """`deployment.apps/notes-app configured` -> CONFIGURED."""
    for line in reversed(stdout.strip().splitlines()):
        for word in line.split():
            if word in ("created", "configured", "unchanged"):
                return ApplyAction(word)
    return ApplyAction.CONFIGURED


class KubectlClusterClient:
    """ClusterClient over the kubectl binary."""

    def __init__(
        self,
        *,
        kubectl: str = "kubectl",
        context: str | None = None,
        timeout_s: int = 60,
        runner: Runner = subprocess.run,
    ) -> None:
        self.kubectl = kubectl
        self.context = context
        self.timeout_s = timeout_s
        self._runner = runner

    def _argv(self, args: Sequence[str]) -> list[str]:
        argv = [self.kubectl]
        if self.context:
            argv += ["--context", self.context]
        return argv + list(args)

    def _run(
        self,
        args: Sequence[str],
        *,
        stdin: str | None = None,
        timeout_s: float | None = None,
    ) -> subprocess.CompletedProcess:
        argv = self._argv(args)
        timeout = self.timeout_s
        if timeout_s is not None:
            timeout = min(timeout, timeout_s)
        log.debug("kubectl.run", argv=argv, timeout_s=timeout)
        try:
            return self._runner(
                argv,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ClusterError(
                f"{' '.join(argv)} timed out after {timeout}s"
            ) from e
        except (subprocess.SubprocessError, OSError) as e:
            raise ClusterError(f"could not run {self.kubectl!r}: {e}") from e

    def _check(self, args: Sequence[str], *, stdin: str | None = None) -> str:
        proc = self._run(args, stdin=stdin)
        if proc.returncode != 0:
            raise ClusterError(
                f"kubectl {' '.join(args)} failed ({proc.returncode}): "
                f"{(proc.stderr or proc.stdout or '').strip()}"
            )
        return proc.stdout or ""

    @staticmethod
    def _ns(namespace: str | None) -> list[str]:
        return ["-n", namespace] if namespace else []

    def get(
        self,
        kind: str,
        name: str,
        namespace: str | None,
        *,
        timeout_s: float | None = None,
    ) -> dict[str, Any] | None:
        args = ["get", kind, name, *self._ns(namespace), "-o", "json"]
        proc = self._run(args, timeout_s=timeout_s)
        if proc.returncode != 0:
            if "NotFound" in (proc.stderr or ""):
                return None
            raise ClusterError(
                f"kubectl get {kind}/{name} failed: {(proc.stderr or '').strip()}"
            )
        return json.loads(proc.stdout or "{}")

    def apply(self, document: Mapping[str, Any]) -> ApplyAction:
        body = yaml.safe_dump(dict(document), sort_keys=False)
        proc = self._run(["apply", "-f", "-"], stdin=body)
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            if "AlreadyExists" in stderr:
                return ApplyAction.UNCHANGED
            raise ClusterError(f"kubectl apply failed: {stderr}")
        return parse_apply_action(proc.stdout or "")

    def deployment_state(
        self, namespace: str, name: str, *, timeout_s: float | None = None
    ) -> DeploymentState | None:
        obj = self.get("deployment", name, namespace, timeout_s=timeout_s)
        return None if obj is None else DeploymentState.from_object(obj)

    def set_image(
        self, namespace: str, deployment: str, container: str, image: str
    ) -> None:
        self._check(
            [
                "set",
                "image",
                f"deployment/{deployment}",
                f"{container}={image}",
                *self._ns(namespace),
            ]
        )

    def rollout_undo(self, namespace: str, deployment: str) -> None:
        self._check(
            ["rollout", "undo", f"deployment/{deployment}", *self._ns(namespace)]
        )

    def pods(self, namespace: str, selector: str | None = None) -> str:
        args = ["get", "pods", *self._ns(namespace), "-o", "wide"]
        if selector:
            args += ["-l", selector]
        return self._check(args)

    def describe(self, kind: str, name: str, namespace: str) -> str:
        return self._check(["describe", kind, name, *self._ns(namespace)])

    def events(self, namespace: str) -> str:
        return self._check(
            ["get", "events", *self._ns(namespace), "--sort-by=.lastTimestamp"]
        )

    def logs(self, namespace: str, deployment: str, *, tail: int) -> str:
        return self._check(
            [
                "logs",
                f"deployment/{deployment}",
                *self._ns(namespace),
                f"--tail={tail}",
                "--all-containers=true",
            ]
        )
