from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Mapping

from notes_deploy.stages.apply import ApplyAction, ClusterError, DeploymentState
from notes_deploy.stages.build import StepResult


class FakeClock:
    """Monotonic clock that only moves when `sleep` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProducer:
    def __init__(self, fail: Mapping[str, BaseException] | None = None) -> None:
        self.fail = dict(fail or {})
        self.calls: list[str] = []

    def _step(self, name: str) -> StepResult:
        self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]
        return StepResult(
            name=name, command=("fake", name), returncode=0, duration_ms=1
        )

    def compile(self) -> StepResult:
        return self._step("compile")

    def test(self) -> StepResult:
        return self._step("test")

    def package(self) -> StepResult:
        return self._step("package")


class FakePackager:
    def __init__(self, image_id: str = "sha256:local-image") -> None:
        self.image_id = image_id
        self.builds: list[str] = []

    def build_image(self, *, context_dir: Path, repository: str, tag: str) -> str:
        self.builds.append(f"{repository}:{tag}")
        return self.image_id


class FakeRegistry:
    def __init__(
        self,
        *,
        existing: Mapping[str, str] | None = None,
        push_failures: list[BaseException] | None = None,
        local: str | None = None,
        content_digest: str = "sha256:content",
        local_failures: list[BaseException] | None = None,
        fail_logout: BaseException | None = None,
    ) -> None:
        self.tags: dict[str, str] = dict(existing or {})
        self.push_failures = list(push_failures or [])
        self.local = local
        self.content_digest = content_digest
        self.local_failures = list(local_failures or [])
        self.fail_logout = fail_logout
        self.local_calls = 0
        self.logins: list[str] = []
        self.logouts = 0
        self.pushes: list[str] = []

    def login(self, *, username: str, password: str, registry: str | None) -> None:
        self.logins.append(username)

    def logout(self) -> None:
        self.logouts += 1
        if self.fail_logout is not None:
            raise self.fail_logout

    def remote_digest(self, repository: str, tag: str) -> str | None:
        return self.tags.get(f"{repository}:{tag}")

    def local_digest(self, local_ref: str, repository: str) -> str | None:
        self.local_calls += 1
        if self.local_failures:
            raise self.local_failures.pop(0)
        return self.local

    def push(self, local_ref: str, repository: str, tag: str) -> str:
        self.pushes.append(tag)
        if self.push_failures:
            raise self.push_failures.pop(0)
        self.tags[f"{repository}:{tag}"] = self.content_digest
        return self.content_digest


def deployment_state(
    *,
    image: str,
    desired: int = 2,
    ready: int | None = None,
    updated: int | None = None,
    generation: int = 2,
    observed: int | None = None,
    container: str = "notes-app",
) -> DeploymentState:
    return DeploymentState(
        name="notes-app",
        namespace="notes-app",
        generation=generation,
        observed_generation=generation if observed is None else observed,
        desired_replicas=desired,
        ready_replicas=desired if ready is None else ready,
        updated_replicas=desired if updated is None else updated,
        available_replicas=desired if ready is None else ready,
        images={container: image},
    )


class FakeCluster:
    """
    In-memory cluster. `states` is consumed one per `deployment_state` call;
    the last entry repeats.
    """

    def __init__(
        self,
        *,
        fail_apply: Mapping[str, str] | None = None,
        states: list[DeploymentState | None] | None = None,
        fail_sections: set[str] | None = None,
        fail_set_image: str | None = None,
    ) -> None:
        self.objects: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self.fail_apply = dict(fail_apply or {})
        self.states = list(states or [])
        self.fail_sections = set(fail_sections or ())
        self.fail_set_image = fail_set_image
        self.state_timeouts: list[float | None] = []
        self.applied: list[str] = []
        self.images_set: list[str] = []
        self.undo_calls: list[str] = []

    def get(self, kind: str, name: str, namespace: str | None) -> dict[str, Any] | None:
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def apply(self, document: Mapping[str, Any]) -> ApplyAction:
        kind = document["kind"]
        name = document["metadata"]["name"]
        namespace = document["metadata"].get("namespace")
        if f"{kind}/{name}" in self.fail_apply:
            raise ClusterError(self.fail_apply[f"{kind}/{name}"])
        key = (kind, namespace, name)
        action = ApplyAction.CONFIGURED if key in self.objects else ApplyAction.CREATED
        self.objects[key] = copy.deepcopy(dict(document))
        self.applied.append(f"{kind}/{name}")
        return action

    def deployment_state(
        self, namespace: str, name: str, *, timeout_s: float | None = None
    ) -> DeploymentState | None:
        self.state_timeouts.append(timeout_s)
        if not self.states:
            return None
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]

    def set_image(
        self, namespace: str, deployment: str, container: str, image: str
    ) -> None:
        if self.fail_set_image is not None:
            raise ClusterError(self.fail_set_image)
        self.images_set.append(image)

    def rollout_undo(self, namespace: str, deployment: str) -> None:
        self.undo_calls.append(f"{namespace}/{deployment}")

    def _section(self, name: str) -> str:
        if name in self.fail_sections:
            raise ClusterError(f"{name}: connection refused")
        return f"{name} output"

    def pods(self, namespace: str, selector: str | None = None) -> str:
        return self._section("pods")

    def describe(self, kind: str, name: str, namespace: str) -> str:
        return self._section("deployment")

    def events(self, namespace: str) -> str:
        return self._section("events")

    def logs(self, namespace: str, deployment: str, *, tail: int) -> str:
        return self._section("logs")
