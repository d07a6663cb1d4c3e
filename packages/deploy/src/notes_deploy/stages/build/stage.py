from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from notes_deploy.pipeline.context import RunContext
from notes_deploy.pipeline.events import EventType

from .builder import ArtifactBuilder


@dataclass(slots=True)
class CompileStage:
    builder: ArtifactBuilder
    stage_id: str = "build"

    def run(self, ctx: RunContext) -> dict[str, Any]:
        step = self.builder.compile()
        ctx.emit(EventType.BUILD_STEP_FINISH, stage=self.stage_id, **step.to_dict())
        return {"step": step.to_dict(), "_metrics": {"duration_ms": step.duration_ms}}


@dataclass(slots=True)
class TestStage:
    builder: ArtifactBuilder
    stage_id: str = "test"

    __test__ = False

    def run(self, ctx: RunContext) -> dict[str, Any]:
        step = self.builder.test()
        ctx.emit(EventType.BUILD_STEP_FINISH, stage=self.stage_id, **step.to_dict())
        return {"step": step.to_dict(), "_metrics": {"duration_ms": step.duration_ms}}


@dataclass(slots=True)
class PackageStage:
    builder: ArtifactBuilder
    stage_id: str = "package"

    def run(self, ctx: RunContext) -> dict[str, Any]:
        artifact = self.builder.package(ctx.config.build_tag)
        ctx.emit(EventType.ARTIFACT_PACKAGED, stage=self.stage_id, **artifact.to_dict())
        return {"artifact": artifact}
