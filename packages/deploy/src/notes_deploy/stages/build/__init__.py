from .builder import (
    Artifact,
    ArtifactBuilder,
    BuildProducer,
    CommandBuildProducer,
    DockerImagePackager,
    ImagePackager,
    StepResult,
)
from .stage import CompileStage, PackageStage, TestStage

__all__ = [
    "Artifact",
    "ArtifactBuilder",
    "BuildProducer",
    "CommandBuildProducer",
    "CompileStage",
    "DockerImagePackager",
    "ImagePackager",
    "PackageStage",
    "StepResult",
    "TestStage",
]
