from .apply import ApplyStage, ClusterStateApplier
from .build import ArtifactBuilder, CompileStage, PackageStage, TestStage
from .diagnostics import DiagnosticsCollector, collect_diagnostics
from .publish import PublishStage, RegistryPublisher
from .rollout import RolloutController, RolloutStage
from .verify import HealthVerifier, VerifyStage

__all__ = [
    "ApplyStage",
    "ArtifactBuilder",
    "ClusterStateApplier",
    "CompileStage",
    "DiagnosticsCollector",
    "HealthVerifier",
    "PackageStage",
    "PublishStage",
    "RegistryPublisher",
    "RolloutController",
    "RolloutStage",
    "TestStage",
    "VerifyStage",
    "collect_diagnostics",
]
