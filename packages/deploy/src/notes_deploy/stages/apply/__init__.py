from .applier import ApplyResult, ClusterStateApplier, ResourceOutcome
from .cluster import (
    ApplyAction,
    ClusterClient,
    ClusterError,
    DeploymentState,
    KubectlClusterClient,
)
from .resources import HASH_ANNOTATION, ClusterResourceSet, ResourceSpec
from .stage import ApplyStage, app_namespace, monitoring_namespace

__all__ = [
    "HASH_ANNOTATION",
    "ApplyAction",
    "ApplyResult",
    "ApplyStage",
    "ClusterClient",
    "ClusterError",
    "ClusterResourceSet",
    "ClusterStateApplier",
    "DeploymentState",
    "KubectlClusterClient",
    "ResourceOutcome",
    "ResourceSpec",
    "app_namespace",
    "monitoring_namespace",
]
