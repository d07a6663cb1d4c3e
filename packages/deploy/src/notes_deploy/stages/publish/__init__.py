from .publisher import PublishResult, RegistryPublisher
from .registry import DockerRegistryClient, RegistryClient
from .stage import PublishStage

__all__ = [
    "DockerRegistryClient",
    "PublishResult",
    "PublishStage",
    "RegistryClient",
    "RegistryPublisher",
]
