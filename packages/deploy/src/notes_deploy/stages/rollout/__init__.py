from .controller import DeploymentRef, RolloutController, RolloutStatus, is_converged
from .stage import IMAGE_SET_KEY, RolloutStage

__all__ = [
    "IMAGE_SET_KEY",
    "DeploymentRef",
    "RolloutController",
    "RolloutStage",
    "RolloutStatus",
    "is_converged",
]
