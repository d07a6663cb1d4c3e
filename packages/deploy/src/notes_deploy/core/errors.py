from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from notes_deploy.stages.apply.applier import ApplyResult
    from notes_deploy.stages.rollout.controller import RolloutStatus
    from notes_deploy.stages.verify.verifier import HealthCheckResult


class DeployError(RuntimeError):
    """Base error"""

    def details(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True, slots=True)
class StageError:
    """
    A normalized error record for stage failures.
    """

    exc_type: str
    message: str
    traceback: str
    details: dict[str, Any] = field(default_factory=dict)


def stage_error_from_exc(exc: BaseException) -> StageError:
    details = exc.details() if isinstance(exc, DeployError) else {}
    return StageError(
        exc_type=type(exc).__name__,
        message=str(exc),
        traceback=traceback.format_exc(),
        details=details,
    )


class TransientError(DeployError):
    """
    Retryable failures such as network timeouts, registry 5xx, dropped connections
    """


class CredentialError(DeployError):
    """Unknown handle, or use of a revoked credential"""


class BuildFailure(DeployError):
    """Compile or packaging failure. Never retried."""


class TestFailure(BuildFailure):
    """Test suite failure, kept distinct from compile/packaging failures"""

    __test__ = False


class PublishFailure(DeployError):
    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts

    def details(self) -> dict[str, Any]:
        return {"attempts": self.attempts}


class ApplyFailure(DeployError):
    """
    One or more resources failed to apply. Partial state is reported, not rolled back.
    """

    def __init__(self, message: str, *, result: "ApplyResult | None" = None) -> None:
        super().__init__(message)
        self.result = result

    def details(self) -> dict[str, Any]:
        if self.result is None:
            return {}
        return {
            "succeeded": self.result.succeeded,
            "failed": self.result.failed,
        }


class RolloutConfigError(DeployError):
    """
    The deployment is missing, scaled to zero, or could not be read or updated.
    Raised only before the image was changed.
    """


class RolloutTimeout(DeployError):
    def __init__(self, message: str, *, status: "RolloutStatus") -> None:
        super().__init__(message)
        self.status = status

    def details(self) -> dict[str, Any]:
        return self.status.to_dict()


class HealthTimeout(DeployError):
    def __init__(self, message: str, *, result: "HealthCheckResult") -> None:
        super().__init__(message)
        self.result = result

    def details(self) -> dict[str, Any]:
        return self.result.to_dict()


class HealthDown(DeployError):
    def __init__(self, message: str, *, result: "HealthCheckResult") -> None:
        super().__init__(message)
        self.result = result

    def details(self) -> dict[str, Any]:
        return self.result.to_dict()


class DiagnosticsUnavailable(DeployError):
    """Raised inside the diagnostics collector only; never escapes it"""


class PipelineAborted(DeployError):
    """The run was cancelled while a stage was executing or waiting"""


class InternalError(DeployError):
    """Bugs or invariant violation in our code"""
