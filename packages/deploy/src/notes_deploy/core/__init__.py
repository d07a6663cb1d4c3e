from .cancel import CancelToken
from .config import PipelineConfig, ResourceRequirements, Settings, load_settings
from .errors import (
    ApplyFailure,
    BuildFailure,
    CredentialError,
    DeployError,
    DiagnosticsUnavailable,
    HealthDown,
    HealthTimeout,
    InternalError,
    PipelineAborted,
    PublishFailure,
    RolloutConfigError,
    RolloutTimeout,
    StageError,
    TestFailure,
    TransientError,
    stage_error_from_exc,
)
from .fs import atomic_write_text, safe_unlink
from .hashing import sha256_bytes, sha256_json
from .json import atomic_write_json, json_default, read_json, stable_json_dumps
from .logging import ILogger, bind, clear_bindings, configure_logging, get_logger
from .retry import (
    PollOutcome,
    RetriesExhausted,
    RetryPolicy,
    call_with_retries,
    poll_until,
)
from .time import monotonic_ms, utc_now_iso

__all__ = [
    "ApplyFailure",
    "BuildFailure",
    "CancelToken",
    "CredentialError",
    "DeployError",
    "DiagnosticsUnavailable",
    "HealthDown",
    "HealthTimeout",
    "ILogger",
    "InternalError",
    "PipelineAborted",
    "PipelineConfig",
    "PollOutcome",
    "PublishFailure",
    "ResourceRequirements",
    "RetriesExhausted",
    "RetryPolicy",
    "RolloutConfigError",
    "RolloutTimeout",
    "Settings",
    "StageError",
    "TestFailure",
    "TransientError",
    "atomic_write_json",
    "atomic_write_text",
    "bind",
    "call_with_retries",
    "clear_bindings",
    "configure_logging",
    "get_logger",
    "json_default",
    "load_settings",
    "monotonic_ms",
    "poll_until",
    "read_json",
    "safe_unlink",
    "sha256_bytes",
    "sha256_json",
    "stable_json_dumps",
    "stage_error_from_exc",
    "utc_now_iso",
]
