from .probe import HttpHealthProbe, ProbeKind, ProbeOutcome, classify, make_http_client
from .stage import VerifyStage
from .verifier import (
    HealthCheckResult,
    HealthProbe,
    HealthVerdict,
    HealthVerifier,
    MetricsCheck,
    check_metrics_endpoint,
)

__all__ = [
    "HealthCheckResult",
    "HealthProbe",
    "HealthVerdict",
    "HealthVerifier",
    "HttpHealthProbe",
    "MetricsCheck",
    "ProbeKind",
    "ProbeOutcome",
    "VerifyStage",
    "check_metrics_endpoint",
    "classify",
    "make_http_client",
]
