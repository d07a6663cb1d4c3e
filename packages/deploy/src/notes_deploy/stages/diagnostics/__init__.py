from .collector import (
    DIAGNOSTICS_FILE,
    DiagnosticsBundle,
    DiagnosticsCollector,
    collect_diagnostics,
)

__all__ = [
    "DIAGNOSTICS_FILE",
    "DiagnosticsBundle",
    "DiagnosticsCollector",
    "collect_diagnostics",
]
