"""Provisioning pipelines.

Phase execution and the terminal readiness wait live here. The local and
production pipelines, the platform collaborators and the provider manager
are imported from their own modules (`adhar_cli.pipeline.local`,
`adhar_cli.pipeline.production`, `adhar_cli.pipeline.manager`) since they
depend on the bootstrap and provider packages.
"""

from .phases import (
    EchoProgress,
    LoggingProgress,
    NullProgress,
    Phase,
    PhaseOutcome,
    PhaseSkipped,
    PhaseStatus,
    Pipeline,
    PipelineResult,
    ProgressSink,
)
from .wait import ReadinessWait, WaitOutcome, WaitState

__all__ = [
    # Phases
    "Phase",
    "PhaseOutcome",
    "PhaseSkipped",
    "PhaseStatus",
    "Pipeline",
    "PipelineResult",
    # Progress
    "EchoProgress",
    "LoggingProgress",
    "NullProgress",
    "ProgressSink",
    # Readiness wait
    "ReadinessWait",
    "WaitOutcome",
    "WaitState",
]
