"""Reusable validation-pipeline kernel (model, matrix expansion, execution, aggregation).

This package is intentionally independent of `ci_validate.*`. Workflow file formats,
concrete execution backends and reporting live in the consuming application.
"""

from validatekit.config_namespace import ConfigNamespace
from validatekit.engine import (
    AxisSet,
    CancellationToken,
    DefaultStepRecorder,
    Event,
    ExecutionBackend,
    ExecutionEnvironment,
    Job,
    JobControl,
    JobResult,
    JobRunner,
    NullStepRecorder,
    Outcome,
    Pipeline,
    PipelineResult,
    SourceArtifact,
    StageOrchestrator,
    StageResult,
    StageSpec,
    Step,
    StepExecution,
    StepRecorder,
    StepResult,
    TriggerFilter,
    TriggerPolicy,
    aggregate,
    expand,
    run_pipeline,
    validate_stages,
)
from validatekit.errors import ConfigurationError, EnvironmentUnavailable, InfrastructureError
from validatekit.stage_registry import StageRegistry

__all__ = [
    "AxisSet",
    "CancellationToken",
    "ConfigNamespace",
    "ConfigurationError",
    "DefaultStepRecorder",
    "EnvironmentUnavailable",
    "Event",
    "ExecutionBackend",
    "ExecutionEnvironment",
    "InfrastructureError",
    "Job",
    "JobControl",
    "JobResult",
    "JobRunner",
    "NullStepRecorder",
    "Outcome",
    "Pipeline",
    "PipelineResult",
    "SourceArtifact",
    "StageOrchestrator",
    "StageRegistry",
    "StageResult",
    "StageSpec",
    "Step",
    "StepExecution",
    "StepRecorder",
    "StepResult",
    "TriggerFilter",
    "TriggerPolicy",
    "aggregate",
    "expand",
    "run_pipeline",
    "validate_stages",
]
