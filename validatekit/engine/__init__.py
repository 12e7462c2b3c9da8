"""Engine primitives: data model, matrix expansion, job execution, orchestration."""

from validatekit.engine.aggregate import aggregate, summarize
from validatekit.engine.executor import (
    CancellationToken,
    DefaultStepRecorder,
    ExecutionBackend,
    ExecutionEnvironment,
    JobControl,
    JobRunner,
    NullStepRecorder,
    StepExecution,
    StepRecorder,
)
from validatekit.engine.matrix import expand, interpolate, validate_stages
from validatekit.engine.model import (
    ALLOWED_EVENT_KINDS,
    AxisSet,
    Event,
    Job,
    JobResult,
    Outcome,
    PipelineResult,
    SourceArtifact,
    StageResult,
    StageSpec,
    Step,
    StepResult,
    utc_now_iso8601,
)
from validatekit.engine.orchestrator import Pipeline, StageOrchestrator, run_pipeline
from validatekit.engine.trigger import TriggerFilter, TriggerPolicy

__all__ = [
    "ALLOWED_EVENT_KINDS",
    "AxisSet",
    "CancellationToken",
    "DefaultStepRecorder",
    "Event",
    "ExecutionBackend",
    "ExecutionEnvironment",
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
    "interpolate",
    "run_pipeline",
    "summarize",
    "utc_now_iso8601",
]
