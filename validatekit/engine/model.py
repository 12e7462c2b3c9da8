"""Data model for validation stages, matrix jobs, steps and outcomes.

This module is intentionally app-agnostic and must not import `ci_validate.*`.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, TypeAlias

from validatekit.errors import ConfigurationError

EventKind: TypeAlias = Literal["push", "pull_request"]
ALLOWED_EVENT_KINDS: tuple[str, ...] = ("push", "pull_request")

StepStatus: TypeAlias = Literal["succeeded", "failed", "skipped", "errored"]

RUN_ACTION = "run"


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class Outcome(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # Skipped because a sibling failed under fail-fast.
    CANCELLED = "cancelled"
    # The execution environment failed; not a verdict on the code.
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self not in (Outcome.PENDING, Outcome.RUNNING)


_ALLOWED_TRANSITIONS: dict[Outcome, frozenset[Outcome]] = {
    Outcome.PENDING: frozenset({Outcome.RUNNING, Outcome.CANCELLED, Outcome.ERRORED}),
    Outcome.RUNNING: frozenset(
        {Outcome.SUCCEEDED, Outcome.FAILED, Outcome.CANCELLED, Outcome.ERRORED}
    ),
}


def _require_name(value: Any, label: str) -> str:
    if not isinstance(value, str):
        raise ConfigurationError(f"{label} must be a string (type={type(value).__name__})")
    name = value.strip()
    if not name:
        raise ConfigurationError(f"{label} cannot be empty")
    return name


@dataclass(frozen=True)
class Event:
    """An externally raised repository event (push or pull request)."""

    kind: str
    ref: str | None = None
    sha: str | None = None
    base_ref: str | None = None
    changed_paths: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        kind = str(self.kind or "").strip().lower()
        if kind not in ALLOWED_EVENT_KINDS:
            allowed = ", ".join(ALLOWED_EVENT_KINDS)
            raise ConfigurationError(f"Event.kind must be one of: {allowed} (got {self.kind!r})")
        object.__setattr__(self, "kind", kind)
        object.__setattr__(
            self,
            "changed_paths",
            tuple(str(p).strip() for p in self.changed_paths if str(p).strip()),
        )

    @property
    def branch(self) -> str | None:
        if not self.ref:
            return None
        for prefix in ("refs/heads/", "refs/tags/"):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix) :]
        return self.ref

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "ref": self.ref,
            "sha": self.sha,
            "base_ref": self.base_ref,
            "changed_paths": list(self.changed_paths),
        }


@dataclass(frozen=True)
class SourceArtifact:
    """Immutable reference to the source tree every job validates."""

    path: str
    revision: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", _require_name(self.path, "SourceArtifact.path"))


@dataclass(frozen=True)
class Step:
    """One ordered unit of work: a command invocation (`action="run"`) or a setup action."""

    name: str
    action: str = RUN_ACTION
    command: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _require_name(self.name, "Step.name"))
        object.__setattr__(self, "action", _require_name(self.action, f"Step {self.name} action"))

        if self.action == RUN_ACTION:
            if not isinstance(self.command, str) or not self.command.strip():
                raise ConfigurationError(f"Step {self.name} runs a command but none is set")
        elif self.command is not None:
            raise ConfigurationError(
                f"Step {self.name} sets both an action ({self.action}) and a command"
            )

        if not isinstance(self.params, Mapping):
            raise ConfigurationError(
                f"Step {self.name} params must be a mapping (type={type(self.params).__name__})"
            )
        if not isinstance(self.env, Mapping):
            raise ConfigurationError(
                f"Step {self.name} env must be a mapping (type={type(self.env).__name__})"
            )
        object.__setattr__(self, "params", dict(self.params))
        object.__setattr__(self, "env", {str(k): str(v) for k, v in self.env.items()})

    @property
    def is_command(self) -> bool:
        return self.action == RUN_ACTION


@dataclass(frozen=True)
class AxisSet:
    """Ordered axis name -> ordered values. Expansion is row-major in declaration order."""

    axes: tuple[tuple[str, tuple[Any, ...]], ...] = ()

    def __post_init__(self) -> None:
        normalized: list[tuple[str, tuple[Any, ...]]] = []
        seen: set[str] = set()
        for raw_name, raw_values in self.axes:
            name = _require_name(raw_name, "Matrix axis name")
            if name in seen:
                raise ConfigurationError(f"Duplicate matrix axis: {name}")
            seen.add(name)
            if isinstance(raw_values, (str, bytes)) or not isinstance(raw_values, (list, tuple)):
                raise ConfigurationError(
                    f"Matrix axis {name} must be a list of values (type={type(raw_values).__name__})"
                )
            normalized.append((name, tuple(raw_values)))
        object.__setattr__(self, "axes", tuple(normalized))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "AxisSet":
        if not mapping:
            return cls()
        return cls(axes=tuple((name, values) for name, values in mapping.items()))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(name for name, _values in self.axes)

    def combination_count(self) -> int:
        count = 1
        for _name, values in self.axes:
            count *= len(values)
        return count


@dataclass(frozen=True)
class StageSpec:
    """A named, independently schedulable group of validation work."""

    name: str
    steps: tuple[Step, ...]
    axes: AxisSet = field(default_factory=AxisSet)
    runs_on: str = "ubuntu-latest"
    display_name: str | None = None
    fail_fast: bool = False
    timeout_s: float | None = None
    needs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        name = _require_name(self.name, "Stage name")
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "runs_on", _require_name(self.runs_on, f"Stage {name} runs_on"))

        steps = tuple(self.steps)
        if not steps:
            raise ConfigurationError(f"Stage {name} declares no steps")
        for idx, step in enumerate(steps):
            if not isinstance(step, Step):
                raise ConfigurationError(
                    f"Stage {name} steps[{idx}] must be a Step (type={type(step).__name__})"
                )
        object.__setattr__(self, "steps", steps)

        if not isinstance(self.axes, AxisSet):
            raise ConfigurationError(
                f"Stage {name} axes must be an AxisSet (type={type(self.axes).__name__})"
            )
        if not isinstance(self.fail_fast, bool):
            raise ConfigurationError(f"Stage {name} fail_fast must be a boolean")
        if self.timeout_s is not None and float(self.timeout_s) <= 0:
            raise ConfigurationError(f"Stage {name} timeout_s must be > 0 (got {self.timeout_s})")

        needs = tuple(_require_name(dep, f"Stage {name} needs[]") for dep in self.needs)
        if name in needs:
            raise ConfigurationError(f"Stage {name} cannot depend on itself")
        object.__setattr__(self, "needs", needs)

        if self.display_name is not None:
            object.__setattr__(
                self, "display_name", _require_name(self.display_name, f"Stage {name} display_name")
            )

    @property
    def label(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class Job:
    """One concrete point of a stage's matrix. Immutable descriptor; results live in JobResult."""

    stage: str
    index: int
    matrix: tuple[tuple[str, Any], ...]
    environment: str
    steps: tuple[Step, ...]
    timeout_s: float | None = None

    @property
    def job_id(self) -> str:
        if not self.matrix:
            return self.stage
        values = ", ".join(str(value) for _axis, value in self.matrix)
        return f"{self.stage} ({values})"

    def matrix_dict(self) -> dict[str, Any]:
        return {axis: value for axis, value in self.matrix}


@dataclass
class StepResult:
    name: str
    action: str
    status: StepStatus
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    started_at: str | None = None
    finished_at: str | None = None
    timed_out: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "action": self.action,
            "status": self.status,
            "exit_code": self.exit_code,
            "params": dict(self.params),
            "stdout": self.stdout,
            "stderr": self.stderr,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "timed_out": self.timed_out,
        }


@dataclass
class JobResult:
    job: Job
    outcome: Outcome = Outcome.PENDING
    steps: list[StepResult] = field(default_factory=list)
    failed_step: str | None = None
    failure_reason: str | None = None
    error: str | None = None
    errored_step: str | None = None
    cancel_reason: str | None = None
    started_at: str | None = None
    finished_at: str | None = None

    def transition(self, outcome: Outcome) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.outcome, frozenset())
        if outcome not in allowed:
            raise ValueError(
                f"Invalid outcome transition for {self.job.job_id}: "
                f"{self.outcome.value} -> {outcome.value}"
            )
        self.outcome = outcome
        if outcome is Outcome.RUNNING:
            self.started_at = utc_now_iso8601()
        elif outcome.is_terminal:
            self.finished_at = utc_now_iso8601()

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job.job_id,
            "stage": self.job.stage,
            "matrix": self.job.matrix_dict(),
            "environment": self.job.environment,
            "outcome": self.outcome.value,
            "failed_step": self.failed_step,
            "failure_reason": self.failure_reason,
            "error": self.error,
            "errored_step": self.errored_step,
            "cancel_reason": self.cancel_reason,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "steps": [step.to_dict() for step in self.steps],
        }


@dataclass(frozen=True)
class StageResult:
    stage: str
    jobs: tuple[JobResult, ...]
    display_name: str | None = None

    @property
    def passed(self) -> bool:
        return bool(self.jobs) and all(job.succeeded for job in self.jobs)

    def failed_jobs(self) -> tuple[JobResult, ...]:
        return tuple(job for job in self.jobs if not job.succeeded)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.stage,
            "display_name": self.display_name,
            "passed": self.passed,
            "jobs": [job.to_dict() for job in self.jobs],
        }


@dataclass(frozen=True)
class PipelineResult:
    succeeded: bool
    stages: tuple[StageResult, ...]
    name: str | None = None

    def stage(self, name: str) -> StageResult:
        for result in self.stages:
            if result.stage == name:
                return result
        raise KeyError(name)

    @property
    def infrastructure_errors(self) -> tuple[dict[str, Any], ...]:
        return tuple(
            {
                "stage": stage.stage,
                "job_id": job.job.job_id,
                "step": job.errored_step,
                "error": job.error,
            }
            for stage in self.stages
            for job in stage.jobs
            if job.outcome is Outcome.ERRORED
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "succeeded": self.succeeded,
            "infrastructure_errors": list(self.infrastructure_errors),
            "stages": [stage.to_dict() for stage in self.stages],
        }
