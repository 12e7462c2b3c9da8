"""Job executor adapter: runs one Job's steps in an acquired execution environment.

This module is intentionally app-agnostic and must not import `ci_validate.*`. Concrete
backends (local subprocess, remote runners, in-memory fakes) implement the
`ExecutionBackend` / `ExecutionEnvironment` protocols.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Protocol

from validatekit.engine.model import (
    Job,
    JobResult,
    Outcome,
    SourceArtifact,
    Step,
    StepResult,
    utc_now_iso8601,
)
from validatekit.errors import InfrastructureError

_OUTPUT_TAIL_CHARS = 20_000


@dataclass(frozen=True)
class StepExecution:
    """What the external environment reports for one step."""

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class ExecutionEnvironment(Protocol):
    selector: str

    def execute(self, step: Step, *, timeout_s: float | None = None) -> StepExecution:
        ...


class ExecutionBackend(Protocol):
    def acquire(
        self, job: Job, artifact: SourceArtifact | None
    ) -> AbstractContextManager[ExecutionEnvironment]:
        """Return an isolated, ephemeral environment for `job`.

        Raises EnvironmentUnavailable when no environment matches `job.environment`.
        """


class CancellationToken:
    """Stage-wide cooperative cancellation signal (set once, never cleared)."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None

    def cancel(self, reason: str) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason


class JobControl:
    """Per-job checkpoint state: the stage token plus an externally imposed forced failure.

    `force_fail` is the hook for platform-level timeouts. It is honoured at the next
    checkpoint (before acquisition, between steps, after the last step).
    """

    def __init__(self, token: CancellationToken | None = None):
        self.token = token or CancellationToken()
        self._lock = threading.Lock()
        self._forced_failure: str | None = None

    def force_fail(self, reason: str) -> None:
        with self._lock:
            if self._forced_failure is None:
                self._forced_failure = reason

    @property
    def forced_failure(self) -> str | None:
        return self._forced_failure


class StepRecorder(Protocol):
    def on_job_start(self, job: Job) -> None:
        ...

    def on_step_start(self, job: Job, step: Step, *, index: int) -> None:
        ...

    def on_step_end(self, job: Job, record: StepResult) -> None:
        ...

    def on_job_end(self, result: JobResult) -> None:
        ...


class DefaultStepRecorder:
    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)

    def on_job_start(self, job: Job) -> None:
        tokens = [f"env={job.environment}", f"steps={len(job.steps)}"]
        if job.timeout_s is not None:
            tokens.append(f"timeout_s={job.timeout_s:g}")
        self.logger.info("Job: %s (%s)", job.job_id, ", ".join(tokens))

    def on_step_start(self, job: Job, step: Step, *, index: int) -> None:
        self.logger.info(
            "Step: %s/%s (action=%s, index=%d)", job.job_id, step.name, step.action, index + 1
        )

    def on_step_end(self, job: Job, record: StepResult) -> None:
        if record.status == "succeeded":
            self.logger.info("Completed step %s/%s", job.job_id, record.name)
            return
        if record.status == "skipped":
            self.logger.debug("Skipped step %s/%s", job.job_id, record.name)
            return
        if record.status == "errored":
            self.logger.error("Step errored (infrastructure): %s/%s", job.job_id, record.name)
            return
        suffix = " (timed out)" if record.timed_out else ""
        self.logger.error(
            "Step failed: %s/%s exit_code=%s%s", job.job_id, record.name, record.exit_code, suffix
        )
        tail = (record.stderr or record.stdout or "").strip()
        if tail:
            self.logger.debug("Output tail for %s/%s:\n%s", job.job_id, record.name, tail[-2000:])

    def on_job_end(self, result: JobResult) -> None:
        outcome = result.outcome
        if outcome is Outcome.SUCCEEDED:
            self.logger.info("Job succeeded: %s", result.job.job_id)
        elif outcome is Outcome.FAILED:
            self.logger.error("Job failed: %s (%s)", result.job.job_id, result.failure_reason)
        elif outcome is Outcome.CANCELLED:
            self.logger.warning("Job cancelled: %s (%s)", result.job.job_id, result.cancel_reason)
        else:
            self.logger.error(
                "Job errored (infrastructure): %s (%s)", result.job.job_id, result.error
            )


class NullStepRecorder:
    def on_job_start(self, job: Job) -> None:
        return

    def on_step_start(self, job: Job, step: Step, *, index: int) -> None:
        return

    def on_step_end(self, job: Job, record: StepResult) -> None:
        return

    def on_job_end(self, result: JobResult) -> None:
        return


def _tail(text: Any) -> str:
    value = "" if text is None else str(text)
    if len(value) <= _OUTPUT_TAIL_CHARS:
        return value
    return value[-_OUTPUT_TAIL_CHARS:]


class JobRunner:
    def __init__(self, *, backend: ExecutionBackend, recorder: StepRecorder | None = None):
        self._backend = backend
        self._recorder = recorder or DefaultStepRecorder()
        self._validate_recorder(self._recorder)

    def _validate_recorder(self, recorder: StepRecorder) -> None:
        required = ("on_job_start", "on_step_start", "on_step_end", "on_job_end")
        for name in required:
            method = getattr(recorder, name, None)
            if method is None or not callable(method):
                raise TypeError(f"Step recorder missing required method: {name}")

    def run(
        self,
        job: Job,
        *,
        artifact: SourceArtifact | None = None,
        control: JobControl | None = None,
    ) -> JobResult:
        control = control or JobControl()
        result = JobResult(job=job)

        if control.token.cancelled:
            result.cancel_reason = control.token.reason
            result.transition(Outcome.CANCELLED)
            self._skip_remaining(job, result, start=0)
            self._recorder.on_job_end(result)
            return result

        deadline = time.monotonic() + float(job.timeout_s) if job.timeout_s is not None else None
        try:
            with self._backend.acquire(job, artifact) as environment:
                result.transition(Outcome.RUNNING)
                self._recorder.on_job_start(job)
                result.transition(self._run_steps(job, environment, result, control, deadline))
        except InfrastructureError as exc:
            if exc.job_id is None:
                exc.job_id = job.job_id
            if exc.environment is None:
                exc.environment = job.environment
            result.error = str(exc)
            if not result.outcome.is_terminal:
                result.transition(Outcome.ERRORED)
            elif result.outcome is not Outcome.FAILED:
                # Teardown failed after the steps finished. A step failure keeps its verdict.
                result.outcome = Outcome.ERRORED
            self._skip_remaining(job, result, start=len(result.steps))
        except Exception as exc:
            self._attach_job_error(exc, job=job, step=result.steps[-1].name if result.steps else None)
            raise

        self._recorder.on_job_end(result)
        return result

    def _run_steps(
        self,
        job: Job,
        environment: ExecutionEnvironment,
        result: JobResult,
        control: JobControl,
        deadline: float | None,
    ) -> Outcome:
        for index, step in enumerate(job.steps):
            if control.forced_failure is not None:
                result.failure_reason = control.forced_failure
                self._skip_remaining(job, result, start=index)
                return Outcome.FAILED
            if control.token.cancelled:
                result.cancel_reason = control.token.reason
                self._skip_remaining(job, result, start=index)
                return Outcome.CANCELLED

            remaining: float | None = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    result.failure_reason = f"job exceeded timeout of {job.timeout_s:g}s"
                    self._skip_remaining(job, result, start=index)
                    return Outcome.FAILED

            self._recorder.on_step_start(job, step, index=index)
            started_at = utc_now_iso8601()
            try:
                execution = environment.execute(step, timeout_s=remaining)
            except InfrastructureError:
                record = StepResult(
                    name=step.name,
                    action=step.action,
                    status="errored",
                    params=dict(step.params),
                    started_at=started_at,
                    finished_at=utc_now_iso8601(),
                )
                result.steps.append(record)
                result.errored_step = step.name
                self._recorder.on_step_end(job, record)
                raise
            if not isinstance(execution, StepExecution):
                raise TypeError(
                    f"Environment returned non-StepExecution for {job.job_id}/{step.name} "
                    f"(type={type(execution).__name__})"
                )

            record = StepResult(
                name=step.name,
                action=step.action,
                status="succeeded" if execution.ok else "failed",
                exit_code=execution.exit_code,
                stdout=_tail(execution.stdout),
                stderr=_tail(execution.stderr),
                params=dict(step.params),
                started_at=started_at,
                finished_at=utc_now_iso8601(),
                timed_out=execution.timed_out,
            )
            result.steps.append(record)
            self._recorder.on_step_end(job, record)

            if not execution.ok:
                result.failed_step = step.name
                if execution.timed_out:
                    result.failure_reason = f"step {step.name} timed out"
                else:
                    result.failure_reason = f"step {step.name} exited with {execution.exit_code}"
                self._skip_remaining(job, result, start=index + 1)
                return Outcome.FAILED

        if control.forced_failure is not None:
            result.failure_reason = control.forced_failure
            return Outcome.FAILED
        return Outcome.SUCCEEDED

    def _skip_remaining(self, job: Job, result: JobResult, *, start: int) -> None:
        for step in job.steps[start:]:
            record = StepResult(
                name=step.name, action=step.action, status="skipped", params=dict(step.params)
            )
            result.steps.append(record)
            self._recorder.on_step_end(job, record)

    def _attach_job_error(self, exc: Exception, *, job: Job, step: str | None) -> None:
        for attr, value in (("job_id", job.job_id), ("job_step", step)):
            if not hasattr(exc, attr):
                try:
                    setattr(exc, attr, value)
                except Exception:
                    pass
