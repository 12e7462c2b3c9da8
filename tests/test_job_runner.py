import logging
from contextlib import contextmanager

import pytest

from validatekit.engine.executor import (
    CancellationToken,
    DefaultStepRecorder,
    JobControl,
    JobRunner,
    NullStepRecorder,
    StepExecution,
)
from validatekit.engine.model import Job, Outcome, SourceArtifact, Step
from validatekit.errors import EnvironmentUnavailable, InfrastructureError


def _job(*step_names, timeout_s=None):
    steps = tuple(Step(name=name, command=f"run {name}") for name in step_names)
    return Job(
        stage="test",
        index=0,
        matrix=(("os", "ubuntu-latest"),),
        environment="ubuntu-latest",
        steps=steps,
        timeout_s=timeout_s,
    )


class ScriptedEnvironment:
    def __init__(self, selector, exit_codes, calls):
        self.selector = selector
        self._exit_codes = exit_codes
        self._calls = calls

    def execute(self, step, *, timeout_s=None):
        self._calls.append((step.name, timeout_s))
        code = self._exit_codes.get(step.name, 0)
        if isinstance(code, Exception):
            raise code
        return StepExecution(exit_code=code, stdout=f"{step.name} out\n", stderr="")


class ScriptedBackend:
    def __init__(self, exit_codes=None, *, acquire_error=None, teardown_error=None):
        self.exit_codes = dict(exit_codes or {})
        self.acquire_error = acquire_error
        self.teardown_error = teardown_error
        self.calls = []
        self.artifacts = []

    @contextmanager
    def acquire(self, job, artifact):
        if self.acquire_error is not None:
            raise self.acquire_error
        self.artifacts.append(artifact)
        yield ScriptedEnvironment(job.environment, self.exit_codes, self.calls)
        if self.teardown_error is not None:
            raise self.teardown_error


def test_all_steps_succeed():
    backend = ScriptedBackend()
    artifact = SourceArtifact(path="/src", revision="abc123")
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())

    result = runner.run(_job("checkout", "toolchain", "cargo check"), artifact=artifact)

    assert result.outcome is Outcome.SUCCEEDED
    assert [step.status for step in result.steps] == ["succeeded"] * 3
    assert [name for name, _timeout in backend.calls] == ["checkout", "toolchain", "cargo check"]
    assert backend.artifacts == [artifact]
    assert result.started_at is not None and result.finished_at is not None


def test_first_failure_short_circuits_remaining_steps():
    backend = ScriptedBackend({"cargo fmt": 1})
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())

    result = runner.run(_job("checkout", "cargo fmt", "cargo clippy"))

    assert result.outcome is Outcome.FAILED
    assert result.failed_step == "cargo fmt"
    assert result.failure_reason == "step cargo fmt exited with 1"
    assert [step.status for step in result.steps] == ["succeeded", "failed", "skipped"]
    assert [name for name, _timeout in backend.calls] == ["checkout", "cargo fmt"]


def test_acquisition_failure_is_errored_not_failed():
    backend = ScriptedBackend(
        acquire_error=EnvironmentUnavailable("no runner for macOS-latest")
    )
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())

    result = runner.run(_job("checkout", "build"))

    assert result.outcome is Outcome.ERRORED
    assert "no runner" in result.error
    assert result.failed_step is None
    assert [step.status for step in result.steps] == ["skipped", "skipped"]
    assert backend.calls == []


def test_environment_crash_mid_job_is_errored():
    backend = ScriptedBackend({"build": InfrastructureError("runner lost")})
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())

    result = runner.run(_job("checkout", "build", "test"))

    assert result.outcome is Outcome.ERRORED
    assert result.error == "runner lost"
    assert result.failed_step is None
    assert result.errored_step == "build"
    assert [(step.name, step.status) for step in result.steps] == [
        ("checkout", "succeeded"),
        ("build", "errored"),
        ("test", "skipped"),
    ]
    errored = result.steps[1]
    assert errored.started_at is not None and errored.finished_at is not None
    assert [name for name, _timeout in backend.calls] == ["checkout", "build"]


def test_teardown_failure_after_passing_steps_is_errored():
    backend = ScriptedBackend(teardown_error=InfrastructureError("cleanup failed"))
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())

    result = runner.run(_job("checkout"))

    assert result.outcome is Outcome.ERRORED
    assert result.error == "cleanup failed"
    assert [step.status for step in result.steps] == ["succeeded"]


def test_teardown_failure_keeps_step_failure_verdict():
    backend = ScriptedBackend({"cargo test": 101}, teardown_error=InfrastructureError("cleanup failed"))
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())

    result = runner.run(_job("checkout", "cargo test", "cargo doc"))

    assert result.outcome is Outcome.FAILED
    assert result.failed_step == "cargo test"
    assert result.failure_reason == "step cargo test exited with 101"
    assert result.error == "cleanup failed"
    assert [step.status for step in result.steps] == ["succeeded", "failed", "skipped"]


def test_infrastructure_error_gets_job_context():
    error = InfrastructureError("boom")
    backend = ScriptedBackend(acquire_error=error)
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())

    runner.run(_job("checkout"))

    assert error.job_id == "test (ubuntu-latest)"
    assert error.environment == "ubuntu-latest"


def test_unexpected_exceptions_propagate_with_job_context():
    backend = ScriptedBackend({"build": KeyError("bug")})
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())

    with pytest.raises(KeyError) as excinfo:
        runner.run(_job("checkout", "build"))

    assert excinfo.value.job_id == "test (ubuntu-latest)"


def test_cancelled_token_skips_job_without_acquiring():
    backend = ScriptedBackend()
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())
    token = CancellationToken()
    assert token.cancel("fail-fast: sibling failed") is True
    assert token.cancel("second reason") is False

    result = runner.run(_job("checkout", "build"), control=JobControl(token))

    assert result.outcome is Outcome.CANCELLED
    assert result.cancel_reason == "fail-fast: sibling failed"
    assert backend.artifacts == []
    assert [step.status for step in result.steps] == ["skipped", "skipped"]


def test_forced_failure_is_honoured_at_next_checkpoint():
    control = JobControl()

    class ForcingEnvironment:
        selector = "ubuntu-latest"

        def execute(self, step, *, timeout_s=None):
            control.force_fail("platform timeout")
            return StepExecution(exit_code=0)

    class ForcingBackend:
        @contextmanager
        def acquire(self, job, artifact):
            yield ForcingEnvironment()

    runner = JobRunner(backend=ForcingBackend(), recorder=NullStepRecorder())
    result = runner.run(_job("checkout", "build"), control=control)

    assert result.outcome is Outcome.FAILED
    assert result.failure_reason == "platform timeout"
    assert [step.status for step in result.steps] == ["succeeded", "skipped"]


def test_job_timeout_passes_remaining_time_to_steps():
    backend = ScriptedBackend()
    runner = JobRunner(backend=backend, recorder=NullStepRecorder())

    runner.run(_job("checkout", timeout_s=60))

    (_name, remaining), = backend.calls
    assert remaining is not None
    assert 0 < remaining <= 60


def test_timed_out_step_fails_job():
    class SlowEnvironment:
        selector = "ubuntu-latest"

        def execute(self, step, *, timeout_s=None):
            return StepExecution(exit_code=None, timed_out=True)

    class SlowBackend:
        @contextmanager
        def acquire(self, job, artifact):
            yield SlowEnvironment()

    runner = JobRunner(backend=SlowBackend(), recorder=NullStepRecorder())
    result = runner.run(_job("cargo test", timeout_s=1))

    assert result.outcome is Outcome.FAILED
    assert result.failure_reason == "step cargo test timed out"
    assert result.steps[0].timed_out is True


def test_non_step_execution_return_is_a_type_error():
    class BrokenEnvironment:
        selector = "ubuntu-latest"

        def execute(self, step, *, timeout_s=None):
            return 0

    class BrokenBackend:
        @contextmanager
        def acquire(self, job, artifact):
            yield BrokenEnvironment()

    runner = JobRunner(backend=BrokenBackend(), recorder=NullStepRecorder())
    with pytest.raises(TypeError, match=r"non-StepExecution"):
        runner.run(_job("checkout"))


def test_recorder_must_implement_every_hook():
    class Partial:
        def on_job_start(self, job):
            return None

    with pytest.raises(TypeError, match=r"on_step_start"):
        JobRunner(backend=ScriptedBackend(), recorder=Partial())


def test_default_recorder_logs_step_failure(caplog):
    logger = logging.getLogger("test_default_recorder_logs_step_failure")
    backend = ScriptedBackend({"cargo fmt": 1})
    runner = JobRunner(backend=backend, recorder=DefaultStepRecorder(logger))

    with caplog.at_level(logging.DEBUG, logger=logger.name):
        runner.run(_job("cargo fmt", "cargo clippy"))

    messages = [record.getMessage() for record in caplog.records]
    assert "Job: test (ubuntu-latest) (env=ubuntu-latest, steps=2)" in messages
    assert "Step failed: test (ubuntu-latest)/cargo fmt exit_code=1" in messages
    assert "Skipped step test (ubuntu-latest)/cargo clippy" in messages
    assert any(message.startswith("Job failed: test (ubuntu-latest)") for message in messages)
