"""Stage orchestration: expand stages, run their jobs concurrently, aggregate outcomes."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from validatekit.engine.aggregate import aggregate
from validatekit.engine.executor import CancellationToken, JobControl, JobRunner
from validatekit.engine.matrix import expand, validate_stages
from validatekit.engine.model import (
    Event,
    Job,
    JobResult,
    Outcome,
    PipelineResult,
    SourceArtifact,
    StageResult,
    StageSpec,
)
from validatekit.engine.trigger import TriggerPolicy
from validatekit.errors import ConfigurationError
from validatekit.stage_registry import StageRegistry

_STOPPING_OUTCOMES = frozenset({Outcome.FAILED, Outcome.ERRORED})


@dataclass(frozen=True)
class Pipeline:
    """A named set of stages plus the trigger policy that decides whether they run."""

    name: str
    stages: tuple[StageSpec, ...]
    trigger: TriggerPolicy = field(default_factory=TriggerPolicy.always)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError("Pipeline name must be a non-empty string")
        object.__setattr__(self, "name", self.name.strip())
        object.__setattr__(self, "stages", tuple(self.stages))


class _StageRun:
    """Bookkeeping for one stage's in-flight jobs."""

    def __init__(self, stage: StageSpec, jobs: tuple[Job, ...]):
        self.stage = stage
        self.jobs = jobs
        self.token = CancellationToken()
        self.futures: list[Future[JobResult]] = []
        self.done = threading.Event()

    def result(self) -> StageResult:
        return StageResult(
            stage=self.stage.name,
            jobs=tuple(future.result() for future in self.futures),
            display_name=self.stage.display_name,
        )


class StageOrchestrator:
    def __init__(
        self,
        runner: JobRunner,
        *,
        max_parallel: int | None = None,
        logger: logging.Logger | None = None,
    ):
        if max_parallel is not None and max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1 (got {max_parallel})")
        self._runner = runner
        self._max_parallel = max_parallel
        self._logger = logger or logging.getLogger(__name__)

    def run_stage(self, stage: StageSpec, *, artifact: SourceArtifact | None = None) -> StageResult:
        jobs = expand(stage)
        with ThreadPoolExecutor(max_workers=self._workers(len(jobs))) as pool:
            stage_run = self._submit(pool, stage, jobs, artifact)
            stage_run.done.wait()
        return stage_run.result()

    def run_stages(
        self,
        stages: Sequence[StageSpec],
        *,
        artifact: SourceArtifact | None = None,
        expanded: Mapping[str, tuple[Job, ...]] | None = None,
    ) -> dict[str, StageResult]:
        """Run every stage; stages without `needs` start immediately and run concurrently."""

        jobs_by_stage = dict(expanded) if expanded is not None else validate_stages(stages)
        total_jobs = sum(len(jobs) for jobs in jobs_by_stage.values())

        results: dict[str, StageResult] = {}
        runs: dict[str, _StageRun] = {}
        pending = list(stages)

        with ThreadPoolExecutor(max_workers=self._workers(total_jobs)) as pool:
            while pending:
                ready = [
                    stage
                    for stage in pending
                    if all(dep in results for dep in stage.needs)
                ]
                for stage in ready:
                    pending.remove(stage)
                    blocked = [dep for dep in stage.needs if not results[dep].passed]
                    if blocked:
                        results[stage.name] = self._blocked_stage(
                            stage, jobs_by_stage[stage.name], blocked
                        )
                        continue
                    self._logger.info(
                        "Stage started: %s (jobs=%d, fail_fast=%s)",
                        stage.name,
                        len(jobs_by_stage[stage.name]),
                        stage.fail_fast,
                    )
                    runs[stage.name] = self._submit(pool, stage, jobs_by_stage[stage.name], artifact)

                if not pending:
                    break
                if ready:
                    continue

                # Wait for any in-flight stage that something pending depends on.
                waiting_on = {dep for stage in pending for dep in stage.needs if dep not in results}
                in_flight = [runs[name] for name in waiting_on if name in runs]
                if not in_flight:
                    raise ConfigurationError(
                        "Unresolvable stage dependencies: " + ", ".join(s.name for s in pending)
                    )
                self._wait_any(in_flight)
                for run in in_flight:
                    if run.done.is_set() and run.stage.name not in results:
                        results[run.stage.name] = self._finish(run)

            for name, run in runs.items():
                if name not in results:
                    run.done.wait()
                    results[name] = self._finish(run)

        return {stage.name: results[stage.name] for stage in stages}

    def _workers(self, job_count: int) -> int:
        count = max(job_count, 1)
        if self._max_parallel is not None:
            count = min(count, self._max_parallel)
        return count

    def _submit(
        self,
        pool: ThreadPoolExecutor,
        stage: StageSpec,
        jobs: tuple[Job, ...],
        artifact: SourceArtifact | None,
    ) -> _StageRun:
        stage_run = _StageRun(stage, jobs)
        remaining = [len(jobs)]
        lock = threading.Lock()

        def _on_done(future: Future[JobResult]) -> None:
            if stage.fail_fast and future.exception() is None:
                job_result = future.result()
                if job_result.outcome in _STOPPING_OUTCOMES:
                    reason = f"fail-fast: {job_result.job.job_id} {job_result.outcome.value}"
                    if stage_run.token.cancel(reason):
                        self._logger.warning("Cancelling stage %s (%s)", stage.name, reason)
            with lock:
                remaining[0] -= 1
                if remaining[0] == 0:
                    stage_run.done.set()

        for job in jobs:
            control = JobControl(stage_run.token)
            future = pool.submit(self._runner.run, job, artifact=artifact, control=control)
            stage_run.futures.append(future)
            # `remaining` starts at len(jobs), so `done` cannot fire before the last submit.
            future.add_done_callback(_on_done)
        return stage_run

    def _wait_any(self, runs: Iterable[_StageRun]) -> None:
        runs = list(runs)
        while True:
            if any(run.done.wait(timeout=0.05) for run in runs):
                return

    def _finish(self, run: _StageRun) -> StageResult:
        result = run.result()
        self._logger.info(
            "Stage finished: %s (%s)", run.stage.name, "passed" if result.passed else "failed"
        )
        return result

    def _blocked_stage(
        self, stage: StageSpec, jobs: tuple[Job, ...], blocked: list[str]
    ) -> StageResult:
        reason = f"dependency did not pass: {', '.join(blocked)}"
        self._logger.warning("Stage skipped: %s (%s)", stage.name, reason)
        token = CancellationToken()
        token.cancel(reason)
        job_results = tuple(
            self._runner.run(job, control=JobControl(token)) for job in jobs
        )
        return StageResult(stage=stage.name, jobs=job_results, display_name=stage.display_name)


def run_pipeline(
    pipeline: Pipeline,
    event: Event,
    *,
    runner: JobRunner,
    artifact: SourceArtifact | None = None,
    only: Sequence[str] = (),
    max_parallel: int | None = None,
    logger: logging.Logger | None = None,
) -> PipelineResult | None:
    """Trigger -> validate -> run stages -> aggregate. Returns None when the trigger declines."""

    log = logger or logging.getLogger(__name__)
    if not pipeline.trigger.should_run(event):
        log.info("Pipeline %s not triggered by %s event (ref=%s)", pipeline.name, event.kind, event.ref)
        return None

    expanded = validate_stages(pipeline.stages)
    stages: tuple[StageSpec, ...] = pipeline.stages
    if only:
        registry = StageRegistry.from_stages(pipeline.stages)
        selected = {registry.resolve(name).name for name in only}
        for stage in pipeline.stages:
            if stage.name in selected:
                missing = [dep for dep in stage.needs if dep not in selected]
                if missing:
                    raise ConfigurationError(
                        f"Stage {stage.name} needs {', '.join(missing)}, which was not selected"
                    )
        stages = tuple(stage for stage in pipeline.stages if stage.name in selected)

    log.info(
        "Pipeline %s triggered by %s event (ref=%s, sha=%s); stages=%s",
        pipeline.name,
        event.kind,
        event.ref,
        event.sha,
        ", ".join(stage.name for stage in stages),
    )
    orchestrator = StageOrchestrator(runner, max_parallel=max_parallel, logger=log)
    results = orchestrator.run_stages(
        stages,
        artifact=artifact,
        expanded={stage.name: expanded[stage.name] for stage in stages},
    )
    return aggregate(results, name=pipeline.name)
