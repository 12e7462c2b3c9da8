from __future__ import annotations

from collections.abc import Mapping

from validatekit.engine.model import Outcome, PipelineResult, StageResult


def aggregate(results_by_stage: Mapping[str, StageResult], *, name: str | None = None) -> PipelineResult:
    """Combine stage results into the binary pipeline verdict.

    A stage passes iff every job succeeded; the pipeline passes iff every stage passed.
    Every job must already be terminal: aggregation never waits or guesses.
    """

    stages: list[StageResult] = []
    for stage_name, stage_result in results_by_stage.items():
        if stage_result.stage != stage_name:
            raise ValueError(
                f"Stage result keyed as {stage_name!r} belongs to {stage_result.stage!r}"
            )
        for job in stage_result.jobs:
            if not job.outcome.is_terminal:
                raise ValueError(
                    f"Cannot aggregate non-terminal job {job.job.job_id} (outcome={job.outcome.value})"
                )
        stages.append(stage_result)

    succeeded = bool(stages) and all(stage.passed for stage in stages)
    return PipelineResult(succeeded=succeeded, stages=tuple(stages), name=name)


def summarize(result: PipelineResult) -> dict[str, int]:
    counts = {outcome.value: 0 for outcome in Outcome if outcome.is_terminal}
    for stage in result.stages:
        for job in stage.jobs:
            counts[job.outcome.value] += 1
    return counts
