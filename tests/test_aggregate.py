import pytest

from validatekit.engine.aggregate import aggregate, summarize
from validatekit.engine.model import Job, JobResult, Outcome, StageResult, Step


def _job_result(stage, index, outcome):
    job = Job(
        stage=stage,
        index=index,
        matrix=(("os", f"env{index}"),),
        environment=f"env{index}",
        steps=(Step(name="build", command="make"),),
    )
    result = JobResult(job=job)
    if outcome is Outcome.PENDING:
        return result
    if outcome in (Outcome.CANCELLED, Outcome.ERRORED):
        result.transition(outcome)
        return result
    result.transition(Outcome.RUNNING)
    if outcome is not Outcome.RUNNING:
        result.transition(outcome)
    return result


def _stage(name, *outcomes):
    return StageResult(
        stage=name, jobs=tuple(_job_result(name, idx, outcome) for idx, outcome in enumerate(outcomes))
    )


def test_pipeline_succeeds_only_when_every_stage_passes():
    result = aggregate(
        {
            "check": _stage("check", Outcome.SUCCEEDED, Outcome.SUCCEEDED, Outcome.SUCCEEDED),
            "lints": _stage("lints", Outcome.SUCCEEDED),
        },
        name="Validate",
    )

    assert result.succeeded is True
    assert result.name == "Validate"
    assert [stage.stage for stage in result.stages] == ["check", "lints"]


@pytest.mark.parametrize("flipped", [Outcome.FAILED, Outcome.CANCELLED, Outcome.ERRORED])
def test_flipping_one_job_flips_the_pipeline(flipped):
    passing = {
        "check": _stage("check", Outcome.SUCCEEDED, Outcome.SUCCEEDED, Outcome.SUCCEEDED),
        "test": _stage("test", Outcome.SUCCEEDED, Outcome.SUCCEEDED, Outcome.SUCCEEDED),
    }
    assert aggregate(passing).succeeded is True

    failing = dict(passing)
    failing["test"] = _stage("test", Outcome.SUCCEEDED, flipped, Outcome.SUCCEEDED)

    result = aggregate(failing)

    assert result.succeeded is False
    assert result.stage("check").passed is True
    assert result.stage("test").passed is False
    assert [job.job.job_id for job in result.stage("test").failed_jobs()] == ["test (env1)"]


def test_infrastructure_errors_are_listed_separately():
    result = aggregate(
        {"check": _stage("check", Outcome.SUCCEEDED, Outcome.ERRORED, Outcome.FAILED)}
    )

    assert result.infrastructure_errors == (
        {"stage": "check", "job_id": "check (env1)", "step": None, "error": None},
    )
    assert summarize(result) == {"succeeded": 1, "failed": 1, "cancelled": 0, "errored": 1}


def test_empty_results_do_not_succeed():
    assert aggregate({}).succeeded is False
    assert StageResult(stage="check", jobs=()).passed is False


def test_non_terminal_jobs_are_rejected():
    with pytest.raises(ValueError, match=r"non-terminal"):
        aggregate({"check": _stage("check", Outcome.SUCCEEDED, Outcome.RUNNING)})


def test_mismatched_stage_key_is_rejected():
    with pytest.raises(ValueError, match=r"belongs to 'check'"):
        aggregate({"test": _stage("check", Outcome.SUCCEEDED)})


def test_to_dict_carries_full_breakdown():
    payload = aggregate({"lints": _stage("lints", Outcome.FAILED)}, name="Validate").to_dict()

    assert payload["succeeded"] is False
    (stage,) = payload["stages"]
    assert stage["name"] == "lints"
    assert stage["passed"] is False
    (job,) = stage["jobs"]
    assert job["outcome"] == "failed"
    assert job["matrix"] == {"os": "env0"}
