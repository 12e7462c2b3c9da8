import pytest

from validatekit.engine.matrix import expand, interpolate, validate_stages
from validatekit.engine.model import AxisSet, StageSpec, Step
from validatekit.errors import ConfigurationError


def _stage(name="check", axes=None, runs_on="${{ matrix.os }}", steps=None, **kwargs):
    return StageSpec(
        name=name,
        runs_on=runs_on,
        axes=AxisSet.from_mapping(axes),
        steps=tuple(steps or (Step(name="Run cargo check", command="cargo check"),)),
        **kwargs,
    )


def test_job_count_is_product_of_axis_lengths():
    stage = _stage(axes={"os": ["windows-latest", "ubuntu-latest", "macOS-latest"], "rust": ["stable", "beta"]})

    jobs = expand(stage)

    assert len(jobs) == 6
    assert stage.axes.combination_count() == 6


def test_expansion_is_row_major_and_deterministic():
    stage = _stage(axes={"os": ["a", "b"], "rust": ["stable", "beta"]}, runs_on="${{ matrix.os }}")

    first = expand(stage)
    second = expand(stage)

    assert [job.matrix for job in first] == [
        (("os", "a"), ("rust", "stable")),
        (("os", "a"), ("rust", "beta")),
        (("os", "b"), ("rust", "stable")),
        (("os", "b"), ("rust", "beta")),
    ]
    assert [job.job_id for job in first] == [job.job_id for job in second]
    assert [job.index for job in first] == [0, 1, 2, 3]
    assert first[0].job_id == "check (a, stable)"


def test_empty_axis_set_yields_single_job_with_fixed_environment():
    stage = _stage(name="lints", axes=None, runs_on="ubuntu-latest")

    jobs = expand(stage)

    assert len(jobs) == 1
    assert jobs[0].job_id == "lints"
    assert jobs[0].environment == "ubuntu-latest"
    assert jobs[0].matrix == ()


def test_empty_axis_raises_configuration_error():
    stage = _stage(axes={"os": [], "rust": ["stable"]})

    with pytest.raises(ConfigurationError, match=r"empty matrix"):
        expand(stage)


def test_matrix_references_are_substituted_per_job():
    stage = _stage(
        axes={"os": ["ubuntu-latest"], "rust": ["stable"]},
        steps=(
            Step(
                name="Install ${{ matrix.rust }} toolchain",
                action="dtolnay/rust-toolchain@stable",
                params={"toolchain": "${{ matrix.rust }}", "components": ["rustfmt"]},
            ),
            Step(name="Build", command="echo ${{matrix.os}}"),
        ),
    )

    (job,) = expand(stage)

    assert job.environment == "ubuntu-latest"
    assert job.steps[0].name == "Install stable toolchain"
    assert job.steps[0].params == {"toolchain": "stable", "components": ["rustfmt"]}
    assert job.steps[1].command == "echo ubuntu-latest"


def test_unknown_axis_reference_is_rejected():
    stage = _stage(axes={"os": ["ubuntu-latest"]}, runs_on="${{ matrix.platform }}")

    with pytest.raises(ConfigurationError, match=r"Unknown matrix axis 'platform'"):
        expand(stage)


def test_non_matrix_expressions_are_rejected():
    with pytest.raises(ConfigurationError, match=r"Unsupported expression"):
        interpolate("${{ secrets.TOKEN }}", {}, where="steps[0].run")


def test_interpolate_leaves_non_strings_untouched():
    assert interpolate(True, {"os": "x"}, where="with.submodules") is True
    assert interpolate(None, {}, where="run") is None


def test_stage_timeout_is_carried_to_jobs():
    stage = _stage(axes={"os": ["a", "b"]}, timeout_s=90)

    assert {job.timeout_s for job in expand(stage)} == {90}


def test_validate_stages_rejects_duplicate_names():
    a = _stage(name="check", axes={"os": ["a"]})
    b = _stage(name="check", axes={"os": ["b"]})

    with pytest.raises(ConfigurationError, match=r"Duplicate stage name: check"):
        validate_stages([a, b])


def test_validate_stages_rejects_unknown_needs_and_cycles():
    lone = _stage(name="test", axes={"os": ["a"]}, needs=("check",))
    with pytest.raises(ConfigurationError, match=r"check"):
        validate_stages([lone])

    a = _stage(name="a", axes={"os": ["x"]}, needs=("b",))
    b = _stage(name="b", axes={"os": ["x"]}, needs=("a",))
    with pytest.raises(ConfigurationError, match=r"cycle"):
        validate_stages([a, b])


def test_validate_stages_expands_every_stage_before_running():
    good = _stage(name="check", axes={"os": ["a"]})
    bad = _stage(name="test", axes={"os": []})

    with pytest.raises(ConfigurationError, match=r"test"):
        validate_stages([good, bad])


def test_validate_stages_rejects_empty_pipeline():
    with pytest.raises(ConfigurationError):
        validate_stages([])
