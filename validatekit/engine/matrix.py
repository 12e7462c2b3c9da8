"""Matrix expansion: StageSpec -> concrete Job descriptors.

Expansion is pure and deterministic (row-major over axes in declaration order), so job
identity is stable across runs and can be tested without any execution backend.
"""

from __future__ import annotations

import itertools
import re
from collections.abc import Iterable, Mapping
from typing import Any

from validatekit.engine.model import Job, StageSpec, Step
from validatekit.errors import ConfigurationError
from validatekit.stage_registry import StageRegistry

_EXPRESSION = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")


def interpolate(value: Any, matrix: Mapping[str, Any], *, where: str) -> Any:
    """Substitute `${{ matrix.<axis> }}` references; other expressions are rejected."""

    if isinstance(value, str):

        def _replace(match: re.Match[str]) -> str:
            expr = match.group(1)
            scope, _, key = expr.partition(".")
            if scope != "matrix" or not key:
                raise ConfigurationError(f"Unsupported expression {match.group(0)!r} in {where}")
            if key not in matrix:
                available = ", ".join(matrix.keys()) or "<none>"
                raise ConfigurationError(
                    f"Unknown matrix axis {key!r} referenced in {where} (available: {available})"
                )
            return str(matrix[key])

        return _EXPRESSION.sub(_replace, value)
    if isinstance(value, Mapping):
        return {k: interpolate(v, matrix, where=f"{where}.{k}") for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [interpolate(item, matrix, where=f"{where}[{idx}]") for idx, item in enumerate(value)]
    return value


def _resolve_step(step: Step, matrix: Mapping[str, Any], *, where: str) -> Step:
    return Step(
        name=interpolate(step.name, matrix, where=f"{where}.name"),
        action=interpolate(step.action, matrix, where=f"{where}.action"),
        command=interpolate(step.command, matrix, where=f"{where}.command"),
        params=interpolate(step.params, matrix, where=f"{where}.with"),
        env=interpolate(step.env, matrix, where=f"{where}.env"),
    )


def expand(stage: StageSpec) -> tuple[Job, ...]:
    for axis, values in stage.axes.axes:
        if not values:
            raise ConfigurationError(
                f"Stage {stage.name} matrix axis {axis!r} has no values (empty matrix)"
            )

    names = stage.axes.names
    jobs: list[Job] = []
    combos = itertools.product(*(values for _axis, values in stage.axes.axes))
    for index, combo in enumerate(combos):
        matrix = dict(zip(names, combo))
        environment = interpolate(stage.runs_on, matrix, where=f"{stage.name}.runs_on").strip()
        if not environment:
            raise ConfigurationError(f"Stage {stage.name} resolved an empty runs_on for {matrix}")
        steps = tuple(
            _resolve_step(step, matrix, where=f"{stage.name}.steps[{idx}]")
            for idx, step in enumerate(stage.steps)
        )
        jobs.append(
            Job(
                stage=stage.name,
                index=index,
                matrix=tuple(matrix.items()),
                environment=environment,
                steps=steps,
                timeout_s=stage.timeout_s,
            )
        )
    return tuple(jobs)


def _check_dependency_cycles(registry: StageRegistry) -> None:
    visiting: set[str] = set()
    done: set[str] = set()

    def _visit(name: str, trail: list[str]) -> None:
        if name in done:
            return
        if name in visiting:
            cycle = " -> ".join([*trail, name])
            raise ConfigurationError(f"Stage dependency cycle: {cycle}")
        visiting.add(name)
        for dep in registry.get(name).needs:
            _visit(dep, [*trail, name])
        visiting.discard(name)
        done.add(name)

    for name in registry.available():
        _visit(name, [])


def validate_stages(stages: Iterable[StageSpec]) -> dict[str, tuple[Job, ...]]:
    """Validate a full pipeline definition and expand every stage.

    Raises ConfigurationError for duplicate stage names, unknown or cyclic `needs`, and empty
    matrix axes. Nothing is executed, so a failure here means no job ever ran.
    """

    ordered = list(stages)
    if not ordered:
        raise ConfigurationError("Pipeline declares no stages")
    registry = StageRegistry.from_stages(ordered)

    for stage in ordered:
        for dep in stage.needs:
            if dep not in registry:
                available = ", ".join(registry.available())
                raise ConfigurationError(
                    f"Stage {stage.name} needs unknown stage {dep!r} (available: {available})"
                )
    _check_dependency_cycles(registry)

    return {stage.name: expand(stage) for stage in ordered}
