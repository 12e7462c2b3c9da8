"""Parse an Actions-shaped workflow file into a `validatekit.Pipeline`.

Supported subset:

    name: Validate
    on: {push: {branches: [...], paths: [...]}, pull_request: ...}
    jobs:
      <stage>:
        name: Display Name
        runs-on: ubuntu-latest | ${{ matrix.os }}
        needs: other-stage | [a, b]
        timeout-minutes: 30
        env: {KEY: value}
        strategy:
          fail-fast: false
          matrix: {os: [...], rust: [stable]}
        steps:
          - name: ...
            uses: owner/action@ref
            with: {...}
          - name: ...
            run: command
            env: {...}

Matrix `include`/`exclude` and other expression scopes are rejected rather than ignored.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ci_validate.foundation.config_io import load_yaml_mapping
from validatekit.config_namespace import ConfigNamespace
from validatekit.engine.model import ALLOWED_EVENT_KINDS, RUN_ACTION, AxisSet, StageSpec, Step
from validatekit.engine.orchestrator import Pipeline
from validatekit.engine.trigger import TriggerFilter, TriggerPolicy
from validatekit.errors import ConfigurationError

_UNSUPPORTED_MATRIX_KEYS = ("include", "exclude")


def _trigger_key(raw: Mapping[Any, Any]) -> Any:
    # YAML 1.1 resolves a bare `on` key to boolean True.
    if "on" in raw and True in raw:
        raise ConfigurationError("Workflow declares both 'on' and a boolean-true key")
    if "on" in raw:
        return "on"
    if True in raw:
        return True
    raise ConfigurationError("Workflow is missing the 'on' trigger section")


def parse_triggers(raw: Any) -> TriggerPolicy:
    if isinstance(raw, str):
        raw = [raw]
    if isinstance(raw, (list, tuple)):
        events: dict[str, TriggerFilter] = {}
        for idx, item in enumerate(raw):
            if not isinstance(item, str) or not item.strip():
                raise ConfigurationError(f"on[{idx}] must be an event name")
            events[item.strip()] = TriggerFilter()
        return TriggerPolicy(events=events)
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"on must be a string, list or mapping (type={type(raw).__name__})")

    events = {}
    for kind, body in raw.items():
        kind_name = str(kind).strip()
        if kind_name not in ALLOWED_EVENT_KINDS:
            allowed = ", ".join(ALLOWED_EVENT_KINDS)
            raise ConfigurationError(f"Unsupported trigger event on.{kind_name} (allowed: {allowed})")
        if body is not None and not isinstance(body, Mapping):
            raise ConfigurationError(
                f"on.{kind_name} must be a mapping or empty (type={type(body).__name__})"
            )
        ns = ConfigNamespace(dict(body or {}), path=f"on.{kind_name}")
        trigger_filter = TriggerFilter(
            branches=tuple(ns.get_list_str("branches", default=[], allow_empty=True)),
            paths=tuple(ns.get_list_str("paths", default=[], allow_empty=True)),
        )
        ns.assert_consumed()
        events[kind_name] = trigger_filter
    return TriggerPolicy(events=events)


def _parse_step(raw: dict[str, Any], *, path: str, job_env: Mapping[str, str]) -> Step:
    ns = ConfigNamespace(raw, path=path)
    uses = ns.get_str("uses", default=None)
    command = ns.get_str("run", default=None)
    if (uses is None) == (command is None):
        raise ConfigurationError(f"{path} must set exactly one of 'uses' or 'run'")

    name = ns.get_str("name", default=None)
    if name is None:
        name = f"Run {uses}" if uses else f"Run {command.splitlines()[0]}"  # type: ignore[union-attr]

    params = ns.get_mapping("with", default={})
    if command is not None and params:
        raise ConfigurationError(f"{path} 'with' inputs are only valid on 'uses' steps")

    env = dict(job_env)
    env.update({k: str(v) for k, v in ns.get_mapping("env", default={}).items()})
    ns.assert_consumed()

    return Step(
        name=name,
        action=uses or RUN_ACTION,
        command=command,
        params=params,
        env=env,
    )


def _parse_matrix(strategy: ConfigNamespace) -> AxisSet:
    matrix = strategy.namespace("matrix", default={})
    axes: list[tuple[str, tuple[Any, ...]]] = []
    for axis in matrix.keys():
        if axis in _UNSUPPORTED_MATRIX_KEYS:
            raise ConfigurationError(f"{matrix.path}.{axis} is not supported")
        values = matrix.get_list_str(axis, allow_empty=True)
        axes.append((axis, tuple(values)))
    return AxisSet(axes=tuple(axes))


def parse_stage(stage_id: str, raw: Any) -> StageSpec:
    path = f"jobs.{stage_id}"
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{path} must be a mapping (type={type(raw).__name__})")
    ns = ConfigNamespace(dict(raw), path=path)

    display_name = ns.get_str("name", default=None)
    runs_on = ns.get_str("runs-on")
    needs = ns.get_list_str("needs", default=[], allow_empty=True, allow_scalar=True)
    timeout_minutes = ns.get_optional_float("timeout-minutes", default=None)
    job_env = {k: str(v) for k, v in ns.get_mapping("env", default={}).items()}

    strategy = ns.namespace("strategy", default={})
    fail_fast = strategy.get_bool("fail-fast", default=True)
    axes = _parse_matrix(strategy)

    steps = tuple(
        _parse_step(step, path=f"{path}.steps[{idx}]", job_env=job_env)
        for idx, step in enumerate(ns.get_list_mapping("steps"))
    )
    ns.assert_consumed()

    return StageSpec(
        name=stage_id,
        display_name=display_name,
        runs_on=str(runs_on),
        steps=steps,
        axes=axes,
        fail_fast=fail_fast,
        timeout_s=timeout_minutes * 60 if timeout_minutes is not None else None,
        needs=tuple(needs),
    )


def parse_workflow(raw: Mapping[Any, Any], *, source: str = "<workflow>") -> Pipeline:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{source} must contain a mapping")

    trigger_key = _trigger_key(raw)
    triggers = parse_triggers(raw[trigger_key])

    rest = {str(k): v for k, v in raw.items() if k != trigger_key}
    ns = ConfigNamespace(rest, path="")
    name = ns.get_str("name", default=None) or source
    jobs = ns.get_mapping("jobs")
    if not jobs:
        raise ConfigurationError(f"{source} declares no jobs")
    ns.assert_consumed()

    stages = tuple(parse_stage(stage_id, body) for stage_id, body in jobs.items())
    return Pipeline(name=name, stages=stages, trigger=triggers)


def load_workflow(path: str) -> Pipeline:
    return parse_workflow(load_yaml_mapping(path), source=path)
