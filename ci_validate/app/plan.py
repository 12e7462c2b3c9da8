"""Dry-run views of the configured workflow: stage listing and full job expansion."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ci_validate.foundation.config_io import load_config
from ci_validate.framework.config import RunConfig
from ci_validate.framework.workflow import load_workflow
from validatekit.engine.matrix import validate_stages
from validatekit.engine.model import Event
from validatekit.engine.orchestrator import Pipeline
from validatekit.stage_registry import StageRegistry


def load_pipeline(config_path: str | None = None) -> tuple[Pipeline, RunConfig]:
    cfg_dict, cfg_meta = load_config(config_path=config_path)
    cfg, _warnings = RunConfig.from_dict(cfg_dict, base_dir=cfg_meta.get("base_dir"))
    return load_workflow(cfg.workflow_path), cfg


def list_stages(pipeline: Pipeline) -> list[str]:
    lines: list[str] = []
    for row in StageRegistry.from_stages(pipeline.stages).describe():
        label = row["stage"]
        if row["display_name"]:
            label = f"{label} ({row['display_name']})"
        matrix = ", ".join(f"{axis}={values}" for axis, values in row["matrix"].items())
        lines.append(f"{label}: jobs={row['jobs']} runs-on={row['runs_on']}")
        if matrix:
            lines.append(f"  matrix: {matrix}")
        lines.append(f"  fail-fast: {'true' if row['fail_fast'] else 'false'}")
        if row["needs"]:
            lines.append(f"  needs: {', '.join(row['needs'])}")
    return lines


def plan(
    pipeline: Pipeline, *, event: Event | None = None, only: Sequence[str] = ()
) -> dict[str, Any]:
    """Expand every stage without running anything.

    Raises ConfigurationError for the same problems a real run would reject up front.
    """

    expanded = validate_stages(pipeline.stages)
    selected = list(expanded.keys())
    if only:
        registry = StageRegistry.from_stages(pipeline.stages)
        names = {registry.resolve(name).name for name in only}
        selected = [name for name in selected if name in names]

    payload: dict[str, Any] = {"workflow": pipeline.name, "stages": []}
    if event is not None:
        payload["event"] = event.to_dict()
        payload["triggered"] = pipeline.trigger.should_run(event)

    for name in selected:
        payload["stages"].append(
            {
                "name": name,
                "jobs": [
                    {
                        "job_id": job.job_id,
                        "environment": job.environment,
                        "matrix": job.matrix_dict(),
                        "timeout_s": job.timeout_s,
                        "steps": [
                            {"name": step.name, "action": step.action, "command": step.command}
                            for step in job.steps
                        ],
                    }
                    for job in expanded[name]
                ],
            }
        )
    return payload


def format_plan(payload: dict[str, Any]) -> list[str]:
    lines = [f"workflow: {payload['workflow']}"]
    if "triggered" in payload:
        kind = payload["event"]["kind"]
        lines.append(f"trigger: {'runs' if payload['triggered'] else 'skipped'} on {kind}")
    for stage in payload["stages"]:
        lines.append(f"{stage['name']}: {len(stage['jobs'])} job(s)")
        for job in stage["jobs"]:
            lines.append(f"  {job['job_id']} [{job['environment']}]")
            for idx, step in enumerate(job["steps"], start=1):
                detail = step["command"] if step["command"] else step["action"]
                lines.append(f"    {idx}. {step['name']}: {detail}")
    return lines
