from __future__ import annotations

import json
import os
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from validatekit.engine.aggregate import summarize
from validatekit.engine.model import Event, Outcome, PipelineResult

REPORT_SCHEMA_VERSION = 1


def generate_run_id() -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{timestamp}_{uuid.uuid4().hex[:8]}"


def build_report(
    result: PipelineResult,
    *,
    event: Event,
    run_id: str,
    workflow_path: str | None = None,
    created_at: str | None = None,
    config: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "schema_version": REPORT_SCHEMA_VERSION,
        "run_id": run_id,
        "workflow": result.name,
        "workflow_path": workflow_path,
        "created_at": created_at,
        "event": event.to_dict(),
        "succeeded": result.succeeded,
        "summary": summarize(result),
        "config": dict(config) if config is not None else None,
    }
    payload.update({k: v for k, v in result.to_dict().items() if k not in ("name", "succeeded")})
    return payload


def write_report(path: str, payload: Mapping[str, Any]) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as file:
        json.dump(dict(payload), file, ensure_ascii=False, indent=2)
        file.write("\n")


def append_run_index_entry(path: str, entry: Mapping[str, Any]) -> None:
    """Append a single JSON object to a JSONL run index file."""

    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(json.dumps(dict(entry), ensure_ascii=False))
        handle.write("\n")


_OUTCOME_MARKS = {
    Outcome.SUCCEEDED: "ok",
    Outcome.FAILED: "FAILED",
    Outcome.CANCELLED: "cancelled",
    Outcome.ERRORED: "ERRORED",
}


def format_summary(result: PipelineResult) -> str:
    lines = [f"{result.name or 'pipeline'}: {'PASSED' if result.succeeded else 'FAILED'}"]
    for stage in result.stages:
        lines.append(f"  {stage.display_name or stage.stage}: {'passed' if stage.passed else 'failed'}")
        for job in stage.jobs:
            mark = _OUTCOME_MARKS.get(job.outcome, job.outcome.value)
            detail = ""
            if job.outcome is Outcome.FAILED:
                detail = f" ({job.failure_reason})" if job.failure_reason else ""
            elif job.outcome is Outcome.ERRORED:
                detail = f" ({job.error})" if job.error else ""
            elif job.outcome is Outcome.CANCELLED and job.cancel_reason:
                detail = f" ({job.cancel_reason})"
            lines.append(f"    [{mark}] {job.job.job_id}{detail}")
    return "\n".join(lines)
