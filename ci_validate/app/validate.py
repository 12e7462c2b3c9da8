from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ci_validate.foundation.config_io import CONFIG_ENV_VAR, load_config
from ci_validate.foundation.logging_utils import close_logger, setup_operational_logger
from ci_validate.framework.actions import check_actions
from ci_validate.framework.config import RunConfig
from ci_validate.framework.local_backend import LocalBackend
from ci_validate.framework.report import (
    append_run_index_entry,
    build_report,
    format_summary,
    generate_run_id,
    write_report,
)
from ci_validate.framework.workflow import load_workflow
from validatekit.engine.executor import DefaultStepRecorder, ExecutionBackend, JobRunner
from validatekit.engine.matrix import validate_stages
from validatekit.engine.model import Event, Outcome, PipelineResult, SourceArtifact, utc_now_iso8601
from validatekit.engine.orchestrator import run_pipeline

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_INFRASTRUCTURE_ERROR = 3


@dataclass(frozen=True)
class ValidationRun:
    run_id: str
    exit_code: int
    result: PipelineResult | None
    log_path: str
    report_path: str | None = None


def exit_code_for(result: PipelineResult | None) -> int:
    """A failed step outranks infrastructure errors; 3 means nothing but the environment broke."""

    if result is None or result.succeeded:
        return EXIT_OK
    if any(job.outcome is Outcome.FAILED for stage in result.stages for job in stage.jobs):
        return EXIT_FAILED
    if result.infrastructure_errors:
        return EXIT_INFRASTRUCTURE_ERROR
    return EXIT_FAILED


def _log_config_source(logger: logging.Logger, config_meta: dict[str, Any] | None) -> None:
    if not config_meta:
        return
    mode = config_meta.get("mode")
    paths = config_meta.get("paths") or []
    env_var = config_meta.get("env_var") or CONFIG_ENV_VAR
    if mode in {"env", "explicit"} and paths:
        label = f"env {env_var}" if mode == "env" else "explicit path"
        logger.info("Loaded config from %s=%s", label, paths[0])
    elif paths:
        local = paths[1] if len(paths) > 1 else None
        if local:
            logger.info("Loaded config base=%s local=%s", paths[0], local)
        else:
            logger.info("Loaded config base=%s", paths[0])


def run_validation(
    cfg_dict: dict[str, Any],
    event: Event,
    *,
    config_meta: dict[str, Any] | None = None,
    only: Sequence[str] = (),
    run_id: str | None = None,
    backend: ExecutionBackend | None = None,
) -> ValidationRun:
    """Load the workflow, run it for `event` and write the JSON report and run index entry.

    Configuration errors and unexpected exceptions are logged and re-raised; a failed
    pipeline is a normal return with a non-zero `exit_code`.
    """

    cfg, cfg_warnings = RunConfig.from_dict(
        cfg_dict, base_dir=(config_meta or {}).get("base_dir")
    )

    run_id = run_id or generate_run_id()
    logger, log_path = setup_operational_logger(cfg.log_dir, run_id)
    run_index_path = os.path.join(cfg.log_dir, "runs_index.jsonl")
    created_at = utc_now_iso8601()

    _log_config_source(logger, config_meta)
    for warning in cfg_warnings:
        logger.warning("%s", warning)

    phase = "init"
    report_path: str | None = None
    try:
        phase = "workflow"
        logger.info("Loading workflow from %s", cfg.workflow_path)
        pipeline = load_workflow(cfg.workflow_path)
        expanded = validate_stages(pipeline.stages)

        if backend is None:
            backend = LocalBackend(
                environments=cfg.environments,
                shell=cfg.shell,
                keep_workspaces=cfg.keep_workspaces,
                logger=logger,
            )
        if isinstance(backend, LocalBackend):
            check_actions(job for jobs in expanded.values() for job in jobs)

        phase = "pipeline"
        artifact = SourceArtifact(path=cfg.source_path, revision=cfg.source_revision or event.sha)
        runner = JobRunner(backend=backend, recorder=DefaultStepRecorder(logger))
        result = run_pipeline(
            pipeline,
            event,
            runner=runner,
            artifact=artifact,
            only=only,
            max_parallel=cfg.max_parallel_jobs,
            logger=logger,
        )

        exit_code = exit_code_for(result)
        entry: dict[str, Any] = {
            "schema_version": 1,
            "run_id": run_id,
            "created_at": created_at,
            "event": event.to_dict(),
            "workflow": pipeline.name,
            "artifacts": {"oplog": log_path, "report": None},
        }

        if result is None:
            logger.info("Run %s skipped: trigger declined %s event", run_id, event.kind)
            entry["status"] = "skipped"
        else:
            phase = "report"
            report_path = os.path.join(cfg.report_dir, f"{run_id}_report.json")
            write_report(
                report_path,
                build_report(
                    result,
                    event=event,
                    run_id=run_id,
                    workflow_path=cfg.workflow_path,
                    created_at=created_at,
                    config=cfg.effective_values,
                ),
            )
            logger.info("Wrote report JSON to %s", report_path)
            for line in format_summary(result).splitlines():
                logger.info("%s", line)
            for error in result.infrastructure_errors:
                logger.error("Infrastructure error in %s: %s", error["job_id"], error["error"])
            entry["status"] = "succeeded" if result.succeeded else "failed"
            entry["artifacts"]["report"] = report_path

        entry["exit_code"] = exit_code
        append_run_index_entry(run_index_path, entry)
        logger.info("Appended run index entry to %s (status=%s)", run_index_path, entry["status"])
        logger.info("Operational log stored at %s", log_path)

        return ValidationRun(
            run_id=run_id,
            exit_code=exit_code,
            result=result,
            log_path=log_path,
            report_path=report_path,
        )
    except Exception as exc:
        logger.exception("Run failed during phase %s", phase)
        error: dict[str, Any] = {"type": exc.__class__.__name__, "message": str(exc), "phase": phase}
        for attr in ("job_id", "job_step"):
            value = getattr(exc, attr, None)
            if value:
                error[attr] = value
        try:
            append_run_index_entry(
                run_index_path,
                {
                    "schema_version": 1,
                    "run_id": run_id,
                    "created_at": created_at,
                    "event": event.to_dict(),
                    "status": "error",
                    "error": error,
                    "artifacts": {"oplog": log_path, "report": report_path},
                },
            )
        except OSError:
            logger.exception("Run index append failed during error handling")
        raise
    finally:
        close_logger(logger)


def main(
    event: Event,
    *,
    config_path: str | None = None,
    only: Sequence[str] = (),
) -> int:
    run_id = generate_run_id()
    try:
        cfg_dict, cfg_meta = load_config(config_path=config_path)
    except Exception:
        # Keep a record of why the run never started.
        fallback_logger, fallback_log_path = setup_operational_logger(os.getcwd(), run_id)
        fallback_logger.exception(
            "Failed to load configuration. Logging to fallback file at %s", fallback_log_path
        )
        close_logger(fallback_logger)
        raise

    run = run_validation(cfg_dict, event, config_meta=cfg_meta, only=only, run_id=run_id)
    return run.exit_code
