from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from validatekit.config_namespace import ConfigNamespace
from validatekit.errors import ConfigurationError

EnvironmentMode = Literal["local", "unavailable"]
ENVIRONMENT_MODES: tuple[str, ...] = ("local", "unavailable")


def _resolve_path(raw: str, base_dir: str | None) -> str:
    expanded = os.path.expandvars(os.path.expanduser(raw))
    if not os.path.isabs(expanded) and base_dir:
        expanded = os.path.join(base_dir, expanded)
    return os.path.abspath(expanded)


@dataclass(frozen=True)
class RunConfig:
    workflow_path: str
    source_path: str
    log_dir: str
    report_dir: str
    source_revision: str | None = None
    max_parallel_jobs: int | None = None
    shell: str | None = None
    keep_workspaces: bool = False
    environments: dict[str, EnvironmentMode] = field(default_factory=dict)
    # Every key as read, defaults included; written into the run report.
    effective_values: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls, cfg: Mapping[str, Any], *, base_dir: str | None = None
    ) -> tuple["RunConfig", list[str]]:
        """
        Parse and validate the run config.

        Relative paths resolve against `base_dir` (the directory of the loaded config file).
        Unknown keys anywhere in the tree raise ConfigurationError.

        Returns `(config, warnings)`.
        """

        if not isinstance(cfg, Mapping):
            raise ConfigurationError(f"Run config must be a mapping (type={type(cfg).__name__})")

        warnings: list[str] = []
        root = ConfigNamespace(dict(cfg), path="")

        workflow = root.namespace("workflow")
        workflow_path = _resolve_path(str(workflow.get_str("path")), base_dir)

        source = root.namespace("source", default={})
        source_path = _resolve_path(str(source.get_str("path", default=".")), base_dir)
        source_revision = source.get_str("revision", default=None)

        execution = root.namespace("execution", default={})
        max_parallel_jobs = execution.get_optional_int("max_parallel_jobs", default=None, min_value=1)
        shell = execution.get_str("shell", default=None)
        keep_workspaces = execution.get_bool("keep_workspaces", default=False)

        environments: dict[str, EnvironmentMode] = {}
        raw_envs = execution.get_mapping("environments", default={})
        for selector, mode in raw_envs.items():
            key = str(selector).strip()
            if not key:
                raise ConfigurationError("execution.environments keys cannot be empty")
            normalized = str(mode).strip().lower() if mode is not None else ""
            if normalized not in ENVIRONMENT_MODES:
                allowed = ", ".join(ENVIRONMENT_MODES)
                raise ConfigurationError(
                    f"execution.environments.{key} must be one of: {allowed} (got {mode!r})"
                )
            environments[key.lower()] = normalized  # type: ignore[assignment]

        output = root.namespace("output", default={})
        log_path = str(output.get_str("log_path", default="logs"))
        log_dir = _resolve_path(log_path, base_dir)
        report_dir = _resolve_path(str(output.get_str("report_path", default=log_path)), base_dir)

        root.assert_consumed()

        if keep_workspaces:
            warnings.append("execution.keep_workspaces=true: job workspaces will not be removed")
        if environments and all(mode == "unavailable" for mode in environments.values()):
            warnings.append(
                "execution.environments marks every configured selector unavailable; "
                "jobs on those selectors will report infrastructure errors"
            )
        if not os.path.isdir(source_path):
            warnings.append(f"source.path does not exist or is not a directory: {source_path}")

        return (
            cls(
                workflow_path=workflow_path,
                source_path=source_path,
                log_dir=log_dir,
                report_dir=report_dir,
                source_revision=source_revision,
                max_parallel_jobs=max_parallel_jobs,
                shell=shell,
                keep_workspaces=keep_workspaces,
                environments=environments,
                effective_values=root.effective_values(),
            ),
            warnings,
        )
