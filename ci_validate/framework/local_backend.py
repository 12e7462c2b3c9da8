"""Run jobs as subprocesses in throwaway workspaces on this machine.

Each job gets its own temporary directory; nothing is shared between jobs except the
read-only source artifact. Selectors (`ubuntu-latest`, `windows-latest`, `macOS-latest`)
map to the host platform unless `execution.environments` overrides them.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
import sys
import tempfile
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from ci_validate.framework.actions import ActionContext, resolve_action
from ci_validate.framework.process import run_command, shell_command
from validatekit.engine.executor import StepExecution
from validatekit.engine.model import Job, SourceArtifact, Step
from validatekit.errors import EnvironmentUnavailable, InfrastructureError

_PLATFORM_BY_PREFIX: tuple[tuple[str, str], ...] = (
    ("ubuntu", "linux"),
    ("linux", "linux"),
    ("windows", "win32"),
    ("macos", "darwin"),
)

_ENV_KEY_UNSAFE = re.compile(r"[^A-Z0-9_]")


def selector_platform(selector: str) -> str | None:
    key = selector.strip().lower()
    for prefix, platform in _PLATFORM_BY_PREFIX:
        if key.startswith(prefix):
            return platform
    return None


def input_env_name(name: str) -> str:
    """`with:` input name -> `INPUT_<NAME>`; spaces become underscores, hyphens are kept."""

    return "INPUT_" + str(name).strip().replace(" ", "_").upper()


def _input_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


def _make_writable_and_retry(func: Any, path: str, _exc: Any) -> None:
    # Git marks object files read-only, which blocks deletion on Windows.
    os.chmod(path, stat.S_IWRITE)
    func(path)


class LocalEnvironment:
    def __init__(
        self,
        *,
        selector: str,
        job: Job,
        workspace: str,
        artifact: SourceArtifact | None,
        shell: str | None = None,
        logger: logging.Logger | None = None,
    ):
        self.selector = selector
        self.job = job
        self.workspace = workspace
        self.artifact = artifact
        self.shell = shell
        self.logger = logger
        self.exports: dict[str, str] = {}

    def step_env(self, step: Step) -> dict[str, str]:
        env = dict(os.environ)
        env.update(
            {
                "CI": "true",
                "VALIDATE_WORKSPACE": self.workspace,
                "VALIDATE_STAGE": self.job.stage,
                "VALIDATE_JOB": self.job.job_id,
                "VALIDATE_ENVIRONMENT": self.selector,
            }
        )
        if self.artifact is not None and self.artifact.revision:
            env["VALIDATE_SHA"] = self.artifact.revision
        for axis, value in self.job.matrix:
            env["VALIDATE_MATRIX_" + _ENV_KEY_UNSAFE.sub("_", axis.upper())] = str(value)
        env.update(self.exports)
        for key, value in step.params.items():
            env[input_env_name(key)] = _input_value(value)
        env.update(step.env)
        return env

    def execute(self, step: Step, *, timeout_s: float | None = None) -> StepExecution:
        env = self.step_env(step)
        if step.is_command:
            args, use_shell = shell_command(str(step.command), self.shell)
            return run_command(args, cwd=self.workspace, env=env, timeout_s=timeout_s, shell=use_shell)

        action_cls, ref = resolve_action(step.action)
        ctx = ActionContext(
            step=step,
            ref=ref,
            workspace=self.workspace,
            artifact=self.artifact,
            env=env,
            timeout_s=timeout_s,
            exports=self.exports,
            logger=self.logger,
        )
        return action_cls().run(ctx)


class LocalBackend:
    def __init__(
        self,
        *,
        environments: Mapping[str, str] | None = None,
        shell: str | None = None,
        keep_workspaces: bool = False,
        workspace_root: str | None = None,
        logger: logging.Logger | None = None,
    ):
        self.environments = {str(k).strip().lower(): str(v) for k, v in (environments or {}).items()}
        self.shell = shell
        self.keep_workspaces = keep_workspaces
        self.workspace_root = workspace_root
        self.logger = logger or logging.getLogger(__name__)

    def is_available(self, selector: str) -> bool:
        mode = self.environments.get(selector.strip().lower())
        if mode is not None:
            return mode == "local"
        platform = selector_platform(selector)
        return platform is not None and sys.platform.startswith(platform)

    @contextmanager
    def acquire(self, job: Job, artifact: SourceArtifact | None) -> Iterator[LocalEnvironment]:
        if not self.is_available(job.environment):
            raise EnvironmentUnavailable(
                f"No local environment matches selector {job.environment} (host={sys.platform})",
                job_id=job.job_id,
                environment=job.environment,
            )

        try:
            if self.workspace_root:
                os.makedirs(self.workspace_root, exist_ok=True)
            workspace = tempfile.mkdtemp(prefix="ci_validate_", dir=self.workspace_root)
        except OSError as exc:
            raise InfrastructureError(
                f"Cannot create workspace: {exc}", job_id=job.job_id, environment=job.environment
            ) from exc

        self.logger.debug("Workspace for %s: %s", job.job_id, workspace)
        try:
            yield LocalEnvironment(
                selector=job.environment,
                job=job,
                workspace=workspace,
                artifact=artifact,
                shell=self.shell,
                logger=self.logger,
            )
        finally:
            self._cleanup(job, workspace)

    def _cleanup(self, job: Job, workspace: str) -> None:
        if self.keep_workspaces:
            self.logger.info("Kept workspace for %s: %s", job.job_id, workspace)
            return
        try:
            if sys.version_info >= (3, 12):
                shutil.rmtree(workspace, onexc=_make_writable_and_retry)
            else:
                shutil.rmtree(workspace, onerror=_make_writable_and_retry)
        except OSError as exc:
            raise InfrastructureError(
                f"Cannot remove workspace {workspace}: {exc}",
                job_id=job.job_id,
                environment=job.environment,
            ) from exc
