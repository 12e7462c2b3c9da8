"""Built-in `uses:` actions for the local backend.

An action is a class with a `name` (the action reference without its `@ref`) and a
`run(ctx)` method returning a `StepExecution`. Register new ones with `@register_action`.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from ci_validate.framework.process import COMMAND_NOT_FOUND, run_command
from validatekit.engine.executor import StepExecution
from validatekit.engine.model import Job, SourceArtifact, Step
from validatekit.errors import ConfigurationError, InfrastructureError


@dataclass(frozen=True)
class ActionContext:
    step: Step
    ref: str | None
    workspace: str
    artifact: SourceArtifact | None
    env: Mapping[str, str]
    timeout_s: float | None = None
    # Variables exported to later steps of the same job.
    exports: dict[str, str] = field(default_factory=dict)
    logger: logging.Logger | None = None

    def param(self, key: str, default: Any = None) -> Any:
        return self.step.params.get(key, default)


class Action(Protocol):
    name: str

    def run(self, ctx: ActionContext) -> StepExecution: ...


_ACTION_REGISTRY: dict[str, type[Action]] = {}


def register_action(cls: type[Action]) -> type[Action]:
    name = getattr(cls, "name", None)
    if not isinstance(name, str) or not name.strip():
        raise TypeError("Action must define a non-empty 'name' attribute")

    key = name.strip().lower()
    if key in _ACTION_REGISTRY:
        raise ValueError(f"Duplicate action name: {key}")

    _ACTION_REGISTRY[key] = cls
    return cls


def split_action_ref(action: str) -> tuple[str, str | None]:
    name, sep, ref = str(action).strip().partition("@")
    return name.strip(), (ref.strip() or None) if sep else None


def available_actions() -> tuple[str, ...]:
    return tuple(sorted(_ACTION_REGISTRY.keys()))


def resolve_action(action: str) -> tuple[type[Action], str | None]:
    name, ref = split_action_ref(action)
    action_cls = _ACTION_REGISTRY.get(name.lower())
    if action_cls is None:
        raise ConfigurationError(
            f"Unknown action: {action} (available: {', '.join(available_actions()) or '<none>'})"
        )
    return action_cls, ref


def check_actions(jobs: Iterable[Job]) -> None:
    """Fail before anything runs when a job uses an action the local backend cannot run."""

    for job in jobs:
        for step in job.steps:
            if step.is_command:
                continue
            try:
                resolve_action(step.action)
            except ConfigurationError as exc:
                raise ConfigurationError(f"{job.job_id}/{step.name}: {exc}") from exc


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "recursive"}


def _split_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item.strip()]


def _join(*executions: StepExecution) -> StepExecution:
    last = executions[-1]
    return StepExecution(
        exit_code=last.exit_code,
        stdout="".join(execution.stdout for execution in executions),
        stderr="".join(execution.stderr for execution in executions),
        timed_out=last.timed_out,
    )


@register_action
class CheckoutAction:
    """Copy the source artifact into the job workspace."""

    name = "actions/checkout"

    def run(self, ctx: ActionContext) -> StepExecution:
        if ctx.artifact is None:
            return StepExecution(exit_code=1, stderr="checkout: no source artifact was provided\n")

        source = os.path.abspath(ctx.artifact.path)
        if not os.path.isdir(source):
            return StepExecution(exit_code=1, stderr=f"checkout: source not found: {source}\n")

        try:
            shutil.copytree(source, ctx.workspace, dirs_exist_ok=True, symlinks=True)
        except (OSError, shutil.Error) as exc:
            raise InfrastructureError(f"checkout: failed to copy {source}: {exc}") from exc

        copied = StepExecution(exit_code=0, stdout=f"Checked out {source} into {ctx.workspace}\n")
        if not _truthy(ctx.param("submodules", False)):
            return copied

        if shutil.which("git") is None:
            return StepExecution(
                exit_code=COMMAND_NOT_FOUND,
                stdout=copied.stdout,
                stderr="checkout: submodules requested but git was not found\n",
            )
        submodules = run_command(
            ["git", "submodule", "update", "--init", "--recursive"],
            cwd=ctx.workspace,
            env=ctx.env,
            timeout_s=ctx.timeout_s,
        )
        return _join(copied, submodules)


@register_action
class RustToolchainAction:
    """Install a Rust toolchain with rustup and select it for the rest of the job."""

    name = "dtolnay/rust-toolchain"

    def run(self, ctx: ActionContext) -> StepExecution:
        toolchain = str(ctx.param("toolchain") or ctx.ref or "").strip()
        if not toolchain:
            return StepExecution(
                exit_code=1,
                stderr="rust-toolchain: 'toolchain' input is required when the ref does not name one\n",
            )

        rustup = shutil.which("rustup", path=ctx.env.get("PATH"))
        if rustup is None:
            return StepExecution(
                exit_code=COMMAND_NOT_FOUND, stderr="rust-toolchain: rustup was not found on PATH\n"
            )

        cmd = [rustup, "toolchain", "install", toolchain, "--profile", "minimal", "--no-self-update"]
        for component in _split_list(ctx.param("components")):
            cmd.extend(["--component", component])
        for target in _split_list(ctx.param("targets")):
            cmd.extend(["--target", target])

        if ctx.logger:
            ctx.logger.debug("rust-toolchain: %s", " ".join(cmd))
        execution = run_command(cmd, cwd=ctx.workspace, env=ctx.env, timeout_s=ctx.timeout_s)
        if execution.ok:
            ctx.exports["RUSTUP_TOOLCHAIN"] = toolchain
        return execution
