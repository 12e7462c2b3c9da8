from __future__ import annotations

import shlex
import subprocess
from collections.abc import Mapping, Sequence
from typing import Any

from validatekit.engine.executor import StepExecution
from validatekit.errors import InfrastructureError

# Exit status shells use for "command not found".
COMMAND_NOT_FOUND = 127


def _text(value: Any) -> str:
    # TimeoutExpired carries bytes even when the process ran in text mode.
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def shell_command(command: str, shell: str | None) -> tuple[str | list[str], bool]:
    """Return `(args, use_shell)` for a `run:` command.

    Without a configured shell the platform shell runs the command. A configured shell is a
    command prefix (for example `bash -eo pipefail -c`) the command string is appended to.
    """

    if not shell:
        return command, True
    return [*shlex.split(shell), command], False


def run_command(
    args: str | Sequence[str],
    *,
    cwd: str,
    env: Mapping[str, str],
    timeout_s: float | None = None,
    shell: bool = False,
) -> StepExecution:
    try:
        proc = subprocess.run(
            args if isinstance(args, str) else list(args),
            cwd=cwd,
            env=dict(env),
            shell=shell,
            check=False,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as exc:
        return StepExecution(
            exit_code=None, stdout=_text(exc.stdout), stderr=_text(exc.stderr), timed_out=True
        )
    except FileNotFoundError as exc:
        if shell:
            raise InfrastructureError(f"Shell unavailable for command {args!r}: {exc}") from exc
        return StepExecution(exit_code=COMMAND_NOT_FOUND, stderr=f"command not found: {exc}")
    except OSError as exc:
        raise InfrastructureError(f"Failed to start command {args!r}: {exc}") from exc

    return StepExecution(exit_code=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
