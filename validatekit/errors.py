from __future__ import annotations


class ConfigurationError(ValueError):
    """Malformed pipeline definition (empty axis, duplicate stage, unknown keys, ...).

    Always raised before any job is submitted to an execution backend.
    """


class InfrastructureError(RuntimeError):
    """The execution environment failed outside the controlled step sequence."""

    def __init__(self, message: str, *, job_id: str | None = None, environment: str | None = None):
        super().__init__(message)
        self.job_id = job_id
        self.environment = environment


class EnvironmentUnavailable(InfrastructureError):
    """No execution environment could be acquired for a job's selector."""
