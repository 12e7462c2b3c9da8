"""Application framework for `ci_validate`.

Everything that knows about concrete file formats and the host machine lives here:

- `ci_validate.framework.config`: strict run config parsing
- `ci_validate.framework.workflow`: workflow YAML -> `validatekit.Pipeline`
- `ci_validate.framework.local_backend` / `actions`: subprocess execution in temp workspaces
- `ci_validate.framework.report`: JSON report + run index

For the app-agnostic engine (matrix expansion, job execution, orchestration), use `validatekit`.
"""
