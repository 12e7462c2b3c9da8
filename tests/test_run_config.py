import os
from pathlib import Path

import pytest

from ci_validate.foundation.config_io import load_config
from ci_validate.framework.config import RunConfig
from validatekit.errors import ConfigurationError


def _base_cfg_dict(tmp_path) -> dict:
    return {
        "workflow": {"path": str(tmp_path / "validate.yml")},
        "source": {"path": str(tmp_path)},
        "output": {"log_path": str(tmp_path / "logs")},
    }


def test_minimal_config_uses_defaults(tmp_path):
    cfg, warnings = RunConfig.from_dict(_base_cfg_dict(tmp_path))

    assert cfg.workflow_path == os.path.abspath(tmp_path / "validate.yml")
    assert cfg.log_dir == os.path.abspath(tmp_path / "logs")
    assert cfg.report_dir == cfg.log_dir
    assert cfg.max_parallel_jobs is None
    assert cfg.shell is None
    assert cfg.keep_workspaces is False
    assert cfg.environments == {}
    assert warnings == []


def test_relative_paths_resolve_against_config_directory(tmp_path):
    cfg_dict = {
        "workflow": {"path": "validate.yml"},
        "source": {"path": ".."},
        "output": {"log_path": "../logs", "report_path": "../logs/reports"},
    }
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    cfg, _warnings = RunConfig.from_dict(cfg_dict, base_dir=str(config_dir))

    assert cfg.workflow_path == os.path.abspath(config_dir / "validate.yml")
    assert cfg.source_path == os.path.abspath(tmp_path)
    assert cfg.log_dir == os.path.abspath(tmp_path / "logs")
    assert cfg.report_dir == os.path.abspath(tmp_path / "logs" / "reports")


def test_unknown_config_keys_raise(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["execution"] = {"max_parallel_jobs": 2, "paralel": True}

    with pytest.raises(ConfigurationError, match=r"Unknown config keys under execution: paralel"):
        RunConfig.from_dict(cfg_dict)


def test_unknown_top_level_section_raises(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["notifications"] = {"slack": True}

    with pytest.raises(ConfigurationError, match=r"Unknown config keys under <root>: notifications"):
        RunConfig.from_dict(cfg_dict)


def test_workflow_path_is_required(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    del cfg_dict["workflow"]

    with pytest.raises(ConfigurationError, match=r"Missing required config namespace: workflow"):
        RunConfig.from_dict(cfg_dict)


def test_environment_modes_are_validated_and_normalized(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["execution"] = {"environments": {"macOS-latest": "Unavailable", "ubuntu-latest": "local"}}

    cfg, warnings = RunConfig.from_dict(cfg_dict)

    assert cfg.environments == {"macos-latest": "unavailable", "ubuntu-latest": "local"}
    assert warnings == []

    cfg_dict["execution"] = {"environments": {"windows-latest": "docker"}}
    with pytest.raises(ConfigurationError, match=r"execution.environments.windows-latest must be one of"):
        RunConfig.from_dict(cfg_dict)


def test_max_parallel_jobs_must_be_positive(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["execution"] = {"max_parallel_jobs": 0}

    with pytest.raises(ConfigurationError, match=r"execution.max_parallel_jobs must be >= 1"):
        RunConfig.from_dict(cfg_dict)


def test_warnings_for_risky_settings(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["source"] = {"path": str(tmp_path / "missing")}
    cfg_dict["execution"] = {"keep_workspaces": True, "environments": {"ubuntu-latest": "unavailable"}}

    _cfg, warnings = RunConfig.from_dict(cfg_dict)

    assert any("keep_workspaces" in w for w in warnings)
    assert any("every configured selector unavailable" in w for w in warnings)
    assert any("source.path does not exist" in w for w in warnings)


def test_shipped_config_parses():
    repo_root = Path(__file__).resolve().parents[1]
    cfg_dict, meta = load_config(config_path=str(repo_root / "config" / "config.yaml"))

    cfg, _warnings = RunConfig.from_dict(cfg_dict, base_dir=meta["base_dir"])

    assert cfg.workflow_path == os.path.abspath(repo_root / "config" / "validate.yml")
    assert cfg.source_path == os.path.abspath(repo_root)


def test_effective_values_record_defaults_as_read(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["execution"] = {"environments": {"macOS-latest": "unavailable"}}

    cfg, _warnings = RunConfig.from_dict(cfg_dict)

    execution = cfg.effective_values["execution"]
    assert execution["max_parallel_jobs"] is None
    assert execution["keep_workspaces"] is False
    assert execution["environments"] == {"macOS-latest": "unavailable"}
    assert cfg.effective_values["output"]["log_path"] == str(tmp_path / "logs")
