import logging
from pathlib import Path

from ci_validate.foundation.logging_utils import close_logger, setup_operational_logger


def test_operational_logger_writes_debug_to_file_only(tmp_path: Path):
    logger, log_file = setup_operational_logger(str(tmp_path / "logs"), "unit_run")
    try:
        logger.debug("Output tail for check/Run cargo check:\nwarning: unused → variable")
        logger.info("Stage finished: check (passed)")
    finally:
        close_logger(logger)

    assert log_file == str(tmp_path / "logs" / "unit_run_validate.log")
    content = Path(log_file).read_text(encoding="utf-8")
    assert " | DEBUG | Output tail for check/Run cargo check:" in content
    assert "unused → variable" in content
    assert " | INFO | Stage finished: check (passed)" in content

    assert logging.getLogger("ci_validate.unit_run").handlers == []


def test_operational_logger_does_not_propagate_and_resets_handlers(tmp_path: Path):
    first, _ = setup_operational_logger(str(tmp_path), "same_id")
    second, _ = setup_operational_logger(str(tmp_path), "same_id")
    try:
        assert first is second
        assert second.propagate is False
        levels = sorted(handler.level for handler in second.handlers)
        assert levels == [logging.DEBUG, logging.INFO]
    finally:
        close_logger(second)
