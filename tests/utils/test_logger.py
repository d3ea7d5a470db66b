"""
Tests for logging setup.
"""

import pytest
from loguru import logger

from clarity.config import LoggingConfig
from clarity.utils.logger import get_logger, setup_logging


@pytest.fixture
def sinks():
    added: list[int] = []
    yield added
    for sink_id in added:
        logger.remove(sink_id)


@pytest.mark.unit
class TestLogger:
    def test_console_only(self, sinks, tmp_path):
        sinks.extend(setup_logging(LoggingConfig(log_to_file=False, log_dir=str(tmp_path / "logs"))))

        assert len(sinks) == 1
        assert not (tmp_path / "logs").exists()

    def test_file_sinks(self, sinks, tmp_path):
        log_dir = tmp_path / "logs"
        sinks.extend(setup_logging(LoggingConfig(log_dir=str(log_dir), serialize=False)))

        get_logger("clarity.services.quota_ledger").warning("quota denied")
        logger.complete()

        assert len(sinks) == 3
        errors = (log_dir / "clarity_errors.log").read_text()
        assert "quota_ledger" in errors
        assert "quota denied" in errors
