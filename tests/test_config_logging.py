"""
Test suite for configuration and structured logging
"""

import json
import logging
import pytest
from decimal import Decimal

from lending_engine.config import LendingConfig
from lending_engine.logging_config import JSONFormatter, log_action, setup_logging


class ListHandler(logging.Handler):
    """Collects records for inspection"""

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    """Attach a collecting handler to a throwaway logger"""
    logger = logging.getLogger("lending.tests.captured")
    handler = ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    yield logger, handler
    logger.removeHandler(handler)


class TestLendingConfig:
    """Test environment-driven configuration"""

    def test_defaults(self):
        """Test defaults select SQLite with optimistic locking on"""
        config = LendingConfig()
        assert config.storage_backend() == "sqlite"
        assert config.day_count_basis == 365
        assert config.enable_optimistic_locking

    def test_environment_override(self, monkeypatch):
        """Test LENDING_ prefixed variables override defaults"""
        monkeypatch.setenv("LENDING_DATABASE_URL", "memory://")
        monkeypatch.setenv("LENDING_DAY_COUNT_BASIS", "360")
        config = LendingConfig()
        assert config.storage_backend() == "memory"
        assert config.day_count_basis == 360

    @pytest.mark.parametrize("url,backend", [
        ("postgresql://user@localhost/lending", "postgresql"),
        ("postgres://user@localhost/lending", "postgresql"),
        ("memory://", "memory"),
        ("sqlite:///data/lending.db", "sqlite"),
    ])
    def test_backend_selection(self, url, backend):
        """Test the backend follows the URL scheme"""
        assert LendingConfig(database_url=url).storage_backend() == backend

    def test_sqlite_path(self):
        """Test the SQLite path is taken from the URL"""
        assert LendingConfig(database_url="sqlite:///data/lending.db").sqlite_path() == "data/lending.db"
        assert LendingConfig(database_url="sqlite:///").sqlite_path() == ":memory:"


class TestStructuredLogging:
    """Test JSON log output"""

    def test_log_action_attaches_fields(self, captured):
        """Test structured fields are set on the record"""
        logger, handler = captured
        log_action(logger, "info", "Repayment recorded", user_id="staff-1",
                   action="record_repayment", resource="loan:1", extra={"amount": Decimal('10.50')})

        record = handler.records[0]
        assert record.user_id == "staff-1"
        assert record.action == "record_repayment"
        assert record.resource == "loan:1"
        assert record.levelno == logging.INFO

    def test_log_action_respects_level(self, captured):
        """Test records below the logger level are dropped"""
        logger, handler = captured
        log_action(logger, "debug", "noise")
        assert handler.records == []

    def test_json_formatter(self, captured):
        """Test the formatter emits JSON with Decimals as strings"""
        logger, handler = captured
        log_action(logger, "warning", "Payout rejected", action="record_payout",
                   extra={"amount": Decimal('99.99')})

        entry = json.loads(JSONFormatter().format(handler.records[0]))
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "lending.tests.captured"
        assert entry["message"] == "Payout rejected"
        assert entry["extra"] == {"amount": "99.99"}
        assert "user_id" not in entry

    def test_setup_logging(self, tmp_path):
        """Test setup writes JSON lines to the configured file"""
        log_file = tmp_path / "lending.log"
        logger = setup_logging("INFO", logger_name="lending.tests.file", log_file=str(log_file))
        try:
            logger.info("hello")
            for handler in logger.handlers:
                handler.flush()
            line = log_file.read_text().strip()
            assert json.loads(line)["message"] == "hello"
        finally:
            for handler in logger.handlers[:]:
                handler.close()
                logger.removeHandler(handler)
