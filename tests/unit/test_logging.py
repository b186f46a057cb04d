"""
Unit tests for structured logging.
"""

import json
import logging
import sys

import pytest

from sigma_synth.logging_config import (
    HumanReadableFormatter,
    LogConfig,
    LogEventType,
    StructuredLogFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    mask_sensitive_data,
    run_id_var,
    set_run_id,
)


@pytest.fixture
def restore_root_logger():
    """Put the root logger back after a test reconfigures it."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def run_id():
    token = run_id_var.set(None)
    yield
    run_id_var.reset(token)


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("sigma_synth.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestMasking:
    """Tests for credential masking."""

    @pytest.mark.unit
    def test_bearer_header_masked(self):
        """Test authorization headers lose their token."""
        masked = mask_sensitive_data("headers={'Authorization': 'Bearer abc.def-123'}")

        assert "abc.def-123" not in masked
        assert "***" in masked

    @pytest.mark.unit
    def test_github_token_masked(self):
        """Test GitHub personal access tokens are masked."""
        masked = mask_sensitive_data("using ghp_AbCdEf0123456789 for api.github.com")

        assert "ghp_AbCdEf0123456789" not in masked
        assert "gh_***" in masked

    @pytest.mark.unit
    def test_plain_message_untouched(self):
        """Test messages without secrets are unchanged."""
        message = "Wrote windows/sysmon/t1059.001.yml"

        assert mask_sensitive_data(message) == message


class TestFormatters:
    """Tests for the JSON and console formatters."""

    @pytest.mark.unit
    def test_structured_schema_fields(self, run_id):
        """Test schema fields stay top-level and unknown keys go under extra."""
        set_run_id("run-0001")
        record = _record(event_type="artifact.write", path="linux/auditd/t1486.yml", attempt=2)

        entry = json.loads(StructuredLogFormatter().format(record))

        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["run_id"] == "run-0001"
        assert entry["event_type"] == "artifact.write"
        assert entry["path"] == "linux/auditd/t1486.yml"
        assert entry["extra"] == {"attempt": 2}
        assert entry["source_line"] == 10

    @pytest.mark.unit
    def test_structured_exception_details(self, run_id):
        """Test exception type and message are captured."""
        try:
            raise PermissionError("read-only")
        except PermissionError:
            record = logging.LogRecord(
                "sigma_synth.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        entry = json.loads(StructuredLogFormatter(include_source=False).format(record))

        assert entry["error_type"] == "PermissionError"
        assert entry["error_message"] == "read-only"
        assert "source_line" not in entry

    @pytest.mark.unit
    def test_human_format_masks(self, run_id):
        """Test console output is masked and uncolored when asked."""
        output = HumanReadableFormatter(use_colors=False).format(_record("token=s3cret"))

        assert "s3cret" not in output
        assert "INFO" in output
        assert "\033[" not in output


class TestStructuredLogger:
    """Tests for StructuredLogger helpers."""

    @pytest.mark.unit
    def test_get_logger_class(self):
        """Test module loggers are StructuredLogger instances."""
        assert isinstance(get_logger("sigma_synth.tests.example"), StructuredLogger)

    @pytest.mark.unit
    def test_event_drops_none_fields(self, caplog):
        """Test event fields set to None are not attached."""
        logger = get_logger("sigma_synth.tests.events")

        with caplog.at_level(logging.DEBUG, logger="sigma_synth.tests.events"):
            logger.artifact_event(
                LogEventType.ARTIFACT_WRITE, "windows/sysmon/t1059.001.yml", actor=None,
                technique_id="T1059.001",
            )

        (record,) = caplog.records
        assert record.event_type == "artifact.write"
        assert record.path == "windows/sysmon/t1059.001.yml"
        assert record.technique_id == "T1059.001"
        assert not hasattr(record, "actor")
        assert record.getMessage() == "Artifact artifact.write"

    @pytest.mark.unit
    def test_source_event_level(self, caplog):
        """Test source events honour the requested level."""
        logger = get_logger("sigma_synth.tests.sources")

        with caplog.at_level(logging.DEBUG, logger="sigma_synth.tests.sources"):
            logger.source_event(
                LogEventType.SOURCE_DEGRADED, "actors.json", "unavailable", level=logging.WARNING
            )

        (record,) = caplog.records
        assert record.levelno == logging.WARNING
        assert record.source == "actors.json"


class TestConfigureLogging:
    """Tests for logging setup."""

    @pytest.mark.unit
    def test_json_format(self, restore_root_logger):
        """Test the JSON format installs the structured formatter."""
        configure_logging(LogConfig(level="WARNING", format="json"))

        (handler,) = restore_root_logger.handlers
        assert isinstance(handler.formatter, StructuredLogFormatter)
        assert handler.level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING

    @pytest.mark.unit
    def test_human_format(self, restore_root_logger):
        """Test the default format is the console formatter."""
        configure_logging()

        (handler,) = restore_root_logger.handlers
        assert isinstance(handler.formatter, HumanReadableFormatter)
