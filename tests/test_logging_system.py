"""
Unit tests for logging setup and the pipeline event reporter.
"""

import json
import logging
from datetime import datetime
from unittest.mock import Mock

import pytest

from dbstage.models.session import Outcome, PipelineStage
from dbstage.utils.logging import (
    LogEntry,
    LoggingReporter,
    LogLevel,
    StructuredFormatter,
    get_logger,
    setup_logging,
)


class TestLogEntry:
    
    def test_to_json(self):
        entry = LogEntry(
            timestamp=datetime(2024, 6, 1, 12, 0, 0),
            level=LogLevel.WARNING,
            message="Retaining Sales.bacpac",
            operation_id="001",
            stage="Cleanup",
            outcome="skipped",
        )
        
        data = json.loads(entry.to_json())
        
        assert data["timestamp"] == "2024-06-01T12:00:00"
        assert data["level"] == "WARNING"
        assert data["operation_id"] == "001"
        assert data["stage"] == "Cleanup"


class TestStructuredFormatter:
    
    def _record(self, **extra):
        record = logging.LogRecord(
            name="dbstage.test", level=logging.INFO, pathname=__file__, lineno=10,
            msg="Uploaded %s", args=("Sales.bacpac",), exc_info=None
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record
    
    def test_plain_record(self):
        data = json.loads(StructuredFormatter().format(self._record(container="backups")))
        
        assert data["message"] == "Uploaded Sales.bacpac"
        assert data["level"] == "INFO"
        assert data["metadata"]["container"] == "backups"
        assert data["metadata"]["line"] == 10
    
    def test_attached_log_entry_wins(self):
        entry = LogEntry(message="event", operation_id="007")
        data = json.loads(StructuredFormatter().format(self._record(log_entry=entry)))
        
        assert data["message"] == "event"
        assert data["operation_id"] == "007"


class TestSetupLogging:
    
    def teardown_method(self):
        logger = logging.getLogger("dbstage")
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
    
    def test_log_file_is_written(self, tmp_path):
        log_file = tmp_path / "logs" / "dbstage.log"
        setup_logging(level="DEBUG", log_file=str(log_file), rich_console=False)
        
        get_logger("tests").debug("hello from the batch")
        for handler in logging.getLogger("dbstage").handlers:
            handler.flush()
        
        assert "hello from the batch" in log_file.read_text()
    
    def test_structured_file_output(self, tmp_path):
        log_file = tmp_path / "dbstage.jsonl"
        setup_logging(level="INFO", log_file=str(log_file), structured_logging=True)
        
        get_logger("tests").info("structured line")
        for handler in logging.getLogger("dbstage").handlers:
            handler.flush()
        
        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "structured line"
    
    def test_handlers_replaced_on_repeat_setup(self):
        setup_logging(level="INFO", rich_console=False)
        setup_logging(level="WARNING", rich_console=False)
        
        logger = logging.getLogger("dbstage")
        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING


class TestLoggingReporter:
    
    @pytest.mark.parametrize("outcome, level", [
        (Outcome.STARTED, logging.INFO),
        (Outcome.SUCCEEDED, logging.INFO),
        (Outcome.SKIPPED, logging.INFO),
        (Outcome.WARNING, logging.WARNING),
        (Outcome.FAILED, logging.ERROR),
    ])
    def test_outcome_levels(self, outcome, level):
        logger = Mock(spec=logging.Logger)
        
        LoggingReporter(logger).emit(PipelineStage.UPLOAD, "001", outcome, "message")
        
        args, kwargs = logger.log.call_args
        assert args[0] == level
        assert args[1] == f"[001] Upload {outcome.value}: message"
        assert kwargs["extra"]["log_entry"].stage == "Upload"
    
    def test_accepts_plain_strings(self):
        logger = Mock(spec=logging.Logger)
        
        LoggingReporter(logger).emit("Export", "002", "failed", "SqlPackage exited with 1")
        
        assert logger.log.call_args[0][0] == logging.ERROR
