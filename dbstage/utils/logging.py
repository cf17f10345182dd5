"""
Logging and event reporting for dbstage.

This module provides logging setup (Rich console, rotating files, optional
structured JSON) and the reporting sink the pipeline emits its stage events to.
"""

import json
import logging
import logging.handlers
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from rich.console import Console
from rich.logging import RichHandler

from dbstage.models.session import Outcome, PipelineStage

ROOT_LOGGER_NAME = "dbstage"


class LogLevel(str, Enum):
    """Log levels for structured logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class LogEntry:
    """Structured log entry for one pipeline event."""
    timestamp: datetime = field(default_factory=datetime.now)
    level: LogLevel = LogLevel.INFO
    message: str = ""
    operation_id: Optional[str] = None
    stage: Optional[str] = None
    outcome: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert log entry to dictionary."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data
    
    def to_json(self) -> str:
        """Convert log entry to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class StructuredFormatter(logging.Formatter):
    """Formatter for structured JSON logging."""
    
    _RESERVED = {
        'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
        'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
        'thread', 'threadName', 'processName', 'process', 'getMessage',
        'exc_info', 'exc_text', 'stack_info', 'taskName', 'message',
    }
    
    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = getattr(record, 'log_entry', None)
        
        if log_entry and isinstance(log_entry, LogEntry):
            return log_entry.to_json()
        
        log_entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created),
            level=LogLevel(record.levelname),
            message=record.getMessage(),
            metadata={
                'module': record.module,
                'function': record.funcName,
                'line': record.lineno,
            }
        )
        
        for key, value in record.__dict__.items():
            if key not in self._RESERVED:
                log_entry.metadata[key] = value
        
        if record.exc_info:
            log_entry.metadata['exception'] = self.formatException(record.exc_info)
        
        return log_entry.to_json()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    rich_console: bool = True,
    structured_logging: bool = False,
    max_log_size: int = 50 * 1024 * 1024,  # 50MB
    backup_count: int = 5,
    console: Optional[Console] = None
) -> logging.Logger:
    """
    Set up logging for dbstage.
    
    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path (rotated)
        rich_console: Whether to use Rich console handler
        structured_logging: Whether to use structured JSON logging
        max_log_size: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep
        console: Rich console to log to
    
    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()
    
    if rich_console and not structured_logging:
        console_handler: logging.Handler = RichHandler(
            console=console or Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True
        )
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        if structured_logging:
            console_handler.setFormatter(StructuredFormatter())
        else:
            console_handler.setFormatter(logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
    
    logger.addHandler(console_handler)
    
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=backup_count
        )
        
        if structured_logging:
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
        
        logger.addHandler(file_handler)
    
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance below the dbstage root logger."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class Reporter(Protocol):
    """Sink for pipeline stage events."""
    
    def emit(
        self,
        stage: Union[PipelineStage, str],
        operation_id: str,
        outcome: Union[Outcome, str],
        message: str
    ) -> None:
        ...


_OUTCOME_LEVELS = {
    Outcome.FAILED: logging.ERROR,
    Outcome.WARNING: logging.WARNING,
}


class LoggingReporter:
    """Reporter that turns each pipeline event into a structured log record."""
    
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger("events")
    
    def emit(
        self,
        stage: Union[PipelineStage, str],
        operation_id: str,
        outcome: Union[Outcome, str],
        message: str
    ) -> None:
        stage_value = getattr(stage, "value", stage)
        outcome_value = getattr(outcome, "value", outcome)
        level = _OUTCOME_LEVELS.get(Outcome(outcome_value), logging.INFO)
        
        log_entry = LogEntry(
            level=LogLevel(logging.getLevelName(level)),
            message=message,
            operation_id=operation_id,
            stage=stage_value,
            outcome=outcome_value,
        )
        self.logger.log(
            level,
            f"[{operation_id}] {stage_value} {outcome_value}: {message}",
            extra={'log_entry': log_entry}
        )
