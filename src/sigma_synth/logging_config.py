"""
Logging configuration for Sigma Synth.

Provides:
- Structured JSON logging for pipeline runs in CI
- Human-readable console output for interactive use
- Per-module log level configuration
- A run identifier attached to every record of one generation run
- Masking of GitHub tokens and authorization headers
"""

import contextvars
import json
import logging
import re
import sys
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


run_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)


def get_run_id() -> str | None:
    """Get the identifier of the current generation run."""
    return run_id_var.get()


def set_run_id(run_id: str) -> None:
    """Set the identifier of the current generation run."""
    run_id_var.set(run_id)


class LogEventType(str, Enum):
    """Standard event types for categorization."""

    # Run lifecycle
    RUN_START = "run.start"
    RUN_END = "run.end"
    RUN_ABORT = "run.abort"

    # Input sources
    SOURCE_LOAD = "source.load"
    SOURCE_DEGRADED = "source.degraded"
    SOURCE_RETRY = "source.retry"

    # Synthesis
    SYNTHESIS_EXTERNAL = "synthesis.external"
    SYNTHESIS_FALLBACK = "synthesis.fallback"
    TECHNIQUE_SKIPPED = "technique.skipped"

    # Artifacts
    ARTIFACT_WRITE = "artifact.write"
    ARTIFACT_WRITE_FAILED = "artifact.write_failed"

    # Corpus builder
    CORPUS_TREE = "corpus.tree"
    CORPUS_FILE_FAILED = "corpus.file_failed"
    CORPUS_SAVED = "corpus.saved"


class LogSchema(BaseModel):
    """
    Schema for structured log records.

    Keys outside this schema end up under ``extra``.
    """

    timestamp: str = Field(description="ISO 8601 timestamp in UTC")
    level: str = Field(description="Log level")
    message: str = Field(description="Human-readable log message")
    logger: str = Field(description="Logger name (module path)")

    event_type: str | None = Field(default=None, description="LogEventType value")
    run_id: str | None = Field(default=None, description="Generation run identifier")

    # Pipeline context
    source: str | None = Field(default=None, description="Input source name or location")
    technique_id: str | None = Field(default=None, description="ATT&CK technique ID")
    logsource: str | None = Field(default=None, description="product/service/category key")
    actor: str | None = Field(default=None, description="Threat actor name")
    path: str | None = Field(default=None, description="Artifact path")

    # Error context
    error_type: str | None = Field(default=None)
    error_message: str | None = Field(default=None)
    stack_trace: str | None = Field(default=None)

    duration_ms: float | None = Field(default=None)
    extra: dict[str, Any] | None = Field(default=None)

    source_file: str | None = Field(default=None)
    source_line: int | None = Field(default=None)
    source_function: str | None = Field(default=None)


# Order matters: the Bearer pattern must run before the generic ones
SENSITIVE_PATTERNS = [
    (re.compile(r'Authorization["\']?\s*[=:]\s*["\']?Bearer\s+[A-Za-z0-9\-_\.]+', re.IGNORECASE), "Authorization: Bearer ***"),
    (re.compile(r'Bearer\s+[A-Za-z0-9\-_\.]+', re.IGNORECASE), "Bearer ***"),
    (re.compile(r'\b(ghp|gho|ghs|ghu|github_pat)_[A-Za-z0-9_]+'), "gh_***"),
    (re.compile(r'token["\']?\s*[=:]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE), "token=***"),
]

_RECORD_ATTRIBUTES = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "taskName", "message",
    }
)


def mask_sensitive_data(message: str) -> str:
    """Mask credentials in log messages."""
    for pattern, replacement in SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class StructuredLogFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record, shaped by LogSchema."""

    def __init__(self, include_source: bool = True, mask_sensitive: bool = True):
        super().__init__()
        self.include_source = include_source
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if self.mask_sensitive:
            message = mask_sensitive_data(message)

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": message,
            "logger": record.name,
        }

        run_id = get_run_id()
        if run_id:
            log_entry["run_id"] = run_id

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES:
                continue
            if key in LogSchema.model_fields:
                log_entry[key] = value
            else:
                extra_fields[key] = value

        if extra_fields:
            log_entry["extra"] = extra_fields

        if self.include_source:
            log_entry["source_file"] = record.filename
            log_entry["source_line"] = record.lineno
            log_entry["source_function"] = record.funcName

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            if exc_type:
                log_entry["error_type"] = exc_type.__name__
            if exc_value:
                log_entry["error_message"] = str(exc_value)
            log_entry["stack_trace"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Console formatter with optional colors."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True, mask_sensitive: bool = True):
        super().__init__()
        self.use_colors = use_colors
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        level = record.levelname
        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level:8}{self.RESET}"
        else:
            level = f"{level:8}"

        message = record.getMessage()
        if self.mask_sensitive:
            message = mask_sensitive_data(message)

        run_id = get_run_id()
        if run_id:
            output = f"{timestamp} | {level} | [{run_id[:8]}] {record.name:30} | {message}"
        else:
            output = f"{timestamp} | {level} | {record.name:40} | {message}"

        if record.exc_info:
            output += "\n" + "".join(traceback.format_exception(*record.exc_info))

        return output


class StructuredLogger(logging.Logger):
    """
    Logger with helpers for schema fields.

    Plain ``info``/``warning`` calls keep working; the helpers only add
    ``extra`` keys the formatters know about.
    """

    def event(
        self,
        event_type: LogEventType | str,
        msg: str,
        level: int = logging.INFO,
        extra: dict[str, Any] | None = None,
        exc_info: bool = False,
        **fields: Any,
    ) -> None:
        """Log a categorized event."""
        extra_dict = dict(extra or {})
        extra_dict["event_type"] = (
            event_type if isinstance(event_type, str) else event_type.value
        )
        for key, value in fields.items():
            if value is not None:
                extra_dict[key] = value
        self.log(level, msg, exc_info=exc_info, extra=extra_dict)

    def source_event(
        self,
        event_type: LogEventType,
        source: str,
        msg: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Log an input-source event."""
        self.event(event_type, msg or f"Source {event_type.value}", source=source, **kwargs)

    def artifact_event(
        self,
        event_type: LogEventType,
        path: str,
        msg: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Log an artifact write event."""
        self.event(event_type, msg or f"Artifact {event_type.value}", path=path, **kwargs)


class LogConfig(BaseModel):
    """Configuration for the logging system."""

    level: str = Field(default="INFO", description="Default log level")
    format: str = Field(default="human", description="Output format: 'json' or 'human'")
    include_source: bool = Field(default=True, description="Include source file/line info")
    mask_sensitive: bool = Field(default=True, description="Mask tokens")
    use_colors: bool = Field(default=True, description="Use colors in human format")

    module_levels: dict[str, str] = Field(
        default_factory=lambda: {
            "httpx": "WARNING",
            "httpcore": "WARNING",
            "sigma_synth": "DEBUG",
        },
        description="Per-module log level overrides",
    )


def configure_logging(config: LogConfig | None = None) -> None:
    """
    Configure the root logger and module loggers.

    Call this once at startup.
    """
    if config is None:
        config = LogConfig()

    logging.setLoggerClass(StructuredLogger)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(getattr(logging, config.level.upper()))

    if config.format == "json":
        formatter: logging.Formatter = StructuredLogFormatter(
            include_source=config.include_source,
            mask_sensitive=config.mask_sensitive,
        )
    else:
        formatter = HumanReadableFormatter(
            use_colors=config.use_colors,
            mask_sensitive=config.mask_sensitive,
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for module, level in config.module_levels.items():
        logging.getLogger(module).setLevel(getattr(logging, level.upper()))


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger for the given module.

    Usage:
        from sigma_synth.logging_config import get_logger
        logger = get_logger(__name__)
        logger.event(LogEventType.ARTIFACT_WRITE, "Wrote rule", path="windows/sysmon/t1059.yml")
    """
    logging.setLoggerClass(StructuredLogger)
    logger = logging.getLogger(name)
    if not isinstance(logger, StructuredLogger):
        # Loggers created before the class was registered
        logger.__class__ = StructuredLogger
    return logger  # type: ignore[return-value]
