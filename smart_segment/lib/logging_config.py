#!/usr/bin/env python3
from __future__ import annotations
import logging
import sys
import traceback
from pathlib import Path
from typing import Optional, Any, Dict
from datetime import datetime
import json


LOGGER_NAME = "smart_segment"


class SegmentationError(Exception):
    """Base exception for segmentation and sampling errors."""
    def __init__(self, message: str, stage: str = "unknown", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.stage = stage
        self.cause = cause
        self.timestamp = datetime.now()


class CancellationError(SegmentationError):
    """Raised when a cooperative cancellation token is triggered."""
    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message, stage="cancellation")


class ClassifierError(SegmentationError):
    """Exception for failures of the neural VAD backend."""
    def __init__(
        self,
        message: str,
        stage: str = "classifier",
        cause: Optional[BaseException] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message, stage=stage, cause=cause)
        self.detail = detail


class ClassifierInitError(ClassifierError):
    """The neural backend could not be loaded."""
    def __init__(self, reason: str, cause: Optional[BaseException] = None, detail: Optional[str] = None):
        super().__init__(
            f"VAD classifier failed to initialize: {reason}",
            stage="classifier_init",
            cause=cause,
            detail=detail,
        )
        self.reason = reason


class ClassifierProcessError(ClassifierError):
    """A single inference call failed."""
    def __init__(self, reason: str, cause: Optional[BaseException] = None, detail: Optional[str] = None):
        super().__init__(
            f"VAD classifier failed to process audio: {reason}",
            stage="classifier_process",
            cause=cause,
            detail=detail,
        )
        self.reason = reason


class SessionBusyError(SegmentationError):
    """A second process call was issued while one is still in flight."""
    def __init__(self, message: str = "VAD classifier session already has a request in flight"):
        super().__init__(message, stage="classifier_process")


class InvalidInputError(SegmentationError, ValueError):
    """Exception for malformed signals, spans or parameters."""
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, stage="validation", cause=cause)


class AudioProcessingError(SegmentationError):
    """Exception for audio decoding and encoding errors."""
    def __init__(self, message: str, audio_path: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, stage="audio_processing", cause=cause)
        self.audio_path = audio_path


class StructuredFormatter(logging.Formatter):
    """Custom formatter that outputs structured JSON logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process": record.processName,
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        # Add custom attributes
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message',
}


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']
        formatted = super().format(record)
        return f"{color}{formatted}{reset}"


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    console_output: bool = True,
    structured_output: bool = False
) -> logging.Logger:
    """
    Set up logging for the segmentation engine.

    Parameters
    ----------
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_file : Optional[str]
        Path to log file. If None, no file logging.
    console_output : bool
        Whether to output to console
    structured_output : bool
        Whether to use structured JSON formatting

    Returns
    -------
    logging.Logger
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))

    logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)

        if structured_output:
            console_formatter = StructuredFormatter()
        else:
            console_formatter = ColoredFormatter(
                fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)

        if structured_output:
            file_formatter = StructuredFormatter()
        else:
            file_formatter = logging.Formatter(
                fmt='%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger


def log_exception(
    logger: logging.Logger,
    exception: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with context information.

    Parameters
    ----------
    logger : logging.Logger
        Logger instance to use
    exception : BaseException
        Exception to log
    context : Optional[Dict[str, Any]]
        Additional context information
    level : int
        Level to log at; fallbacks that recover log at WARNING
    """
    extra: Dict[str, Any] = {
        "exception_type": type(exception).__name__,
        "exception_message": str(exception),
    }

    if isinstance(exception, SegmentationError):
        extra["stage"] = exception.stage
        extra["error_timestamp"] = exception.timestamp.isoformat()

        if isinstance(exception, ClassifierError) and exception.detail:
            extra["detail"] = exception.detail
        elif isinstance(exception, AudioProcessingError) and exception.audio_path:
            extra["audio_path"] = exception.audio_path

    if context:
        extra.update(context)

    logger.log(
        level,
        f"Exception in {extra.get('stage', 'unknown')}: {exception}",
        exc_info=exception if level >= logging.ERROR else None,
        extra=extra
    )


_global_logger: Optional[logging.Logger] = None


def get_logger() -> logging.Logger:
    """Get or create the global logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = setup_logging()
    return _global_logger


class OutputContext:
    """Global context for controlling output verbosity and logging."""

    def __init__(self, log_level: str = "WARNING"):
        self.log_level = log_level.upper()
        self.level_value = getattr(logging, self.log_level)
        self.logger = get_logger()

    def should_log(self, level: str) -> bool:
        """Check if a message at the given level should be logged."""
        return getattr(logging, level.upper()) >= self.level_value

    def log_progress(self, message: str, details: Optional[str] = None) -> None:
        if self.should_log("INFO"):
            self.logger.info(f"[i] {message}")
            if details and self.should_log("DEBUG"):
                self.logger.debug(f"    {details}")

    def log_debug(self, message: str) -> None:
        if self.should_log("DEBUG"):
            self.logger.debug(f"[d] {message}")

    def log_completion(self, message: str, stats: Optional[Dict[str, Any]] = None) -> None:
        if self.should_log("INFO"):
            self.logger.info(f"[✓] {message}")
            if stats and self.should_log("DEBUG"):
                for key, value in stats.items():
                    self.logger.debug(f"    {key}: {value}")


_global_output_context: Optional[OutputContext] = None


def get_output_context() -> OutputContext:
    """Get or create the global output context."""
    global _global_output_context
    if _global_output_context is None:
        _global_output_context = OutputContext()
    return _global_output_context


def configure_global_logging(
    log_level: str = "WARNING",
    log_file: Optional[str] = None,
    console_output: bool = True,
    structured_output: bool = False
) -> None:
    """Configure the global logger and output context."""
    global _global_logger, _global_output_context
    _global_logger = setup_logging(log_level, log_file, console_output, structured_output)
    _global_output_context = OutputContext(log_level)


def log_progress(message: str, details: Optional[str] = None) -> None:
    """Log progress information globally."""
    get_output_context().log_progress(message, details)


def log_debug(message: str) -> None:
    """Log a debug message globally."""
    get_output_context().log_debug(message)


def log_completion(message: str, stats: Optional[Dict[str, Any]] = None) -> None:
    """Log completion message globally."""
    get_output_context().log_completion(message, stats)
