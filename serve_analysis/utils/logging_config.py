"""Logging configuration for the serve analysis system."""

import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Inference and database libraries are chatty at INFO
QUIET_LOGGERS = (
    "onnxruntime",
    "ultralytics",
    "mediapipe",
    "absl",
    "sqlalchemy.engine",
)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: str = DEFAULT_FORMAT,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    console_output: bool = True,
    quiet_loggers: Iterable[str] = QUIET_LOGGERS,
) -> logging.Logger:
    """
    Set up logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to a rotating log file (optional).
        log_format: Log message format.
        max_bytes: Maximum size of the log file before rotation.
        backup_count: Number of rotated files to keep.
        console_output: Whether to log to stdout.
        quiet_loggers: Third-party loggers capped at WARNING.

    Returns:
        Root logger instance.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(log_format, DEFAULT_DATE_FORMAT)

    handlers = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.debug(f"Logging configured: level={level}, file={log_file}")
    return root_logger


def setup_logging_from_config(config: Dict[str, Any], verbose: bool = False) -> logging.Logger:
    """
    Configure logging from the ``logging`` section of config.yaml.

    Recognized keys: level, file, format, max_bytes, backup_count.

    Args:
        config: Full parsed configuration.
        verbose: Force DEBUG regardless of the configured level.
    """
    section = (config or {}).get("logging") or {}
    return setup_logging(
        level="DEBUG" if verbose else section.get("level", "INFO"),
        log_file=section.get("file"),
        log_format=section.get("format", DEFAULT_FORMAT),
        max_bytes=section.get("max_bytes", 10 * 1024 * 1024),
        backup_count=section.get("backup_count", 5),
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module."""
    return logging.getLogger(name)


class IntervalLogger:
    """
    Emits a recurring message at most once per interval per key.

    Per-frame failures repeat at the frame rate; this keeps the first
    occurrence and then one line per interval with the number of
    suppressed repeats.

    Example:
        failures = IntervalLogger(logger, interval=5.0)
        failures.warning("tier:color", "Tier 'color' failed: shape mismatch")
    """

    def __init__(
        self,
        logger: logging.Logger,
        interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.logger = logger
        self.interval = interval
        self.clock = clock
        self._last: Dict[str, float] = {}
        self._suppressed: Dict[str, int] = {}

    def log(self, level: int, key: str, message: str) -> bool:
        """
        Log a message unless the same key was logged within the interval.

        Returns:
            True if the message was emitted.
        """
        now = self.clock()
        last = self._last.get(key)
        if last is not None and now - last < self.interval:
            self._suppressed[key] = self._suppressed.get(key, 0) + 1
            return False

        suppressed = self._suppressed.pop(key, 0)
        if suppressed:
            message = f"{message} ({suppressed} similar messages suppressed)"
        self.logger.log(level, message)
        self._last[key] = now
        return True

    def warning(self, key: str, message: str) -> bool:
        return self.log(logging.WARNING, key, message)

    def reset(self) -> None:
        self._last.clear()
        self._suppressed.clear()


class LoggerMixin:
    """
    Gives a class a ``self.logger`` named after its module and class.

    Example:
        class ProjectileDetector(LoggerMixin):
            def process(self, frame, context):
                self.logger.debug("Projectile lost")
    """

    @property
    def logger(self) -> logging.Logger:
        if not hasattr(self, "_logger"):
            self._logger = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        return self._logger
