"""
Structured logging system for buildverify.

Provides centralized logging with console and file outputs, plus
dispatch metrics for monitoring job throughput and failures.
"""

import logging
import sys
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring dispatch and background verification.
    """

    def __init__(
        self,
        name: str = "buildverify",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()  # Remove existing handlers

        # Metrics are updated from request threads and the worker pool
        self._metrics_lock = threading.Lock()
        self.metrics = {
            "requests_submitted": 0,
            "jobs_created": 0,
            "duplicates_by_status": {},
            "jobs_completed": 0,
            "jobs_failed": 0,
            "errors_by_type": {},
        }

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"buildverify_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_submission(self):
        """Increment submitted request counter."""
        with self._metrics_lock:
            self.metrics["requests_submitted"] += 1

    def record_job_created(self):
        with self._metrics_lock:
            self.metrics["jobs_created"] += 1

    def record_duplicate(self, status: str):
        """Record a request answered from an existing job."""
        with self._metrics_lock:
            by_status = self.metrics["duplicates_by_status"]
            by_status[status] = by_status.get(status, 0) + 1

    def record_job_completed(self):
        with self._metrics_lock:
            self.metrics["jobs_completed"] += 1

    def record_job_failed(self):
        with self._metrics_lock:
            self.metrics["jobs_failed"] += 1

    def record_error(self, error_type: str):
        """Record an error by exception class name."""
        with self._metrics_lock:
            errors = self.metrics["errors_by_type"]
            errors[error_type] = errors.get(error_type, 0) + 1

    def get_metrics(self) -> dict:
        """Return a snapshot of current metrics."""
        with self._metrics_lock:
            metrics_copy = json.loads(json.dumps(self.metrics))

        finished = metrics_copy["jobs_completed"] + metrics_copy["jobs_failed"]
        if finished > 0:
            metrics_copy["completion_rate"] = round(
                metrics_copy["jobs_completed"] / finished, 3
            )

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Dispatch Metrics ===")
        self.info(f"Requests: {metrics['requests_submitted']}")
        self.info(f"Jobs created: {metrics['jobs_created']}")
        self.info(
            f"Jobs finished: {metrics['jobs_completed']} completed, {metrics['jobs_failed']} failed"
        )

        if metrics["duplicates_by_status"]:
            self.info("Duplicates:")
            for status, count in metrics["duplicates_by_status"].items():
                self.info(f"  {status}: {count}")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "buildverify",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
