"""
Structured logging system for leadscan.

Provides centralized logging with console and file outputs, log levels,
and metrics tracking for monitoring upstream health.
"""

import copy
import json
import logging
import os
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring upstream request health.
    """

    def __init__(
        self,
        name: str = "leadscan",
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

        # Worker threads record metrics concurrently
        self._metrics_lock = threading.Lock()
        self.metrics = {
            "api_calls": 0,
            "requests_attempted": 0,
            "requests_successful": 0,
            "requests_failed": 0,
            "errors_by_type": {},
            "capability_success_rate": {},
            "circuit_transitions": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"leadscan_{datetime.now().strftime('%Y%m%d')}.log"
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

    def record_api_call(self):
        """Increment API call counter (one per HTTP request sent)."""
        with self._metrics_lock:
            self.metrics["api_calls"] += 1

    def record_request_attempt(self, capability: str):
        """Record a logical request against an upstream capability."""
        with self._metrics_lock:
            self.metrics["requests_attempted"] += 1
            stats = self.metrics["capability_success_rate"].setdefault(
                capability, {"attempts": 0, "successes": 0}
            )
            stats["attempts"] += 1

    def record_request_success(self, capability: str):
        """Record successful request."""
        with self._metrics_lock:
            self.metrics["requests_successful"] += 1
            if capability in self.metrics["capability_success_rate"]:
                self.metrics["capability_success_rate"][capability]["successes"] += 1

    def record_request_failure(self, capability: str, error_type: str):
        """Record failed request."""
        with self._metrics_lock:
            self.metrics["requests_failed"] += 1
            errors = self.metrics["errors_by_type"]
            errors[error_type] = errors.get(error_type, 0) + 1

    def record_circuit_transition(self, breaker: str, transition: str):
        """Count circuit breaker state transitions, e.g. 'CLOSED -> OPEN'."""
        with self._metrics_lock:
            transitions = self.metrics["circuit_transitions"].setdefault(breaker, {})
            transitions[transition] = transitions.get(transition, 0) + 1

    def get_metrics(self) -> dict:
        """Return a snapshot of current metrics."""
        with self._metrics_lock:
            metrics_copy = copy.deepcopy(self.metrics)
        for stats in metrics_copy["capability_success_rate"].values():
            if stats["attempts"] > 0:
                stats["success_rate"] = round(
                    stats["successes"] / stats["attempts"], 3
                )

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        total_attempts = metrics["requests_attempted"]
        total_successes = metrics["requests_successful"]
        overall_rate = 0
        if total_attempts > 0:
            overall_rate = round(total_successes / total_attempts * 100, 1)

        self.info("=== Upstream Session Metrics ===")
        self.info(f"API Calls: {metrics['api_calls']}")
        self.info(f"Requests: {total_successes}/{total_attempts} ({overall_rate}% success)")

        if metrics["capability_success_rate"]:
            self.info("Capability Success Rates:")
            for capability, stats in metrics["capability_success_rate"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {capability}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")

        if metrics["circuit_transitions"]:
            self.info("Circuit Transitions:")
            for breaker, transitions in metrics["circuit_transitions"].items():
                for transition, count in transitions.items():
                    self.info(f"  {breaker}: {transition} x{count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None
_global_lock = threading.Lock()


def get_logger(
    name: str = "leadscan",
    level: Optional[str] = None,
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level; defaults to $LOG_LEVEL or INFO
        **kwargs: Additional arguments passed to StructuredLogger.
            File output defaults to on only when $LOG_DIR is set.

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    with _global_lock:
        if _global_logger is None:
            if level is None:
                level = os.getenv("LOG_LEVEL", "INFO")
            if "log_dir" not in kwargs and os.getenv("LOG_DIR"):
                kwargs["log_dir"] = Path(os.environ["LOG_DIR"])
            kwargs.setdefault("enable_file", kwargs.get("log_dir") is not None)
            _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    with _global_lock:
        _global_logger = None
