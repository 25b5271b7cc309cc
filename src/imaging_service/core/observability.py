"""Observability utilities for logging, metrics, and tracing."""

import logging
import threading
import time
import uuid
from collections import deque
from typing import Any, Deque, Dict, Optional, Callable
from dataclasses import dataclass, field
from functools import wraps
from enum import Enum

from .logging_config import get_logger


class LogLevel(Enum):
    """Log levels for structured logging."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class LogContext:
    """Context information for structured logging."""

    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    operation: str = ""
    component: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_operation(self, operation: str) -> "LogContext":
        """Create new context with operation set."""
        return LogContext(
            correlation_id=self.correlation_id,
            operation=operation,
            component=self.component,
            metadata=self.metadata.copy(),
        )

    def with_metadata(self, **kwargs) -> "LogContext":
        """Create new context with additional metadata."""
        new_metadata = self.metadata.copy()
        new_metadata.update(kwargs)
        return LogContext(
            correlation_id=self.correlation_id,
            operation=self.operation,
            component=self.component,
            metadata=new_metadata,
        )


class StructuredLogger:
    """Structured logger with context support, backed by the service logger."""

    def __init__(self, name: str, level: Optional[int] = None):
        self._logger = get_logger(name)
        if level is not None:
            self._logger.setLevel(level)

    def _log(
        self,
        level: LogLevel,
        message: str,
        context: Optional[LogContext] = None,
        **kwargs,
    ):
        """Internal logging method with context support."""
        if context:
            formatted_message = f"[{context.correlation_id}] {message}"
            if context.operation:
                formatted_message = f"[{context.operation}] {formatted_message}"
        else:
            formatted_message = message

        extra_fields = {**(context.metadata if context else {}), **kwargs}
        if extra_fields:
            metadata_str = ", ".join(f"{k}={v}" for k, v in extra_fields.items())
            formatted_message = f"{formatted_message} ({metadata_str})"

        getattr(self._logger, level.value.lower())(formatted_message)

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs):
        """Log debug message."""
        self._log(LogLevel.DEBUG, message, context, **kwargs)

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs):
        """Log info message."""
        self._log(LogLevel.INFO, message, context, **kwargs)

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs):
        """Log warning message."""
        self._log(LogLevel.WARNING, message, context, **kwargs)

    def error(self, message: str, context: Optional[LogContext] = None, **kwargs):
        """Log error message."""
        self._log(LogLevel.ERROR, message, context, **kwargs)


@dataclass
class PerformanceMetrics:
    """Performance metrics for operations."""

    operation: str
    start_time: float
    end_time: float
    success: bool
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        """Calculate operation duration in seconds."""
        return self.end_time - self.start_time

    @property
    def duration_ms(self) -> float:
        """Calculate operation duration in milliseconds."""
        return self.duration * 1000


class MetricsCollector:
    """Thread-safe collector keeping the most recent performance metrics."""

    def __init__(self, max_records: int = 10000):
        self._metrics: Deque[PerformanceMetrics] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def record_metric(self, metric: PerformanceMetrics):
        """Record a performance metric."""
        with self._lock:
            self._metrics.append(metric)

    def get_metrics(self, operation: Optional[str] = None) -> list[PerformanceMetrics]:
        """Get recorded metrics, optionally filtered by operation."""
        with self._lock:
            snapshot = list(self._metrics)
        if operation:
            return [m for m in snapshot if m.operation == operation]
        return snapshot

    def get_summary(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """Get summary statistics for metrics."""
        metrics = self.get_metrics(operation)

        if not metrics:
            return {}

        durations = [m.duration for m in metrics]
        successful = [m for m in metrics if m.success]

        return {
            "total_operations": len(metrics),
            "successful_operations": len(successful),
            "failed_operations": len(metrics) - len(successful),
            "success_rate": len(successful) / len(metrics),
            "avg_duration": sum(durations) / len(durations),
            "min_duration": min(durations),
            "max_duration": max(durations),
            "total_duration": sum(durations),
        }

    def operations(self) -> list[str]:
        """Distinct operation names seen so far."""
        return sorted({m.operation for m in self.get_metrics()})

    def clear_metrics(self):
        """Clear all recorded metrics."""
        with self._lock:
            self._metrics.clear()


class PipelineMetrics:
    """Counters and step timings for one service instance.

    Passed explicitly to the executor and service; there is no process-wide
    instance.
    """

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self.collector = collector or MetricsCollector()
        self.started_at = time.time()
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {
            "requests_total": 0,
            "errors_total": 0,
            "steps_applied": 0,
            "steps_failed": 0,
            "steps_ignored": 0,
            "cache_hits": 0,
            "cache_misses": 0,
        }

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def count(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def record_step(
        self,
        operation: str,
        start_time: float,
        end_time: float,
        success: bool,
        ignored: bool = False,
        error_message: Optional[str] = None,
    ) -> None:
        """Record the outcome and timing of one pipeline step."""
        if success:
            self.increment("steps_applied")
        else:
            self.increment("steps_failed")
            if ignored:
                self.increment("steps_ignored")
        self.collector.record_metric(
            PerformanceMetrics(
                operation=operation,
                start_time=start_time,
                end_time=end_time,
                success=success,
                error_message=error_message,
                metadata={"ignored": ignored},
            )
        )

    def snapshot(self) -> Dict[str, Any]:
        """Counters, uptime and per-operation summaries for the metrics endpoint."""
        with self._lock:
            counters = dict(self._counters)
        return {
            "uptime": time.time() - self.started_at,
            **counters,
            "operations": {
                name: self.collector.get_summary(name)
                for name in self.collector.operations()
            },
        }


def timed_operation(
    operation_name: str,
    logger: Optional[StructuredLogger] = None,
    metrics_collector: Optional[MetricsCollector] = None,
    context: Optional[LogContext] = None,
):
    """Decorator for timing and logging operations."""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            operation_context = (context or LogContext()).with_operation(operation_name)

            if logger:
                logger.debug(f"Starting {operation_name}", operation_context)

            success = False
            error_message = None

            try:
                result = func(*args, **kwargs)
                success = True
                return result
            except Exception as e:
                error_message = str(e)
                raise
            finally:
                end_time = time.time()

                if logger:
                    if success:
                        logger.debug(
                            f"Completed {operation_name}",
                            operation_context,
                            duration_ms=(end_time - start_time) * 1000,
                        )
                    else:
                        logger.error(
                            f"Failed {operation_name}: {error_message}",
                            operation_context,
                            duration_ms=(end_time - start_time) * 1000,
                        )

                if metrics_collector:
                    metrics_collector.record_metric(
                        PerformanceMetrics(
                            operation=operation_name,
                            start_time=start_time,
                            end_time=end_time,
                            success=success,
                            error_message=error_message,
                        )
                    )

        return wrapper

    return decorator


def create_logger(name: str, level: LogLevel = LogLevel.INFO) -> StructuredLogger:
    """Create a structured logger at the given level."""
    return StructuredLogger(name, getattr(logging, level.value))
