"""
Wide Events (Canonical Log Lines) - Structured Logging Utility

- Emit ONE comprehensive JSON event per run/operation
- Include high-cardinality data (vehicle ids, reminder ids, run ids)
- Capture full context: business metrics, errors, latencies
- Use tail sampling: keep all errors/slow operations, sample fast successes

Instead of logging what your code is doing, log what happened to this run.
"""

import random
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

# Configure structlog for JSON output
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Business metrics that always force emission when non-zero
CRITICAL_METRICS = (
    "notifications_sent",
    "subscriptions_pruned",
    "vehicles_failed",
)


class WideEvent:
    """
    Accumulates context throughout an operation, then emits one comprehensive log event.

    Usage:
        event = WideEvent("reminder_run")
        event.add_context(trigger="cron")
        event.add_business_metric("notifications_sent", 3)

        with event.timer("dispatch"):
            dispatcher.send(...)

        event.emit()
    """

    def __init__(self, operation: str, request_id: Optional[str] = None, trace_id: Optional[str] = None):
        """
        Initialize a wide event for a specific operation.

        Args:
            operation: Name of the operation (e.g., "reminder_run")
            request_id: Unique ID for this operation (auto-generated if not provided)
            trace_id: ID that connects related operations (e.g., the run id for every dispatch)
        """
        self.operation = operation
        self.context: Dict[str, Any] = {
            "operation": operation,
            "timestamp": datetime.utcnow().isoformat(),
            "start_time": time.time(),
            "request_id": request_id or str(uuid.uuid4()),
        }

        if trace_id:
            self.context["trace_id"] = trace_id

        self.logger = structlog.get_logger()

    def add_context(self, **kwargs) -> "WideEvent":
        """Add high-cardinality context fields (vehicle_id, reminder_id, etc.)."""
        self.context.update(kwargs)
        return self

    def add_business_metric(self, key: str, value: Any) -> "WideEvent":
        """Add business metrics (reminders evaluated, notifications sent, etc.)."""
        self.context.setdefault("business_metrics", {})[key] = value
        return self

    def add_technical_metric(self, key: str, value: Any) -> "WideEvent":
        """Add technical metrics (cache hits, worker count, etc.)."""
        self.context.setdefault("technical_metrics", {})[key] = value
        return self

    def add_error(self, error: Any, **kwargs) -> "WideEvent":
        """Add error details to the event. Accepts exceptions or StructuredError."""
        if hasattr(error, "to_dict"):
            self.context["error"] = dict(error.to_dict(), details=kwargs)
        else:
            self.context["error"] = {
                "type": type(error).__name__,
                "message": str(error),
                "details": kwargs,
            }
        self.context["success"] = False
        return self

    def mark_success(self) -> "WideEvent":
        """Mark the operation as successful."""
        self.context["success"] = True
        return self

    def mark_failure(self, reason: str) -> "WideEvent":
        """Mark the operation as failed."""
        self.context["success"] = False
        self.context["failure_reason"] = reason
        return self

    @contextmanager
    def timer(self, operation_name: str):
        """
        Context manager to time a specific step within the operation.

        Outputs: {"performance_breakdown": {"dispatch_ms": 45.2}}
        """
        start = time.time()
        try:
            yield
        finally:
            duration_ms = (time.time() - start) * 1000
            self.context.setdefault("performance_breakdown", {})[f"{operation_name}_ms"] = round(duration_ms, 2)

    def set_duration(self) -> "WideEvent":
        """Calculate and set the duration of the operation."""
        if "start_time" in self.context:
            duration_ms = (time.time() - self.context["start_time"]) * 1000
            self.context["duration_ms"] = round(duration_ms, 2)
            del self.context["start_time"]
        return self

    def should_emit(self, sample_rate: float = 0.05, slow_threshold_ms: float = 1000) -> bool:
        """
        Tail sampling:
        - Always emit errors
        - Always emit slow operations (>slow_threshold_ms)
        - Always emit runs that notified, pruned or failed something
        - Sample the rest at sample_rate (default 5%)
        """
        if not self.context.get("success", True):
            return True

        if self.context.get("duration_ms", 0) > slow_threshold_ms:
            return True

        business_metrics = self.context.get("business_metrics", {})
        if any(business_metrics.get(metric) for metric in CRITICAL_METRICS):
            return True

        return random.random() < sample_rate

    def emit(self, level: str = "info", force: bool = False) -> None:
        """
        Emit the wide event as a single comprehensive log line.

        Args:
            level: Log level (info, warning, error)
            force: Force emission even if sampling says no
        """
        self.set_duration()

        if not force and not self.should_emit():
            return

        log_method = getattr(self.logger, level, self.logger.info)
        log_method(f"{self.operation}_complete", **self.context)


@contextmanager
def track_operation(operation: str, **initial_context):
    """
    Context manager for tracking an operation with a wide event.

    Usage:
        with track_operation("reminder_run", trigger="cron") as event:
            event.add_business_metric("notifications_sent", 2)
            # Event emits automatically on exit
    """
    event = WideEvent(operation)
    event.add_context(**initial_context)

    try:
        yield event
        event.mark_success()
    except Exception as e:
        event.add_error(e)
        event.mark_failure(str(e))
        raise
    finally:
        event.emit(level="error" if not event.context.get("success", True) else "info", force=True)
