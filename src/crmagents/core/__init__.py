"""
Core services shared by agents: event bus and telemetry sinks.
"""

from .events import (
    ALERT_CREATED,
    EXECUTION_COMPLETED,
    EXECUTION_STARTED,
    BusEvent,
    EventBus,
    EventHandler,
)
from .telemetry import (
    ExecutionSpan,
    FinishedSpan,
    InMemoryTelemetrySink,
    Measurement,
    NullTelemetrySink,
    OpenTelemetrySink,
    TelemetrySink,
)

__all__ = [
    "ALERT_CREATED",
    "EXECUTION_COMPLETED",
    "EXECUTION_STARTED",
    "BusEvent",
    "EventBus",
    "EventHandler",
    "InMemoryTelemetrySink",
    "NullTelemetrySink",
    "OpenTelemetrySink",
    "TelemetrySink",
    "ExecutionSpan",
    "FinishedSpan",
    "Measurement",
]
