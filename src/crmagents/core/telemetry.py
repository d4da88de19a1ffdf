"""
Telemetry for agent runs: one span per execution plus counters and a
duration histogram.

`NullTelemetrySink` is the default. `InMemoryTelemetrySink` keeps everything
for assertions. `OpenTelemetrySink` forwards to OpenTelemetry when the `otel`
extra is installed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..llms.types import JSONValue

logger = logging.getLogger(__name__)

Attributes = dict[str, JSONValue]


@dataclass(frozen=True, slots=True)
class ExecutionSpan:
    """Handle for an open span; `native` holds the backend's own span, if any."""

    name: str
    started_at: float
    attributes: Attributes = field(default_factory=dict)
    native: Any = None


@dataclass(frozen=True, slots=True)
class FinishedSpan:
    name: str
    status: str
    error: str | None
    duration_ms: int
    attributes: Attributes


@dataclass(frozen=True, slots=True)
class Measurement:
    name: str
    value: float
    attributes: Attributes


class TelemetrySink(Protocol):
    def start_span(self, name: str, *, attributes: Attributes | None = None) -> ExecutionSpan | None: ...

    def end_span(
        self,
        span: ExecutionSpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: Attributes | None = None,
    ) -> None: ...

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None: ...

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None: ...


class NullTelemetrySink:
    """Discards everything."""

    def start_span(self, name, *, attributes=None):
        return None

    def end_span(self, span, *, status, error=None, attributes=None):
        return None

    def increment_counter(self, name, value=1, *, attributes=None):
        return None

    def record_histogram(self, name, value, *, attributes=None):
        return None


class InMemoryTelemetrySink:
    """Keeps finished spans and measurements in lists; meant for tests and debugging."""

    def __init__(self) -> None:
        self._spans: list[FinishedSpan] = []
        self._counters: list[Measurement] = []
        self._histograms: list[Measurement] = []

    def start_span(self, name: str, *, attributes: Attributes | None = None) -> ExecutionSpan:
        return ExecutionSpan(name=name, started_at=time.monotonic(), attributes=dict(attributes or {}))

    def end_span(
        self,
        span: ExecutionSpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: Attributes | None = None,
    ) -> None:
        if span is None:
            return
        self._spans.append(
            FinishedSpan(
                name=span.name,
                status=status,
                error=error,
                duration_ms=int((time.monotonic() - span.started_at) * 1000),
                attributes={**span.attributes, **(attributes or {})},
            )
        )

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None:
        self._counters.append(Measurement(name, int(value), dict(attributes or {})))

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None:
        self._histograms.append(Measurement(name, float(value), dict(attributes or {})))

    def spans(self) -> list[FinishedSpan]:
        return list(self._spans)

    def counters(self, name: str | None = None) -> list[Measurement]:
        return [m for m in self._counters if name is None or m.name == name]

    def histograms(self, name: str | None = None) -> list[Measurement]:
        return [m for m in self._histograms if name is None or m.name == name]


class OpenTelemetrySink:
    """
    Forwards spans and measurements to OpenTelemetry.

    Uses the global tracer and meter providers unless explicit ones are
    given. `opentelemetry` is imported on first use. Telemetry failures are
    logged at debug and never reach the agent run.
    """

    def __init__(
        self,
        *,
        instrumentation_name: str = "crmagents.agents",
        tracer_provider: Any = None,
        meter_provider: Any = None,
    ) -> None:
        self.instrumentation_name = instrumentation_name
        self._tracer_provider = tracer_provider
        self._meter_provider = meter_provider
        self._tracer: Any = None
        self._meter: Any = None
        self._instruments: dict[tuple[str, str], Any] = {}

    def _clients(self) -> tuple[Any, Any]:
        if self._tracer is None:
            try:
                from opentelemetry import metrics, trace
            except ImportError as e:
                raise RuntimeError(
                    "OpenTelemetrySink requires the 'otel' extra (opentelemetry-api, opentelemetry-sdk)"
                ) from e
            self._tracer = trace.get_tracer(self.instrumentation_name, tracer_provider=self._tracer_provider)
            self._meter = metrics.get_meter(self.instrumentation_name, meter_provider=self._meter_provider)
        return self._tracer, self._meter

    def _instrument(self, kind: str, name: str) -> Any:
        key = (kind, name)
        if key not in self._instruments:
            _, meter = self._clients()
            create = meter.create_counter if kind == "counter" else meter.create_histogram
            self._instruments[key] = create(name)
        return self._instruments[key]

    def start_span(self, name: str, *, attributes: Attributes | None = None) -> ExecutionSpan | None:
        try:
            tracer, _ = self._clients()
            native = tracer.start_span(name, attributes=otel_attributes(attributes))
        except Exception:
            logger.debug("Could not start span %s", name, exc_info=True)
            return None
        return ExecutionSpan(
            name=name, started_at=time.monotonic(), attributes=dict(attributes or {}), native=native
        )

    def end_span(
        self,
        span: ExecutionSpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: Attributes | None = None,
    ) -> None:
        if span is None or span.native is None:
            return
        try:
            from opentelemetry.trace import Status, StatusCode

            native = span.native
            native.set_attributes(otel_attributes({"outcome": status, **(attributes or {})}))
            if status == "ok":
                native.set_status(Status(StatusCode.OK))
            else:
                native.set_status(Status(StatusCode.ERROR, error or status))
            native.end()
        except Exception:
            logger.debug("Could not end span %s", span.name, exc_info=True)

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None:
        try:
            self._instrument("counter", name).add(int(value), attributes=otel_attributes(attributes))
        except Exception:
            logger.debug("Could not increment counter %s", name, exc_info=True)

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None:
        try:
            self._instrument("histogram", name).record(float(value), attributes=otel_attributes(attributes))
        except Exception:
            logger.debug("Could not record histogram %s", name, exc_info=True)


def otel_attributes(attributes: Attributes | None) -> dict[str, Any]:
    """OpenTelemetry takes scalars and homogeneous sequences only; None is dropped."""
    converted: dict[str, Any] = {}
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        if isinstance(value, (str, bool, int, float)):
            converted[key] = value
        elif isinstance(value, list) and all(isinstance(item, str) for item in value):
            converted[key] = tuple(value)
        else:
            converted[key] = str(value)
    return converted
