from __future__ import annotations

import functools
import json
import logging
import os
import sys
import time
from collections import defaultdict
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

LOGGER_NAME = "autopromote"

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

F = TypeVar("F", bound=Callable[..., Any])


class JsonFormatter(logging.Formatter):
    promoted_keys = ("request_id", "content_id", "schedule_id", "test_id", "user_id")

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        event = extra.pop("event", None)
        if event:
            payload["event"] = event
        for key in self.promoted_keys:
            if key in extra:
                payload[key] = extra.pop(key)
        context = trace.get_current_span().get_span_context()
        if context.is_valid:
            payload["trace_id"] = format(context.trace_id, "032x")
            payload["span_id"] = format(context.span_id, "016x")
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str | None = None) -> None:
    log_level = level or os.getenv("LOG_LEVEL", "INFO")
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return
    logger.setLevel(log_level)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False


def configure_tracing(app: Any = None) -> None:
    service_name = os.getenv("OTEL_SERVICE_NAME", LOGGER_NAME)
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        exporter = OTLPSpanExporter(endpoint=endpoint)
    else:
        exporter = ConsoleSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    if app is not None:
        FastAPIInstrumentor.instrument_app(app)


def get_logger(component: str | None = None) -> logging.Logger:
    if component:
        return logging.getLogger(f"{LOGGER_NAME}.{component}")
    return logging.getLogger(LOGGER_NAME)


def traced(span_name: str) -> Callable[[F], F]:
    """Runs the wrapped call inside a span and records its duration."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = trace.get_tracer(LOGGER_NAME)
            started = time.perf_counter()
            with tracer.start_as_current_span(span_name):
                try:
                    return func(*args, **kwargs)
                finally:
                    observe_metric(
                        "operation_duration_ms",
                        (time.perf_counter() - started) * 1000,
                        tags={"operation": span_name},
                    )

        return wrapper  # type: ignore[return-value]

    return decorator


MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[MetricKey, float] = defaultdict(float)
        self._gauges: dict[MetricKey, float] = {}
        self._summaries: dict[MetricKey, dict[str, float]] = {}

    def increment(self, name: str, value: float = 1.0, tags: Optional[dict[str, str]] = None) -> None:
        key = self._build_key(name, tags)
        with self._lock:
            self._counters[key] += value

    def set_gauge(self, name: str, value: float, tags: Optional[dict[str, str]] = None) -> None:
        key = self._build_key(name, tags)
        with self._lock:
            self._gauges[key] = value

    def observe(self, name: str, value: float, tags: Optional[dict[str, str]] = None) -> None:
        key = self._build_key(name, tags)
        with self._lock:
            summary = self._summaries.setdefault(
                key, {"count": 0.0, "sum": 0.0, "max": value}
            )
            summary["count"] += 1
            summary["sum"] += value
            summary["max"] = max(summary["max"], value)

    def snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            counters = list(self._counters.items())
            gauges = list(self._gauges.items())
            summaries = [(key, dict(value)) for key, value in self._summaries.items()]
        now = datetime.utcnow().isoformat() + "Z"
        samples: list[dict[str, Any]] = []
        for metric_type, items in (("counter", counters), ("gauge", gauges)):
            for (name, tags), value in items:
                samples.append(
                    {
                        "name": name,
                        "metric_type": metric_type,
                        "value": value,
                        "tags": dict(tags),
                        "timestamp": now,
                    }
                )
        for (name, tags), summary in summaries:
            samples.append(
                {
                    "name": name,
                    "metric_type": "summary",
                    "value": summary["sum"] / summary["count"],
                    "count": int(summary["count"]),
                    "max": summary["max"],
                    "tags": dict(tags),
                    "timestamp": now,
                }
            )
        return samples

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._summaries.clear()

    @staticmethod
    def _build_key(name: str, tags: Optional[dict[str, str]]) -> MetricKey:
        if not tags:
            return (name, tuple())
        return (name, tuple(sorted(tags.items())))


_METRICS = MetricsRegistry()


def increment_metric(name: str, value: float = 1.0, tags: Optional[dict[str, str]] = None) -> None:
    _METRICS.increment(name, value=value, tags=tags)


def set_metric_gauge(name: str, value: float, tags: Optional[dict[str, str]] = None) -> None:
    _METRICS.set_gauge(name, value=value, tags=tags)


def observe_metric(name: str, value: float, tags: Optional[dict[str, str]] = None) -> None:
    _METRICS.observe(name, value=value, tags=tags)


def get_metrics_snapshot() -> list[dict[str, Any]]:
    return _METRICS.snapshot()


def reset_metrics() -> None:
    _METRICS.reset()


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    extra = {"event": event, **fields}
    logger.log(level, event, extra=extra)
