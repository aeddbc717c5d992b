#!/usr/bin/env python3
"""
Telemetry setup using OpenTelemetry.

Configures tracing for aiohttp client requests, sqlite3 calls and the
ingestion spans declared with @trace_span. Spans are exported to Azure
Monitor when a connection string is configured and the exporter package is
installed; otherwise they stay in-process.

Environment variables:
  - APPLICATIONINSIGHTS_CONNECTION_STRING or AZURE_MONITOR_CONNECTION_STRING
  - OTEL_SERVICE_NAME (default: feed-ingest)
  - OTEL_ENVIRONMENT (maps to deployment.environment)
  - DISABLE_TELEMETRY=true to fully disable

Initialization is idempotent.
"""

from __future__ import annotations

import os
import functools
import atexit
import logging
import threading
from typing import Callable, Optional
import inspect

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlite3 import SQLite3Instrumentor

try:
    # Optional extra: only needed when exporting to Application Insights
    from azure.monitor.opentelemetry.exporter import AzureMonitorTraceExporter  # type: ignore
    _AZURE_AVAILABLE = True
except ImportError:
    AzureMonitorTraceExporter = None  # type: ignore
    _AZURE_AVAILABLE = False

_init_lock = threading.Lock()
_initialized = False
_provider: Optional[TracerProvider] = None

_logger = logging.getLogger(__name__)


def telemetry_disabled() -> bool:
    return os.environ.get("DISABLE_TELEMETRY", "false").lower() == "true"


def init_telemetry(service_name: Optional[str] = None) -> None:
    """Initialize OpenTelemetry tracing and library instrumentation.

    Safe to call multiple times. No-op when DISABLE_TELEMETRY=true.
    """
    global _initialized, _provider
    if telemetry_disabled() or _initialized:
        return
    with _init_lock:
        if _initialized:
            return

        svc = service_name or os.environ.get("OTEL_SERVICE_NAME", "feed-ingest")
        env = os.environ.get("OTEL_ENVIRONMENT")
        attrs = {"service.name": svc}
        if env:
            attrs["deployment.environment"] = env

        existing = trace.get_tracer_provider()
        if isinstance(existing, TracerProvider):
            provider = existing
        else:
            provider = TracerProvider(resource=Resource.create(attrs))

        conn = os.environ.get("APPLICATIONINSIGHTS_CONNECTION_STRING") or os.environ.get(
            "AZURE_MONITOR_CONNECTION_STRING"
        )
        if conn and _AZURE_AVAILABLE:
            try:
                exporter = AzureMonitorTraceExporter.from_connection_string(conn)  # type: ignore
                provider.add_span_processor(BatchSpanProcessor(exporter))
                _logger.info("Telemetry initialized with Azure Monitor exporter (service=%s)", svc)
            except ValueError as e:
                _logger.warning("Telemetry: invalid Azure Monitor connection string, spans will not be exported: %s", e)
        elif conn:
            _logger.warning(
                "Telemetry: connection string set but 'azure-monitor-opentelemetry-exporter' is not installed"
            )
        else:
            _logger.debug("Telemetry initialized without exporter (service=%s)", svc)

        if not isinstance(existing, TracerProvider):
            trace.set_tracer_provider(provider)
        _provider = provider

        AioHttpClientInstrumentor().instrument()
        # Injects otelTraceID / otelSpanID into log records without touching the format
        LoggingInstrumentor().instrument(set_logging_format=False)
        SQLite3Instrumentor().instrument()

        _initialized = True
        atexit.register(shutdown_telemetry)


def shutdown_telemetry() -> None:
    """Flush pending spans; registered with atexit for short-lived runs."""
    if _provider is not None:
        _provider.shutdown()


def get_tracer(name: str = "feed-ingest"):
    """Get the OpenTelemetry tracer for a named subsystem."""
    return trace.get_tracer(name)


def trace_span(
    span_name: str,
    *,
    tracer_name: str,
    static_attrs: dict | None = None,
    attr_from_args: Optional[Callable[..., dict]] = None,
):
    """Decorator to wrap a coroutine function in an OpenTelemetry span.

    Args:
        span_name: Name of the span
        tracer_name: Tracer (subsystem) the span belongs to
        static_attrs: Dict of attributes to set on the span
        attr_from_args: Callable taking the wrapped call's arguments and
                        returning a dict of attributes to set on the span

    Exceptions are recorded on the span and re-raised unchanged.
    """

    def _decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"trace_span only wraps coroutine functions, got {func.__qualname__}")
        tracer = get_tracer(tracer_name)

        @functools.wraps(func)
        async def _wrapper(*args, **kwargs):
            with tracer.start_as_current_span(span_name) as span:
                for k, v in (static_attrs or {}).items():
                    span.set_attribute(k, v)
                if attr_from_args is not None:
                    try:
                        dynamic = attr_from_args(*args, **kwargs) or {}
                    except (TypeError, ValueError, AttributeError):
                        # A mismatched lambda must never break the call itself
                        dynamic = {}
                    for k, v in dynamic.items():
                        span.set_attribute(k, v)
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR))
                    raise

        return _wrapper

    return _decorator
