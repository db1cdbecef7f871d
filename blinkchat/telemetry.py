"""
Telemetry Module
================
Configures OpenTelemetry tracing via the Agent Framework's built-in provider,
and exposes helpers for chat-exchange spans and metrics.

Every helper degrades to a no-op when ``setup_telemetry`` has not run, so the
engine can be exercised in tests without an exporter.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Generator

from opentelemetry import metrics, trace

logger = logging.getLogger(__name__)

# Module-level tracer and meter (initialized after setup)
_tracer: trace.Tracer | None = None
_meter: metrics.Meter | None = None

# Custom metrics
_exchange_duration: metrics.Histogram | None = None
_agent_duration: metrics.Histogram | None = None
_exchange_outcomes: metrics.Counter | None = None
_title_summaries: metrics.Counter | None = None


def setup_telemetry(service_name: str = "blinkchat") -> None:
    """Initialize OpenTelemetry using Agent Framework's built-in configuration.

    This configures:
    - Traces exported to OTLP endpoint (reads OTEL_EXPORTER_OTLP_ENDPOINT env var)
    - Custom business metrics (exchange duration/outcomes, agent duration,
      title summaries)

    Args:
        service_name: The service name to use for telemetry spans.
    """
    global _tracer, _meter, _exchange_duration, _agent_duration
    global _exchange_outcomes, _title_summaries

    try:
        from agent_framework.observability import configure_otel_providers

        configure_otel_providers(enable_sensitive_data=False)
        logger.info("OpenTelemetry configured via Agent Framework")
    except Exception as e:
        logger.warning("Failed to configure Agent Framework OTel providers: %s", e)
        logger.info("Telemetry will be limited to custom spans only")

    _tracer = trace.get_tracer(service_name, "1.0.0")
    _meter = metrics.get_meter(service_name, "1.0.0")

    _exchange_duration = _meter.create_histogram(
        name="exchange.duration",
        description="Time from optimistic display to commit or rollback, in seconds",
        unit="s",
    )
    _agent_duration = _meter.create_histogram(
        name="agent.duration",
        description="Individual model call time in seconds",
        unit="s",
    )
    _exchange_outcomes = _meter.create_counter(
        name="exchange.outcomes",
        description="Chat exchanges by final outcome",
        unit="1",
    )
    _title_summaries = _meter.create_counter(
        name="title.summaries",
        description="Conversation title summarization attempts",
        unit="1",
    )


def get_tracer() -> trace.Tracer:
    """Get the configured tracer, or a no-op tracer if not initialized."""
    return _tracer or trace.get_tracer("blinkchat-fallback")


@contextmanager
def trace_exchange(conversation_id: str | None, ephemeral: bool) -> Generator[trace.Span, None, None]:
    """Context manager that creates a span for one send/commit exchange.

    Args:
        conversation_id: Bound conversation, or None for an ephemeral session.
        ephemeral: Whether the exchange started in an ephemeral session.

    Yields:
        The active span for additional attribute setting.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        "exchange",
        attributes={
            "conversation.id": conversation_id or "",
            "conversation.ephemeral": ephemeral,
        },
    ) as span:
        start = time.perf_counter()
        try:
            yield span
        finally:
            duration = time.perf_counter() - start
            span.set_attribute("exchange.duration_s", round(duration, 3))
            if _exchange_duration:
                _exchange_duration.record(duration, {"conversation.ephemeral": ephemeral})


@contextmanager
def trace_agent(agent_name: str, **attributes: Any) -> Generator[trace.Span, None, None]:
    """Context manager that creates a span for an individual agent invocation.

    Args:
        agent_name: Name of the agent being invoked.
        **attributes: Additional span attributes.

    Yields:
        The active span.
    """
    attrs: dict[str, Any] = {"agent.name": agent_name, **attributes}
    succeeded = False
    with get_tracer().start_as_current_span(f"agent.{agent_name}", attributes=attrs) as span:
        started = time.perf_counter()
        try:
            yield span
            succeeded = True
        finally:
            elapsed = time.perf_counter() - started
            span.set_attribute("agent.succeeded", succeeded)
            if _agent_duration:
                _agent_duration.record(
                    elapsed, {"agent.name": agent_name, "agent.succeeded": succeeded}
                )


def record_exchange_outcome(outcome: str) -> None:
    """Record how an exchange ended.

    Args:
        outcome: One of "committed", "completion_failed",
            "persistence_failed" or "abandoned".
    """
    if _exchange_outcomes:
        _exchange_outcomes.add(1, {"exchange.outcome": outcome})


def record_title_summary(success: bool) -> None:
    """Record a title summarization attempt."""
    if _title_summaries:
        _title_summaries.add(1, {"summary.success": success})


def shutdown_telemetry() -> None:
    """Flush and shut down the SDK providers, if an SDK is installed."""
    for provider in (trace.get_tracer_provider(), metrics.get_meter_provider()):
        shutdown = getattr(provider, "shutdown", None)
        if callable(shutdown):
            try:
                shutdown()
            except Exception as e:
                logger.warning("Telemetry shutdown failed: %s", e)
