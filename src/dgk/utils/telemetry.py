"""OpenTelemetry tracing helpers for dgk.

Every stage of a pipeline run opens a span through :func:`get_tracer`.
Without a configured SDK the OpenTelemetry API hands back no-op tracers, so
instrumentation costs nothing until :func:`configure_telemetry` is called.

Usage::

    from dgk.utils.telemetry import get_tracer

    _tracer = get_tracer(__name__)

    with _tracer.start_as_current_span("gate.run") as span:
        span.set_attribute(ATTR_GATE, "lint")

Real export needs the ``otel`` extra:
``pip install deploy-gatekeeper[otel]``.
"""

from __future__ import annotations

from typing import Any

from opentelemetry import trace

# ---------------------------------------------------------------------------
# Semantic attribute keys used throughout dgk instrumentation
# ---------------------------------------------------------------------------

ATTR_RUN_ID = "dgk.run.id"
ATTR_ENVIRONMENT = "dgk.environment"
ATTR_FINGERPRINT = "dgk.change.fingerprint"
ATTR_GATE = "dgk.gate.name"
ATTR_GATE_OUTCOME = "dgk.gate.outcome"
ATTR_GATE_COUNT = "dgk.gate.count"
ATTR_FINDING_COUNT = "dgk.finding.count"
ATTR_DECISION = "dgk.decision"
ATTR_BLOCKING_COUNT = "dgk.decision.blocking"
ATTR_THRESHOLD = "dgk.decision.threshold"
ATTR_LOCK_KEY = "dgk.lock.key"
ATTR_APPLY_STATUS = "dgk.apply.status"
ATTR_PIPELINE_STATE = "dgk.pipeline.state"

_INSTRUMENTATION_NAME = "dgk"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return a :class:`~opentelemetry.trace.Tracer` for *name*.

    If the OpenTelemetry SDK has not been configured the returned tracer
    is a no-op.
    """
    return trace.get_tracer(name or _INSTRUMENTATION_NAME)


def configure_telemetry(
    *,
    service_name: str = "dgk",
    export_to_console: bool = True,
    otlp_endpoint: str | None = None,
) -> None:
    """Configure OpenTelemetry tracing (requires ``deploy-gatekeeper[otel]``).

    Parameters
    ----------
    service_name:
        The ``service.name`` resource attribute.
    export_to_console:
        If ``True``, export spans as JSON to stdout.
    otlp_endpoint:
        If set, export spans via OTLP/gRPC to this endpoint.

    Raises
    ------
    ImportError
        If the ``opentelemetry-sdk`` package is not installed.
    """
    try:
        from opentelemetry.sdk.resources import Resource  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
        from opentelemetry.sdk.trace import TracerProvider  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
    except ImportError as exc:
        msg = (
            "opentelemetry-sdk is required for configure_telemetry(). "
            "Install it with: pip install deploy-gatekeeper[otel]"
        )
        raise ImportError(msg) from exc

    resource = Resource.create({"service.name": service_name})  # pyright: ignore[reportUnknownVariableType,reportUnknownMemberType]
    provider = TracerProvider(resource=resource)  # pyright: ignore[reportUnknownVariableType]

    if export_to_console:
        _add_console_exporter(provider, SimpleSpanProcessor)

    if otlp_endpoint:
        _add_otlp_exporter(provider, BatchSpanProcessor, otlp_endpoint)

    trace.set_tracer_provider(provider)  # pyright: ignore[reportUnknownArgumentType]


def _add_console_exporter(provider: Any, processor_cls: Any) -> None:
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter  # pyright: ignore[reportMissingImports,reportUnknownVariableType]

    provider.add_span_processor(processor_cls(ConsoleSpanExporter()))


def _add_otlp_exporter(provider: Any, processor_cls: Any, endpoint: str) -> None:
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
    except ImportError as exc:
        msg = (
            "opentelemetry-exporter-otlp is required for OTLP export. "
            "Install it with: pip install deploy-gatekeeper[otel]"
        )
        raise ImportError(msg) from exc

    provider.add_span_processor(processor_cls(OTLPSpanExporter(endpoint=endpoint)))
