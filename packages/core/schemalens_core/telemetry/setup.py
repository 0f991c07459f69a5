"""OpenTelemetry setup with conditional initialization.

All SDK imports are lazy so a disabled deployment never loads them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from opentelemetry.metrics import Meter
    from opentelemetry.trace import Tracer

_tracer: Tracer | None = None
_meter: Meter | None = None
_initialized = False

logger = logging.getLogger(__name__)


def init_telemetry(
    service_suffix: str = "",
    extra_resource_attributes: dict[str, str] | None = None,
) -> bool:
    """Initialize OpenTelemetry if enabled.

    Safe to call more than once; later calls return the first outcome.

    Args:
        service_suffix: Appended to the configured service name ("-api", "-worker")
        extra_resource_attributes: Additional resource attributes

    Returns:
        True if telemetry is active, False if disabled
    """
    global _tracer, _meter, _initialized

    if _initialized:
        return True

    from schemalens_core.settings import get_settings

    settings = get_settings()

    if not settings.otel_enabled:
        logger.debug("OpenTelemetry disabled (OTEL_ENABLED=false)")
        return False

    from opentelemetry import metrics, trace
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
        OTLPMetricExporter,
    )
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import (
        ALWAYS_OFF,
        ALWAYS_ON,
        ParentBasedTraceIdRatio,
        TraceIdRatioBased,
    )

    service_name = settings.otel_service_name + service_suffix

    resource_attrs: dict[str, str] = {
        SERVICE_NAME: service_name,
        SERVICE_VERSION: "0.1.0",
        "deployment.environment": "development" if settings.debug else "production",
    }
    if extra_resource_attributes:
        resource_attrs.update(extra_resource_attributes)
    resource = Resource.create(resource_attrs)

    sampler_map = {
        "always_on": ALWAYS_ON,
        "always_off": ALWAYS_OFF,
        "traceidratio": TraceIdRatioBased(settings.otel_traces_sampler_arg),
        "parentbased_traceidratio": ParentBasedTraceIdRatio(settings.otel_traces_sampler_arg),
    }
    sampler = sampler_map.get(settings.otel_traces_sampler, ALWAYS_ON)

    tracer_provider = TracerProvider(resource=resource, sampler=sampler)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint))
    )
    trace.set_tracer_provider(tracer_provider)
    _tracer = trace.get_tracer(__name__)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=settings.otel_exporter_otlp_endpoint),
        export_interval_millis=60000,
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[metric_reader]))
    _meter = metrics.get_meter(__name__)

    _initialized = True
    logger.info(
        "OpenTelemetry initialized: service=%s, endpoint=%s",
        service_name,
        settings.otel_exporter_otlp_endpoint,
    )
    return True


async def shutdown_telemetry() -> None:
    """Flush and stop exporters. No-op when telemetry never started."""
    global _initialized

    if not _initialized:
        return

    from opentelemetry import metrics, trace

    tracer_provider = trace.get_tracer_provider()
    if hasattr(tracer_provider, "shutdown"):
        tracer_provider.shutdown()

    meter_provider = metrics.get_meter_provider()
    if hasattr(meter_provider, "shutdown"):
        meter_provider.shutdown()

    _initialized = False
    logger.info("OpenTelemetry shutdown complete")


def get_tracer(name: str = __name__) -> Tracer:
    """Return the configured tracer, or a no-op tracer when disabled."""
    from opentelemetry import trace

    if _tracer is not None:
        return _tracer
    return trace.get_tracer(name)


def get_meter(name: str = __name__) -> Meter:
    """Return the configured meter, or a no-op meter when disabled."""
    from opentelemetry import metrics

    if _meter is not None:
        return _meter
    return metrics.get_meter(name)
