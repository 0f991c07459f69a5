"""OpenTelemetry initialization and span helpers.

Telemetry is disabled by default. With OTEL_ENABLED=false no SDK component
is imported and spans come from the API's no-op tracer.

Usage:
    from schemalens_core.telemetry import init_telemetry, shutdown_telemetry

    telemetry_enabled = init_telemetry(service_suffix="-api")
    ...
    await shutdown_telemetry()
"""

from schemalens_core.telemetry.metrics import record_detection_run
from schemalens_core.telemetry.setup import (
    get_meter,
    get_tracer,
    init_telemetry,
    shutdown_telemetry,
)
from schemalens_core.telemetry.spans import (
    trace_db_operation,
    trace_detection_phase,
)

__all__ = [
    "init_telemetry",
    "shutdown_telemetry",
    "get_tracer",
    "get_meter",
    "record_detection_run",
    "trace_db_operation",
    "trace_detection_phase",
]
