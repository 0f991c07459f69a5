"""Span helpers for metadata-store access and detection phases."""

from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator


@asynccontextmanager
async def trace_db_operation(
    operation: str,
    table: str | None = None,
) -> AsyncIterator[trace.Span]:
    """Context manager for tracing database operations.

    Usage:
        async with trace_db_operation("SELECT", "db_columns") as span:
            result = await session.execute(query)
            span.set_attribute("db.rows_returned", len(rows))

    Args:
        operation: The database operation (e.g., "SELECT", "UPSERT")
        table: The table name (optional)

    Yields:
        The active span for adding additional attributes
    """
    tracer = trace.get_tracer(__name__)
    attrs: dict[str, Any] = {"db.operation": operation}
    if table:
        attrs["db.sql.table"] = table

    with tracer.start_as_current_span(
        f"db.{operation.lower()}",
        attributes=attrs,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


@contextmanager
def trace_detection_phase(
    phase: str,
    project_id: int | None = None,
) -> Iterator[trace.Span]:
    """Span around one synchronous detection phase (naming, sp_join, merge)."""
    tracer = trace.get_tracer(__name__)
    attrs: dict[str, Any] = {"detection.phase": phase}
    if project_id is not None:
        attrs["detection.project_id"] = project_id

    with tracer.start_as_current_span(f"logical_fk.{phase}", attributes=attrs) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
