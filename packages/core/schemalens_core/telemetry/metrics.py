"""Detection metrics recorded through the OpenTelemetry meter."""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Any

from schemalens_core.telemetry.setup import get_meter

if TYPE_CHECKING:
    from opentelemetry.metrics import Counter


@lru_cache(maxsize=1)
def _instruments() -> tuple[Counter, Counter, Counter]:
    meter = get_meter("schemalens.detection")
    return (
        meter.create_counter(
            "schemalens.detection.runs",
            unit="1",
            description="Persisting detection runs by outcome",
        ),
        meter.create_counter(
            "schemalens.detection.candidates",
            unit="1",
            description="Candidates produced by persisting detection runs",
        ),
        meter.create_counter(
            "schemalens.detection.procedures_failed",
            unit="1",
            description="Stored procedures whose source could not be analyzed",
        ),
    )


def record_detection_run(
    project_id: int,
    outcome: str,
    candidates: int = 0,
    procedures_failed: int = 0,
    sp_analysis_degraded: bool = False,
) -> None:
    """Count one detection run.

    Args:
        project_id: Project the run belongs to
        outcome: "persisted" or "skipped"
        candidates: Number of candidates the run produced
        procedures_failed: Number of procedures isolated as unparseable
        sp_analysis_degraded: Whether the SP-join phase was degraded
    """
    runs, candidate_counter, failed_counter = _instruments()
    attributes: dict[str, Any] = {
        "detection.project_id": project_id,
        "detection.outcome": outcome,
        "detection.sp_degraded": sp_analysis_degraded,
    }
    runs.add(1, attributes)
    if candidates:
        candidate_counter.add(candidates, attributes)
    if procedures_failed:
        failed_counter.add(procedures_failed, attributes)
