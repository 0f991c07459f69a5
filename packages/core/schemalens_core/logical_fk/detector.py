"""Detection run orchestration and the staleness gate.

The detector is pure: it receives the column snapshot, procedure sources
and exclusion keys already loaded, and never touches the database.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Sequence
from datetime import UTC, datetime

from schemalens_core.logical_fk.config import DetectionConfig, get_detection_config
from schemalens_core.logical_fk.domain import (
    DetectionColumn,
    DetectionMetadata,
    DetectionResult,
    DetectionStatus,
    ProcedureSource,
    SpJoinResult,
)
from schemalens_core.logical_fk.index import SchemaIndex
from schemalens_core.logical_fk.join_extractor import extract_join_conditions
from schemalens_core.logical_fk.merger import merge_evidence
from schemalens_core.logical_fk.naming import detect_naming_candidates, resolve_ambiguity
from schemalens_core.logical_fk.sp_join import JoinExtractor, detect_sp_join_candidates
from schemalens_core.telemetry.spans import trace_detection_phase

logger = logging.getLogger(__name__)

# Bump whenever scoring or strategy behavior changes; stored per project.
DETECTION_ALGORITHM_VERSION = "2.1.0"

Checkpoint = Callable[[str], None]


def _noop_checkpoint(phase: str) -> None:
    return None


class LogicalFkDetector:
    """Runs both strategies, merges their evidence and scores the result."""

    def __init__(
        self,
        config: DetectionConfig | None = None,
        join_extractor: JoinExtractor = extract_join_conditions,
    ) -> None:
        self.config = config or get_detection_config()
        self.join_extractor = join_extractor

    def _run_sp_join(
        self,
        project_id: int,
        index: SchemaIndex,
        procedures: Sequence[ProcedureSource] | None,
    ) -> SpJoinResult:
        if procedures is None:
            return SpJoinResult(degraded=True)
        try:
            return detect_sp_join_candidates(index, procedures, self.join_extractor)
        except Exception as e:
            logger.warning(
                "SP join analysis failed for project %s, falling back to naming only: %s",
                project_id,
                e,
            )
            return SpJoinResult(degraded=True)

    def detect(
        self,
        project_id: int,
        columns: Sequence[DetectionColumn],
        procedures: Sequence[ProcedureSource] | None,
        excluded_keys: Collection[str],
        checkpoint: Checkpoint | None = None,
    ) -> DetectionResult:
        """Detect logical FK candidates for one project.

        Args:
            project_id: Project being analyzed (for logging and spans)
            columns: Column snapshot
            procedures: Procedure sources, or None when they could not be loaded
            excluded_keys: Canonical keys of relationships that already exist
            checkpoint: Called with the phase name after each phase; may raise
                to cancel the run

        Returns:
            DetectionResult with sorted candidates and degraded-mode flags
        """
        checkpoint = checkpoint or _noop_checkpoint
        index = SchemaIndex(columns)
        checkpoint("index")

        with trace_detection_phase("naming", project_id) as span:
            naming = detect_naming_candidates(index)
            span.set_attribute("detection.edges", len(naming.edges))
        checkpoint("naming")

        with trace_detection_phase("sp_join", project_id) as span:
            sp_join = self._run_sp_join(project_id, index, procedures)
            span.set_attribute("detection.edges", len(sp_join.evidence))
            span.set_attribute("detection.degraded", sp_join.degraded)
        checkpoint("sp_join")

        with trace_detection_phase("merge", project_id) as span:
            naming = resolve_ambiguity(naming, sp_join.evidence.keys())
            candidates, excluded = merge_evidence(naming, sp_join, excluded_keys, self.config)
            span.set_attribute("detection.candidates", len(candidates))

        logger.info(
            "Detected %d logical FK candidates for project %s "
            "(%d excluded, %d procedures analyzed, %d failed, degraded=%s)",
            len(candidates),
            project_id,
            excluded,
            sp_join.procedures_analyzed,
            len(sp_join.procedures_failed),
            sp_join.degraded,
        )
        return DetectionResult(
            project_id=project_id,
            candidates=candidates,
            ambiguity_groups=naming.ambiguity_groups,
            sp_analysis_degraded=sp_join.degraded,
            procedures_analyzed=sp_join.procedures_analyzed,
            procedures_failed=sp_join.procedures_failed,
            excluded_count=excluded,
        )


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def check_staleness(
    project_id: int,
    metadata: DetectionMetadata,
    current_version: str = DETECTION_ALGORITHM_VERSION,
) -> DetectionStatus:
    """Decide whether a project's stored detection results need a re-run."""
    last_run = _as_utc(metadata.last_detection_run_at)
    last_sync = _as_utc(metadata.last_sync_at)

    if last_run is None:
        is_stale, reason = True, "never_run"
    elif metadata.detection_algorithm_version != current_version:
        is_stale, reason = True, "algorithm_changed"
    elif last_sync is not None and last_sync > last_run:
        is_stale, reason = True, "schema_synced"
    else:
        is_stale, reason = False, "up_to_date"

    return DetectionStatus(
        project_id=project_id,
        is_stale=is_stale,
        reason=reason,
        current_version=current_version,
        detection_algorithm_version=metadata.detection_algorithm_version,
        last_detection_run_at=metadata.last_detection_run_at,
        last_sync_at=metadata.last_sync_at,
    )
