"""Logical FK service: detection runs, persistence and the review workflow."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from schemalens_core.dependencies import DependencyGraphWriter
from schemalens_core.logical_fk.config import DetectionConfig
from schemalens_core.logical_fk.detector import (
    DETECTION_ALGORITHM_VERSION,
    Checkpoint,
    LogicalFkDetector,
    check_staleness,
)
from schemalens_core.logical_fk.domain import (
    DetectionResult,
    DetectionRunSummary,
    DetectionStatus,
    LogicalFkCandidate,
    LogicalFkView,
    PhysicalFkView,
    ProcedureSource,
)
from schemalens_core.logical_fk.exceptions import (
    DetectionCancelledError,
    LogicalFkConflictError,
    LogicalFkNotFoundError,
    LogicalFkValidationError,
    ProjectNotFoundError,
)
from schemalens_core.logical_fk.join_extractor import extract_join_conditions
from schemalens_core.logical_fk.repository import LogicalFkRepository
from schemalens_core.logical_fk.sp_join import JoinExtractor
from schemalens_core.models import DiscoveryMethod, LogicalForeignKey, LogicalFkStatus
from schemalens_core.telemetry.metrics import record_detection_run

logger = logging.getLogger(__name__)

MANUAL_CONFIDENCE = Decimal("1.00")


def _checkpoint_for(project_id: int, cancel_event: asyncio.Event | None) -> Checkpoint:
    def checkpoint(phase: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise DetectionCancelledError(project_id, phase)

    return checkpoint


class LogicalFkService:
    """Entry point for everything the API and worker do with logical FKs.

    The service works inside the caller's session and never commits; the
    session context manager commits or rolls back.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: DetectionConfig | None = None,
        join_extractor: JoinExtractor = extract_join_conditions,
        dependency_writer: DependencyGraphWriter | None = None,
        algorithm_version: str = DETECTION_ALGORITHM_VERSION,
    ) -> None:
        self.session = session
        self.repository = LogicalFkRepository(session)
        self.detector = LogicalFkDetector(config, join_extractor)
        self.dependency_writer = dependency_writer or DependencyGraphWriter(session)
        self.algorithm_version = algorithm_version

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def _load_procedures(self, project_id: int) -> list[ProcedureSource] | None:
        try:
            return await self.repository.get_procedures_for_detection(project_id)
        except Exception as e:
            logger.warning(
                "Could not load stored procedures for project %s, SP join analysis skipped: %s",
                project_id,
                e,
            )
            return None

    async def _run_detection(
        self,
        project_id: int,
        excluded_keys: set[str],
        cancel_event: asyncio.Event | None,
    ) -> DetectionResult:
        checkpoint = _checkpoint_for(project_id, cancel_event)
        columns = await self.repository.get_columns_for_detection(project_id)
        checkpoint("load")
        procedures = await self._load_procedures(project_id)
        return self.detector.detect(project_id, columns, procedures, excluded_keys, checkpoint)

    async def detect_candidates(
        self, project_id: int, cancel_event: asyncio.Event | None = None
    ) -> DetectionResult:
        """Preview detection without persisting.

        Edges that already exist as a physical FK or as a logical FK of any
        status are left out.
        """
        excluded = await self.repository.get_physical_fk_keys(project_id)
        excluded |= await self.repository.get_logical_fk_keys(project_id)
        return await self._run_detection(project_id, excluded, cancel_event)

    async def detect_and_persist_candidates(
        self, project_id: int, cancel_event: asyncio.Event | None = None
    ) -> DetectionRunSummary:
        """Run detection, upsert SUGGESTED rows and stamp detection metadata.

        Only physical FKs and CONFIRMED logical FKs are excluded, so existing
        SUGGESTED rows get refreshed and REJECTED rows can be re-surfaced.
        Returns a skipped summary when another run holds the project lock.
        """
        project = await self.repository.lock_project_for_detection(project_id)
        if project is None:
            if not await self.repository.project_exists(project_id):
                raise ProjectNotFoundError(project_id)
            logger.warning("Detection already running for project %s, skipping", project_id)
            record_detection_run(project_id, "skipped")
            return DetectionRunSummary(project_id=project_id, skipped=True)

        excluded = await self.repository.get_physical_fk_keys(project_id)
        excluded |= await self.repository.get_logical_fk_keys(
            project_id, statuses=[LogicalFkStatus.CONFIRMED]
        )
        result = await self._run_detection(project_id, excluded, cancel_event)
        _checkpoint_for(project_id, cancel_event)("detect")

        counts = await self.repository.bulk_upsert_suggested(project_id, result.candidates)
        await self.repository.update_detection_metadata(project_id, self.algorithm_version)

        logger.info(
            "Persisted detection for project %s: %d inserted, %d re-surfaced, %d refreshed",
            project_id,
            counts.inserted,
            counts.resurfaced,
            counts.refreshed,
        )
        record_detection_run(
            project_id,
            "persisted",
            candidates=len(result.candidates),
            procedures_failed=len(result.procedures_failed),
            sp_analysis_degraded=result.sp_analysis_degraded,
        )
        return DetectionRunSummary(
            project_id=project_id,
            candidate_count=len(result.candidates),
            inserted=counts.inserted,
            resurfaced=counts.resurfaced,
            refreshed=counts.refreshed,
            sp_analysis_degraded=result.sp_analysis_degraded,
        )

    async def get_detection_status(self, project_id: int) -> DetectionStatus:
        metadata = await self.repository.get_detection_metadata(project_id)
        if metadata is None:
            raise ProjectNotFoundError(project_id)
        return check_staleness(project_id, metadata, self.algorithm_version)

    async def get_persisted_candidates(self, project_id: int) -> list[LogicalFkCandidate]:
        return await self.repository.get_persisted_suggested_candidates(project_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_logical_fks(
        self, project_id: int, status: str | None = None
    ) -> list[LogicalFkView]:
        status_filter = None
        if status:
            try:
                status_filter = LogicalFkStatus(status.upper())
            except ValueError as e:
                raise LogicalFkValidationError(f"Unknown status filter: {status}") from e
        return await self.repository.list_by_project(project_id, status_filter)

    async def list_for_table(self, project_id: int, table_id: int) -> list[LogicalFkView]:
        return await self.repository.list_by_table(project_id, table_id)

    async def list_physical_fks_for_table(
        self, project_id: int, table_id: int
    ) -> list[PhysicalFkView]:
        return await self.repository.get_physical_fks_by_table(project_id, table_id)

    async def get_logical_fk(self, project_id: int, logical_fk_id: int) -> LogicalFkView:
        view = await self.repository.get_by_id(project_id, logical_fk_id)
        if view is None:
            raise LogicalFkNotFoundError(project_id, logical_fk_id)
        return view

    # ------------------------------------------------------------------
    # Review workflow
    # ------------------------------------------------------------------

    async def _feed_dependency_graph(
        self, project_id: int, source_table_id: int, target_table_id: int, confidence: Decimal
    ) -> None:
        """Project a confirmed FK into the dependency graph; failures are logged only."""
        try:
            async with self.session.begin_nested():
                await self.dependency_writer.add_dependency(
                    project_id, source_table_id, target_table_id, confidence
                )
        except Exception:
            logger.exception(
                "Failed to feed logical FK %s -> %s into dependency graph for project %s",
                source_table_id,
                target_table_id,
                project_id,
            )

    async def create_manual(
        self,
        project_id: int,
        source_table_id: int,
        source_column_ids: list[int],
        target_table_id: int,
        target_column_ids: list[int],
        user_id: str,
        notes: str | None = None,
    ) -> LogicalFkView:
        """Create an auto-confirmed logical FK declared by a user.

        A REJECTED row with the same mapping is promoted in place; any other
        existing mapping is a conflict.
        """
        if not source_column_ids or not target_column_ids:
            raise LogicalFkValidationError("Source and target column lists must not be empty.")
        if len(source_column_ids) != len(target_column_ids):
            raise LogicalFkValidationError(
                "Source and target column counts must match for composite foreign keys."
            )
        if source_table_id == target_table_id and source_column_ids == target_column_ids:
            raise LogicalFkValidationError("A column cannot reference itself.")

        existing = await self.repository.get_by_mapping(
            project_id, source_table_id, source_column_ids, target_table_id, target_column_ids
        )
        if existing is not None and existing.status != LogicalFkStatus.REJECTED:
            raise LogicalFkConflictError("A logical foreign key with this mapping already exists.")

        if existing is not None:
            row = await self.repository.promote_to_manual(
                existing, MANUAL_CONFIDENCE, user_id, notes
            )
            logger.info(
                "Promoted rejected logical FK %s to a manual FK in project %s", row.id, project_id
            )
        else:
            row = await self.repository.create(
                project_id=project_id,
                source_table_id=source_table_id,
                source_column_ids=source_column_ids,
                target_table_id=target_table_id,
                target_column_ids=target_column_ids,
                discovery_method=DiscoveryMethod.MANUAL,
                confidence_score=MANUAL_CONFIDENCE,
                status=LogicalFkStatus.CONFIRMED,
                created_by=user_id,
                notes=notes,
            )
            logger.info("Created manual logical FK %s in project %s", row.id, project_id)

        await self._feed_dependency_graph(
            project_id, source_table_id, target_table_id, MANUAL_CONFIDENCE
        )
        return await self.get_logical_fk(project_id, row.id)

    async def _get_row(self, project_id: int, logical_fk_id: int) -> LogicalForeignKey:
        row = await self.repository.get_row(project_id, logical_fk_id)
        if row is None:
            raise LogicalFkNotFoundError(project_id, logical_fk_id)
        return row

    async def confirm(
        self, project_id: int, logical_fk_id: int, user_id: str, notes: str | None = None
    ) -> LogicalFkView:
        row = await self._get_row(project_id, logical_fk_id)
        await self.repository.set_status(row, LogicalFkStatus.CONFIRMED, user_id, notes)
        await self._feed_dependency_graph(
            project_id, row.source_table_id, row.target_table_id, row.confidence_score
        )
        return await self.get_logical_fk(project_id, logical_fk_id)

    async def reject(
        self, project_id: int, logical_fk_id: int, user_id: str, notes: str | None = None
    ) -> LogicalFkView:
        row = await self._get_row(project_id, logical_fk_id)
        await self.repository.set_status(row, LogicalFkStatus.REJECTED, user_id, notes)
        return await self.get_logical_fk(project_id, logical_fk_id)

    async def delete(self, project_id: int, logical_fk_id: int) -> None:
        if not await self.repository.delete(project_id, logical_fk_id):
            raise LogicalFkNotFoundError(project_id, logical_fk_id)
