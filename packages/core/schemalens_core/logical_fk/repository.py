"""Persistence for logical foreign keys and the detection inputs they depend on."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import and_, delete, exists, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from schemalens_core.logical_fk.domain import (
    DetectionColumn,
    DetectionMetadata,
    EdgeKey,
    LogicalFkCandidate,
    LogicalFkView,
    PersistedCandidateRow,
    PhysicalFkView,
    ProcedureSource,
    UpsertCounts,
    decode_column_ids,
    decode_discovery_methods,
    encode_column_ids,
    encode_discovery_methods,
)
from schemalens_core.models import (
    DbColumn,
    DbTable,
    DiscoveryMethod,
    LogicalForeignKey,
    LogicalFkStatus,
    PhysicalForeignKey,
    Project,
    StoredProcedure,
)
from schemalens_core.telemetry.spans import trace_db_operation

logger = logging.getLogger(__name__)

_LFK = LogicalForeignKey.__table__.c


def _same_mapping(
    project_id: int,
    source_table_id: int,
    source_column_ids: str,
    target_table_id: int,
    target_column_ids: str,
):
    return and_(
        LogicalForeignKey.project_id == project_id,
        LogicalForeignKey.source_table_id == source_table_id,
        LogicalForeignKey.source_column_ids == source_column_ids,
        LogicalForeignKey.target_table_id == target_table_id,
        LogicalForeignKey.target_column_ids == target_column_ids,
    )


def logical_fk_keys(
    source_table_id: int,
    source_column_ids: list[int],
    target_table_id: int,
    target_column_ids: list[int],
) -> list[str]:
    """Canonical keys of a (possibly composite) mapping, paired by position."""
    return [
        str(EdgeKey(source_table_id, src, target_table_id, tgt))
        for src, tgt in zip(source_column_ids, target_column_ids, strict=False)
    ]


class LogicalFkRepository:
    """Async data access for the logical FK subsystem.

    Every bulk read is a single query. The caller owns the transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Detection inputs
    # ------------------------------------------------------------------

    async def get_columns_for_detection(self, project_id: int) -> list[DetectionColumn]:
        async with trace_db_operation("SELECT", "db_columns") as span:
            result = await self.session.execute(
                select(
                    DbColumn.table_id,
                    DbColumn.id,
                    DbTable.table_name,
                    DbColumn.column_name,
                    DbColumn.data_type,
                    DbColumn.is_primary_key,
                    DbColumn.is_foreign_key,
                    DbColumn.is_unique,
                )
                .join(DbTable, DbColumn.table_id == DbTable.id)
                .where(DbTable.project_id == project_id)
                .order_by(DbColumn.table_id, DbColumn.ordinal, DbColumn.id)
            )
            columns = [
                DetectionColumn(
                    table_id=row.table_id,
                    column_id=row.id,
                    table_name=row.table_name,
                    column_name=row.column_name,
                    data_type=row.data_type,
                    is_primary_key=bool(row.is_primary_key),
                    is_foreign_key=bool(row.is_foreign_key),
                    is_unique=bool(row.is_unique),
                )
                for row in result.all()
            ]
            span.set_attribute("db.rows_returned", len(columns))
        return columns

    async def get_procedures_for_detection(self, project_id: int) -> list[ProcedureSource]:
        async with trace_db_operation("SELECT", "stored_procedures"):
            result = await self.session.execute(
                select(
                    StoredProcedure.schema_name,
                    StoredProcedure.procedure_name,
                    StoredProcedure.definition,
                )
                .where(
                    StoredProcedure.project_id == project_id,
                    StoredProcedure.definition.isnot(None),
                )
                .order_by(StoredProcedure.id)
            )
            return [
                ProcedureSource(
                    name=f"{row.schema_name}.{row.procedure_name}",
                    definition=row.definition,
                )
                for row in result.all()
                if row.definition and row.definition.strip()
            ]

    async def get_physical_fk_keys(self, project_id: int) -> set[str]:
        """Canonical keys of every declared FK column pair in the project."""
        async with trace_db_operation("SELECT", "physical_foreign_keys"):
            result = await self.session.execute(
                select(
                    PhysicalForeignKey.source_table_id,
                    PhysicalForeignKey.source_column_id,
                    PhysicalForeignKey.target_table_id,
                    PhysicalForeignKey.target_column_id,
                ).where(PhysicalForeignKey.project_id == project_id)
            )
            return {str(EdgeKey(*row)) for row in result.all()}

    async def get_logical_fk_keys(
        self,
        project_id: int,
        statuses: Iterable[LogicalFkStatus] | None = None,
    ) -> set[str]:
        """Canonical keys of logical FKs, optionally limited to some statuses."""
        stmt = select(
            LogicalForeignKey.id,
            LogicalForeignKey.source_table_id,
            LogicalForeignKey.source_column_ids,
            LogicalForeignKey.target_table_id,
            LogicalForeignKey.target_column_ids,
        ).where(LogicalForeignKey.project_id == project_id)
        if statuses is not None:
            stmt = stmt.where(LogicalForeignKey.status.in_(list(statuses)))

        keys: set[str] = set()
        async with trace_db_operation("SELECT", "logical_foreign_keys"):
            result = await self.session.execute(stmt)
            for row in result.all():
                try:
                    source_ids = decode_column_ids(row.source_column_ids)
                    target_ids = decode_column_ids(row.target_column_ids)
                except ValueError as e:
                    logger.warning("Skipping logical FK %s with malformed columns: %s", row.id, e)
                    continue
                keys.update(
                    logical_fk_keys(
                        row.source_table_id, source_ids, row.target_table_id, target_ids
                    )
                )
        return keys

    # ------------------------------------------------------------------
    # Candidate persistence
    # ------------------------------------------------------------------

    async def _insert_if_absent(
        self, project_id: int, candidate: LogicalFkCandidate, now: datetime
    ) -> int:
        source_ids = encode_column_ids([candidate.source_column_id])
        target_ids = encode_column_ids([candidate.target_column_id])
        values = select(
            literal(project_id, type_=_LFK.project_id.type),
            literal(candidate.source_table_id, type_=_LFK.source_table_id.type),
            literal(source_ids, type_=_LFK.source_column_ids.type),
            literal(candidate.target_table_id, type_=_LFK.target_table_id.type),
            literal(target_ids, type_=_LFK.target_column_ids.type),
            literal(candidate.discovery_method, type_=_LFK.discovery_method.type),
            literal(candidate.confidence_score, type_=_LFK.confidence_score.type),
            literal(LogicalFkStatus.SUGGESTED, type_=_LFK.status.type),
            literal(candidate.reason, type_=_LFK.detection_reason.type),
            literal(
                encode_discovery_methods(candidate.discovery_methods),
                type_=_LFK.discovery_methods.type,
            ),
            literal(now, type_=_LFK.updated_at.type),
        ).where(
            ~exists(
                select(LogicalForeignKey.id).where(
                    _same_mapping(
                        project_id,
                        candidate.source_table_id,
                        source_ids,
                        candidate.target_table_id,
                        target_ids,
                    )
                )
            )
        )
        stmt = LogicalForeignKey.__table__.insert().from_select(
            [
                "project_id",
                "source_table_id",
                "source_column_ids",
                "target_table_id",
                "target_column_ids",
                "discovery_method",
                "confidence_score",
                "status",
                "detection_reason",
                "discovery_methods",
                "updated_at",
            ],
            values,
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def _update_matching(
        self,
        project_id: int,
        candidate: LogicalFkCandidate,
        now: datetime,
        *conditions,
        clear_review: bool = False,
    ) -> int:
        review = {"confirmed_by": None, "confirmed_at": None} if clear_review else {}
        stmt = (
            update(LogicalForeignKey)
            .where(
                _same_mapping(
                    project_id,
                    candidate.source_table_id,
                    encode_column_ids([candidate.source_column_id]),
                    candidate.target_table_id,
                    encode_column_ids([candidate.target_column_id]),
                ),
                *conditions,
            )
            .values(
                status=LogicalFkStatus.SUGGESTED,
                discovery_method=candidate.discovery_method,
                confidence_score=candidate.confidence_score,
                detection_reason=candidate.reason,
                discovery_methods=encode_discovery_methods(candidate.discovery_methods),
                updated_at=now,
                **review,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def bulk_upsert_suggested(
        self, project_id: int, candidates: list[LogicalFkCandidate]
    ) -> UpsertCounts:
        """Persist candidates as SUGGESTED rows.

        Per candidate, in order, stopping at the first attempt that changes a row:
        1. insert a new SUGGESTED row if no row has this mapping
        2. re-surface a REJECTED row whose rejection score is lower than the new score
        3. refresh an existing SUGGESTED row

        CONFIRMED rows never match any attempt.
        """
        counts = UpsertCounts()
        now = datetime.now(UTC)

        async with trace_db_operation("UPSERT", "logical_foreign_keys") as span:
            for candidate in candidates:
                if await self._insert_if_absent(project_id, candidate, now):
                    counts.inserted += 1
                    continue

                resurfaced = await self._update_matching(
                    project_id,
                    candidate,
                    now,
                    LogicalForeignKey.status == LogicalFkStatus.REJECTED,
                    or_(
                        LogicalForeignKey.rejected_score.is_(None),
                        LogicalForeignKey.rejected_score < candidate.confidence_score,
                    ),
                    clear_review=True,
                )
                if resurfaced:
                    counts.resurfaced += 1
                    logger.info(
                        "Re-surfaced rejected logical FK %s with score %s",
                        candidate.key,
                        candidate.confidence_score,
                    )
                    continue

                if await self._update_matching(
                    project_id,
                    candidate,
                    now,
                    LogicalForeignKey.status == LogicalFkStatus.SUGGESTED,
                ):
                    counts.refreshed += 1

            span.set_attribute("db.rows_affected", counts.affected)
        return counts

    async def get_persisted_suggested_candidates(
        self, project_id: int
    ) -> list[LogicalFkCandidate]:
        """Read SUGGESTED rows back as candidates, tolerating malformed rows."""
        source_table = aliased(DbTable)
        target_table = aliased(DbTable)
        result = await self.session.execute(
            select(
                LogicalForeignKey.source_table_id,
                source_table.table_name.label("source_table_name"),
                LogicalForeignKey.source_column_ids,
                LogicalForeignKey.target_table_id,
                target_table.table_name.label("target_table_name"),
                LogicalForeignKey.target_column_ids,
                LogicalForeignKey.confidence_score,
                LogicalForeignKey.detection_reason,
                LogicalForeignKey.discovery_methods,
            )
            .join(source_table, LogicalForeignKey.source_table_id == source_table.id)
            .join(target_table, LogicalForeignKey.target_table_id == target_table.id)
            .where(
                LogicalForeignKey.project_id == project_id,
                LogicalForeignKey.status == LogicalFkStatus.SUGGESTED,
            )
            .order_by(LogicalForeignKey.confidence_score.desc(), LogicalForeignKey.id)
        )
        rows = [
            PersistedCandidateRow(
                source_table_id=row.source_table_id,
                source_table_name=row.source_table_name,
                target_table_id=row.target_table_id,
                target_table_name=row.target_table_name,
                source_column_ids=row.source_column_ids,
                target_column_ids=row.target_column_ids,
                confidence_score=row.confidence_score,
                detection_reason=row.detection_reason,
                discovery_methods=row.discovery_methods,
            )
            for row in result.all()
        ]

        def first_id(raw: str | None) -> int | None:
            try:
                ids = decode_column_ids(raw)
            except ValueError:
                return None
            return ids[0] if ids else None

        columns = await self._columns_by_id(
            c
            for row in rows
            for c in (first_id(row.source_column_ids), first_id(row.target_column_ids))
            if c is not None
        )

        for row in rows:
            source = columns.get(first_id(row.source_column_ids))
            target = columns.get(first_id(row.target_column_ids))
            if source is not None:
                row.source_column_name = source.column_name
                row.source_data_type = source.data_type
            if target is not None:
                row.target_column_name = target.column_name
                row.target_data_type = target.data_type
        return [row.to_candidate() for row in rows]

    # ------------------------------------------------------------------
    # Detection metadata
    # ------------------------------------------------------------------

    async def get_detection_metadata(self, project_id: int) -> DetectionMetadata | None:
        result = await self.session.execute(
            select(
                Project.last_sync_at,
                Project.last_detection_run_at,
                Project.detection_algorithm_version,
            ).where(Project.id == project_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return DetectionMetadata(
            last_sync_at=row.last_sync_at,
            last_detection_run_at=row.last_detection_run_at,
            detection_algorithm_version=row.detection_algorithm_version,
        )

    async def update_detection_metadata(
        self, project_id: int, algorithm_version: str, run_at: datetime | None = None
    ) -> None:
        await self.session.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(
                last_detection_run_at=run_at or datetime.now(UTC),
                detection_algorithm_version=algorithm_version,
            )
            .execution_options(synchronize_session=False)
        )

    async def lock_project_for_detection(self, project_id: int) -> Project | None:
        """Row-lock the project; None when missing or locked by another run."""
        result = await self.session.execute(
            select(Project).where(Project.id == project_id).with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()

    async def project_exists(self, project_id: int) -> bool:
        result = await self.session.execute(select(Project.id).where(Project.id == project_id))
        return result.scalar_one_or_none() is not None

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def _columns_by_id(self, column_ids: Iterable[int]) -> dict[int, DbColumn]:
        ids = [c for c in set(column_ids) if c > 0]
        if not ids:
            return {}
        result = await self.session.execute(select(DbColumn).where(DbColumn.id.in_(ids)))
        return {column.id: column for column in result.scalars().all()}

    async def _table_names(self, table_ids: Iterable[int]) -> dict[int, str]:
        ids = list(set(table_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(DbTable.id, DbTable.table_name).where(DbTable.id.in_(ids))
        )
        return {row.id: row.table_name for row in result.all()}

    async def _to_views(self, rows: list[LogicalForeignKey]) -> list[LogicalFkView]:
        decoded = []
        for row in rows:
            try:
                source_ids = decode_column_ids(row.source_column_ids)
                target_ids = decode_column_ids(row.target_column_ids)
            except ValueError as e:
                logger.warning("Logical FK %s has malformed column ids: %s", row.id, e)
                source_ids, target_ids = [], []
            decoded.append((row, source_ids, target_ids))

        columns = await self._columns_by_id(
            c for _, src, tgt in decoded for c in (*src, *tgt)
        )
        tables = await self._table_names(
            t for row in rows for t in (row.source_table_id, row.target_table_id)
        )

        def names(ids: list[int]) -> list[str]:
            return [columns[c].column_name if c in columns else f"Col_{c}" for c in ids]

        return [
            LogicalFkView(
                id=row.id,
                project_id=row.project_id,
                source_table_id=row.source_table_id,
                source_table_name=tables.get(row.source_table_id, ""),
                source_column_ids=source_ids,
                source_column_names=names(source_ids),
                target_table_id=row.target_table_id,
                target_table_name=tables.get(row.target_table_id, ""),
                target_column_ids=target_ids,
                target_column_names=names(target_ids),
                discovery_method=row.discovery_method,
                confidence_score=row.confidence_score,
                status=row.status.value,
                detection_reason=row.detection_reason,
                discovery_methods=decode_discovery_methods(row.discovery_methods),
                confirmed_by=row.confirmed_by,
                confirmed_at=row.confirmed_at,
                notes=row.notes,
                created_by=row.created_by,
                created_at=row.created_at,
            )
            for row, source_ids, target_ids in decoded
        ]

    async def list_by_project(
        self, project_id: int, status: LogicalFkStatus | None = None
    ) -> list[LogicalFkView]:
        stmt = select(LogicalForeignKey).where(LogicalForeignKey.project_id == project_id)
        if status is not None:
            stmt = stmt.where(LogicalForeignKey.status == status)
        stmt = stmt.order_by(LogicalForeignKey.confidence_score.desc(), LogicalForeignKey.id)
        result = await self.session.execute(stmt)
        return await self._to_views(list(result.scalars().all()))

    async def list_by_table(self, project_id: int, table_id: int) -> list[LogicalFkView]:
        """Logical FKs where the table is either the source or the target."""
        result = await self.session.execute(
            select(LogicalForeignKey)
            .where(
                LogicalForeignKey.project_id == project_id,
                or_(
                    LogicalForeignKey.source_table_id == table_id,
                    LogicalForeignKey.target_table_id == table_id,
                ),
            )
            .order_by(LogicalForeignKey.id)
        )
        return await self._to_views(list(result.scalars().all()))

    async def get_row(self, project_id: int, logical_fk_id: int) -> LogicalForeignKey | None:
        result = await self.session.execute(
            select(LogicalForeignKey).where(
                LogicalForeignKey.project_id == project_id,
                LogicalForeignKey.id == logical_fk_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, project_id: int, logical_fk_id: int) -> LogicalFkView | None:
        row = await self.get_row(project_id, logical_fk_id)
        if row is None:
            return None
        return (await self._to_views([row]))[0]

    async def get_by_mapping(
        self,
        project_id: int,
        source_table_id: int,
        source_column_ids: list[int],
        target_table_id: int,
        target_column_ids: list[int],
    ) -> LogicalForeignKey | None:
        result = await self.session.execute(
            select(LogicalForeignKey).where(
                _same_mapping(
                    project_id,
                    source_table_id,
                    encode_column_ids(source_column_ids),
                    target_table_id,
                    encode_column_ids(target_column_ids),
                )
            )
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        project_id: int,
        source_table_id: int,
        source_column_ids: list[int],
        target_table_id: int,
        target_column_ids: list[int],
        discovery_method: DiscoveryMethod,
        confidence_score: Decimal,
        status: LogicalFkStatus,
        created_by: str | None = None,
        notes: str | None = None,
    ) -> LogicalForeignKey:
        now = datetime.now(UTC)
        row = LogicalForeignKey(
            project_id=project_id,
            source_table_id=source_table_id,
            source_column_ids=encode_column_ids(source_column_ids),
            target_table_id=target_table_id,
            target_column_ids=encode_column_ids(target_column_ids),
            discovery_method=discovery_method,
            confidence_score=confidence_score,
            status=status,
            notes=notes,
            created_by=created_by,
            created_at=now,
        )
        if status == LogicalFkStatus.CONFIRMED:
            row.confirmed_by = created_by
            row.confirmed_at = now
        self.session.add(row)
        await self.session.flush()
        return row

    async def promote_to_manual(
        self,
        row: LogicalForeignKey,
        confidence_score: Decimal,
        user_id: str,
        notes: str | None = None,
    ) -> LogicalForeignKey:
        """Turn a previously rejected suggestion into a user-declared, confirmed FK."""
        row.discovery_method = DiscoveryMethod.MANUAL
        row.discovery_methods = None
        row.detection_reason = None
        row.confidence_score = confidence_score
        row.rejected_score = None
        row.created_by = user_id
        return await self.set_status(row, LogicalFkStatus.CONFIRMED, user_id, notes)

    async def set_status(
        self,
        row: LogicalForeignKey,
        status: LogicalFkStatus,
        user_id: str,
        notes: str | None = None,
    ) -> LogicalForeignKey:
        """Apply a review decision. Rejection remembers the score it rejected."""
        now = datetime.now(UTC)
        row.status = status
        row.confirmed_by = user_id
        row.confirmed_at = now
        row.updated_at = now
        if notes is not None:
            row.notes = notes
        if status == LogicalFkStatus.REJECTED:
            row.rejected_score = row.confidence_score
        await self.session.flush()
        return row

    async def delete(self, project_id: int, logical_fk_id: int) -> bool:
        result = await self.session.execute(
            delete(LogicalForeignKey)
            .where(
                LogicalForeignKey.project_id == project_id,
                LogicalForeignKey.id == logical_fk_id,
            )
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def get_physical_fks_by_table(
        self, project_id: int, table_id: int
    ) -> list[PhysicalFkView]:
        source_table = aliased(DbTable)
        target_table = aliased(DbTable)
        source_column = aliased(DbColumn)
        target_column = aliased(DbColumn)
        result = await self.session.execute(
            select(
                PhysicalForeignKey.constraint_name,
                PhysicalForeignKey.source_table_id,
                source_table.table_name.label("source_table_name"),
                PhysicalForeignKey.source_column_id,
                source_column.column_name.label("source_column_name"),
                PhysicalForeignKey.target_table_id,
                target_table.table_name.label("target_table_name"),
                PhysicalForeignKey.target_column_id,
                target_column.column_name.label("target_column_name"),
                PhysicalForeignKey.on_delete,
                PhysicalForeignKey.on_update,
            )
            .join(source_table, PhysicalForeignKey.source_table_id == source_table.id)
            .join(target_table, PhysicalForeignKey.target_table_id == target_table.id)
            .join(source_column, PhysicalForeignKey.source_column_id == source_column.id)
            .join(target_column, PhysicalForeignKey.target_column_id == target_column.id)
            .where(
                PhysicalForeignKey.project_id == project_id,
                or_(
                    PhysicalForeignKey.source_table_id == table_id,
                    PhysicalForeignKey.target_table_id == table_id,
                ),
            )
            .order_by(PhysicalForeignKey.constraint_name, PhysicalForeignKey.ordinal)
        )
        return [PhysicalFkView(**row._mapping) for row in result.all()]
