"""Database health check and stats endpoints."""

from fastapi import APIRouter
from schemalens_core import (
    DbColumn,
    DbTable,
    LogicalForeignKey,
    Project,
    StoredProcedure,
    get_session,
    get_settings,
)
from schemalens_core.logical_fk import check_staleness
from schemalens_core.logical_fk.domain import DetectionMetadata
from sqlalchemy import func, select, text

router = APIRouter(tags=["database"])


@router.get("/db/health")
async def db_health_check() -> dict[str, str]:
    """Check database connectivity by running a simple query."""
    settings = get_settings()

    if not settings.database_url:
        return {"db": "not_configured"}

    try:
        async with get_session() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            return {"db": "ok"}
    except Exception as e:
        return {"db": "error", "detail": str(e)}


@router.get("/stats")
async def get_stats() -> dict:
    """Get metadata and review counts across all projects."""
    settings = get_settings()

    if not settings.database_url:
        return {"error": "database_not_configured"}

    try:
        async with get_session() as session:
            counts = {}
            for label, column in (
                ("projects", Project.id),
                ("tables", DbTable.id),
                ("columns", DbColumn.id),
                ("stored_procedures", StoredProcedure.id),
            ):
                result = await session.execute(select(func.count(column)))
                counts[label] = result.scalar() or 0

            result = await session.execute(
                select(LogicalForeignKey.status, func.count(LogicalForeignKey.id)).group_by(
                    LogicalForeignKey.status
                )
            )
            logical_fks_by_status = {row[0].value: row[1] for row in result.fetchall()}

            result = await session.execute(
                select(
                    Project.id,
                    Project.last_sync_at,
                    Project.last_detection_run_at,
                    Project.detection_algorithm_version,
                )
            )
            counts["projects_pending_detection"] = sum(
                1
                for row in result.all()
                if check_staleness(
                    row.id,
                    DetectionMetadata(
                        last_sync_at=row.last_sync_at,
                        last_detection_run_at=row.last_detection_run_at,
                        detection_algorithm_version=row.detection_algorithm_version,
                    ),
                ).is_stale
            )

            return {**counts, "logical_fks_by_status": logical_fks_by_status}
    except Exception as e:
        return {"error": str(e)}
