"""Prefect flows for logical foreign key detection.

Features:
- Native Prefect scheduling of the staleness sweep
- Automatic retries with exponential backoff
- Concurrency limits via tags (db-heavy, sql-parse)
- Per-project isolation: one failing project never aborts a sweep
"""

import logging

from prefect import flow, task
from prefect.tasks import exponential_backoff
from schemalens_core import Project, get_session
from schemalens_core.logical_fk import (
    DetectionRunSummary,
    LogicalFkService,
    ProjectNotFoundError,
)
from sqlalchemy import select

from schemalens_worker.telemetry import traced_flow, traced_task

logger = logging.getLogger(__name__)

# Retry configuration
DEFAULT_RETRIES = 2

# Concurrency limit tags (set limits via: prefect concurrency-limit create <tag> <limit>)
TAG_DB_HEAVY = "db-heavy"
TAG_SQL_PARSE = "sql-parse"


def summary_to_dict(summary: DetectionRunSummary) -> dict:
    return {
        "project_id": summary.project_id,
        "skipped": summary.skipped,
        "candidates": summary.candidate_count,
        "inserted": summary.inserted,
        "resurfaced": summary.resurfaced,
        "refreshed": summary.refreshed,
        "sp_analysis_degraded": summary.sp_analysis_degraded,
    }


@task(
    retries=DEFAULT_RETRIES,
    retry_delay_seconds=exponential_backoff(backoff_factor=2),
    tags=[TAG_DB_HEAVY],
)
@traced_task()
async def get_project_ids() -> list[int]:
    """Get the ids of all projects with imported metadata."""
    async with get_session() as session:
        result = await session.execute(select(Project.id).order_by(Project.id))
        return list(result.scalars().all())


@task(
    retries=DEFAULT_RETRIES,
    retry_delay_seconds=exponential_backoff(backoff_factor=2),
    tags=[TAG_DB_HEAVY],
)
@traced_task()
async def check_project_staleness(project_id: int) -> dict:
    """Evaluate the staleness gate for one project."""
    async with get_session() as session:
        status = await LogicalFkService(session).get_detection_status(project_id)

    return {
        "project_id": project_id,
        "is_stale": status.is_stale,
        "reason": status.reason,
    }


@task(
    retries=DEFAULT_RETRIES,
    retry_delay_seconds=exponential_backoff(backoff_factor=2),
    retry_jitter_factor=0.5,
    tags=[TAG_DB_HEAVY, TAG_SQL_PARSE],
    task_run_name="detect-logical-fks-{project_id}",
)
@traced_task()
async def run_detection_for_project(project_id: int) -> dict:
    """Run detection for one project and persist SUGGESTED candidates.

    Returns a skipped result when another run holds the project lock.
    """
    async with get_session() as session:
        summary = await LogicalFkService(session).detect_and_persist_candidates(project_id)

    return summary_to_dict(summary)


@flow(name="detect_stale_projects")
@traced_flow()
async def detect_stale_projects() -> dict:
    """Flow to re-run detection for every project whose results are stale.

    A project is stale when detection never ran, the algorithm version
    changed, or its metadata was synced after the last run.
    """
    project_ids = await get_project_ids()

    if not project_ids:
        return {"checked": 0, "up_to_date": 0, "skipped": 0, "projects": []}

    results = []
    up_to_date = 0
    skipped = 0
    for project_id in project_ids:
        try:
            status = await check_project_staleness(project_id)
            if not status["is_stale"]:
                up_to_date += 1
                continue

            outcome = await run_detection_for_project(project_id)
            if outcome["skipped"]:
                skipped += 1
                continue
            results.append({**outcome, "reason": status["reason"]})
        except Exception as e:
            logger.warning("Detection failed for project %s: %s", project_id, e)
            results.append({"project_id": project_id, "error": str(e)})

    logger.info(
        "Staleness sweep checked %d projects: %d detected, %d up to date, %d skipped",
        len(project_ids),
        len(results),
        up_to_date,
        skipped,
    )
    return {
        "checked": len(project_ids),
        "up_to_date": up_to_date,
        "skipped": skipped,
        "projects": results,
    }


@flow(name="detect_project")
@traced_flow()
async def detect_project(project_id: int, force: bool = False) -> dict:
    """Flow to run detection for a single project.

    Triggered after a metadata sync completes, or by hand. Unless ``force``
    is set, projects whose results are up to date are left alone.

    Args:
        project_id: ID of the project to analyze
        force: Run even when the staleness gate says up to date

    Returns:
        Dict with detection results
    """
    try:
        if not force:
            status = await check_project_staleness(project_id)
            if not status["is_stale"]:
                return {"project_id": project_id, "skipped": True, "reason": status["reason"]}

        return await run_detection_for_project(project_id)
    except ProjectNotFoundError as e:
        return {"project_id": project_id, "error": str(e)}
