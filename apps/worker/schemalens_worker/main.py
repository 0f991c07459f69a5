"""Main entry point for the SchemaLens worker.

Serves two Prefect deployments: a scheduled staleness sweep and an
on-demand single-project run that a metadata sync triggers when it
finishes.
"""

import asyncio
import logging
from datetime import timedelta

from prefect import serve
from schemalens_core import get_settings
from schemalens_core.telemetry import init_telemetry

from schemalens_worker.flows import detect_project, detect_stale_projects
from schemalens_worker.init_prefect import init_prefect

logger = logging.getLogger(__name__)


def main() -> None:
    """Start the worker with Prefect-native scheduling.

    Deployments:
    - detect-stale-projects: every ``detection_interval_minutes``
    - detect-project: on-demand, with a ``project_id`` parameter
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = get_settings()
    if init_telemetry(service_suffix="-worker"):
        logger.info("Telemetry enabled for worker")

    logger.info("Initializing Prefect infrastructure...")
    asyncio.run(init_prefect())

    sweep_deployment = detect_stale_projects.to_deployment(
        name="detect-stale-projects-deployment",
        interval=timedelta(minutes=settings.detection_interval_minutes),
        description="Re-runs logical FK detection for projects with stale results",
        tags=["scheduler"],
    )

    single_project_deployment = detect_project.to_deployment(
        name="detect-project-deployment",
        description="Runs logical FK detection for one project",
        tags=["detection"],
    )

    # Blocks until interrupted
    logger.info("Starting Prefect worker with deployments...")
    serve(
        sweep_deployment,  # type: ignore[arg-type]
        single_project_deployment,  # type: ignore[arg-type]
    )


if __name__ == "__main__":
    main()
