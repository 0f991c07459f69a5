"""SchemaLens worker for Prefect flows and tasks."""

from schemalens_worker.flows import detect_project, detect_stale_projects

__all__ = ["detect_project", "detect_stale_projects"]
