"""Exceptions raised by the logical foreign key subsystem."""


class LogicalFkError(Exception):
    """Base exception for logical foreign key operations."""

    pass


class LogicalFkValidationError(LogicalFkError):
    """Request data is invalid, e.g. mismatched column counts."""

    pass


class LogicalFkNotFoundError(LogicalFkError):
    """The logical foreign key does not exist in the project."""

    def __init__(self, project_id: int, logical_fk_id: int) -> None:
        self.project_id = project_id
        self.logical_fk_id = logical_fk_id
        super().__init__(f"Logical FK {logical_fk_id} not found in project {project_id}")


class LogicalFkConflictError(LogicalFkError):
    """A logical foreign key with the same column mapping already exists."""

    pass


class DetectionCancelledError(LogicalFkError):
    """Detection was cancelled between phases."""

    def __init__(self, project_id: int, phase: str) -> None:
        self.project_id = project_id
        self.phase = phase
        super().__init__(f"Detection for project {project_id} cancelled after {phase}")


class ProjectNotFoundError(LogicalFkError):
    """The project does not exist."""

    def __init__(self, project_id: int) -> None:
        self.project_id = project_id
        super().__init__(f"Project {project_id} not found")
