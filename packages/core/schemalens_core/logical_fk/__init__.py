"""Logical foreign key detection.

Infers undeclared relationships from column naming conventions and from JOIN
conditions in stored procedures, scores each candidate and manages the
review workflow (suggest, confirm, reject).
"""

from schemalens_core.logical_fk.config import DetectionConfig, get_detection_config
from schemalens_core.logical_fk.detector import (
    DETECTION_ALGORITHM_VERSION,
    LogicalFkDetector,
    check_staleness,
)
from schemalens_core.logical_fk.domain import (
    ConfidenceBand,
    DetectionColumn,
    DetectionResult,
    DetectionRunSummary,
    DetectionStatus,
    EdgeKey,
    JoinCondition,
    LogicalFkCandidate,
    LogicalFkView,
    PhysicalFkView,
)
from schemalens_core.logical_fk.exceptions import (
    DetectionCancelledError,
    LogicalFkConflictError,
    LogicalFkError,
    LogicalFkNotFoundError,
    LogicalFkValidationError,
    ProjectNotFoundError,
)
from schemalens_core.logical_fk.service import LogicalFkService

__all__ = [
    "DETECTION_ALGORITHM_VERSION",
    "ConfidenceBand",
    "DetectionCancelledError",
    "DetectionColumn",
    "DetectionConfig",
    "DetectionResult",
    "DetectionRunSummary",
    "DetectionStatus",
    "EdgeKey",
    "JoinCondition",
    "LogicalFkCandidate",
    "LogicalFkConflictError",
    "LogicalFkDetector",
    "LogicalFkError",
    "LogicalFkNotFoundError",
    "LogicalFkService",
    "LogicalFkValidationError",
    "LogicalFkView",
    "PhysicalFkView",
    "ProjectNotFoundError",
    "check_staleness",
    "get_detection_config",
]
