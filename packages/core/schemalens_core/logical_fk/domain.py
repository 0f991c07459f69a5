"""In-memory types shared by the detection strategies, scorer and repository."""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation

from schemalens_core.models import DiscoveryMethod

logger = logging.getLogger(__name__)

EDGE_ARROW = "→"
INVALID_COLUMN_ID = -1


class ConfidenceBand(enum.Enum):
    """Display bucket derived from a confidence score."""

    LOW = "Low"
    POSSIBLE = "Possible"
    LIKELY = "Likely"
    VERY_LIKELY = "VeryLikely"
    HIGHLY_CONFIDENT = "HighlyConfident"


@dataclass(frozen=True)
class DetectionColumn:
    """Snapshot of one column as seen by a detection run."""

    table_id: int
    column_id: int
    table_name: str
    column_name: str
    data_type: str
    is_primary_key: bool = False
    is_foreign_key: bool = False
    is_unique: bool = False


@dataclass(frozen=True, order=True)
class EdgeKey:
    """Identity of a candidate relationship: source column to target column."""

    source_table_id: int
    source_column_id: int
    target_table_id: int
    target_column_id: int

    @classmethod
    def between(cls, source: DetectionColumn, target: DetectionColumn) -> EdgeKey:
        return cls(source.table_id, source.column_id, target.table_id, target.column_id)

    def __str__(self) -> str:
        return (
            f"{self.source_table_id}:{self.source_column_id}"
            f"{EDGE_ARROW}{self.target_table_id}:{self.target_column_id}"
        )


@dataclass(frozen=True)
class JoinCondition:
    """One ``left.column = right.column`` equality taken from a JOIN clause."""

    left_table: str
    left_column: str
    right_table: str
    right_column: str


@dataclass(frozen=True)
class ProcedureSource:
    """A stored procedure body handed to the join extractor."""

    name: str
    definition: str


@dataclass(frozen=True)
class DetectionSignals:
    """Evidence vector for a single edge."""

    naming_detected: bool
    sp_join_detected: bool
    type_match: bool
    has_id_suffix: bool
    sp_count: int = 0

    @property
    def corroborated(self) -> bool:
        return self.naming_detected and self.sp_join_detected


@dataclass(frozen=True)
class ConfidenceResult:
    """Score breakdown kept for auditability."""

    base_score: Decimal
    naming_bonus: Decimal
    type_adjustment: Decimal
    repetition_bonus: Decimal
    corroboration_bonus: Decimal
    raw_confidence: Decimal
    final_confidence: Decimal
    caps_applied: tuple[str, ...] = ()


@dataclass(frozen=True)
class NamingEdge:
    """Edge produced by the naming-convention strategy."""

    key: EdgeKey
    source: DetectionColumn
    target: DetectionColumn
    is_ambiguous: bool = False
    ambiguity_group: str | None = None


@dataclass
class AmbiguityGroup:
    """Tied naming candidates for one source column and target table."""

    group_key: str
    members: list[EdgeKey] = field(default_factory=list)


@dataclass
class NamingResult:
    edges: dict[EdgeKey, NamingEdge] = field(default_factory=dict)
    ambiguity_groups: list[AmbiguityGroup] = field(default_factory=list)


@dataclass
class SpJoinEvidence:
    """Edge produced by the SP-join strategy plus the procedures observing it."""

    key: EdgeKey
    source: DetectionColumn
    target: DetectionColumn
    procedures: set[str] = field(default_factory=set)

    @property
    def sp_count(self) -> int:
        return len(self.procedures)


@dataclass
class SpJoinResult:
    evidence: dict[EdgeKey, SpJoinEvidence] = field(default_factory=dict)
    procedures_analyzed: int = 0
    procedures_failed: list[str] = field(default_factory=list)
    degraded: bool = False


@dataclass(frozen=True)
class LogicalFkCandidate:
    """A scored, explainable candidate produced by one detection run."""

    source_table_id: int
    source_table_name: str
    source_column_id: int
    source_column_name: str
    source_data_type: str
    target_table_id: int
    target_table_name: str
    target_column_id: int
    target_column_name: str
    target_data_type: str
    confidence_score: Decimal
    confidence_band: ConfidenceBand
    reason: str
    is_ambiguous: bool = False
    discovery_methods: tuple[DiscoveryMethod, ...] = ()
    sp_evidence: tuple[str, ...] = ()
    match_count: int = 0

    @property
    def key(self) -> EdgeKey:
        return EdgeKey(
            self.source_table_id,
            self.source_column_id,
            self.target_table_id,
            self.target_column_id,
        )

    @property
    def discovery_method(self) -> DiscoveryMethod:
        """Single method stored on the persisted row."""
        methods = set(self.discovery_methods)
        if {DiscoveryMethod.NAME_CONVENTION, DiscoveryMethod.SP_JOIN} <= methods:
            return DiscoveryMethod.CORROBORATED
        if DiscoveryMethod.SP_JOIN in methods:
            return DiscoveryMethod.SP_JOIN
        return DiscoveryMethod.NAME_CONVENTION


@dataclass
class DetectionResult:
    """Outcome of a detection run, including degraded-mode signals."""

    project_id: int
    candidates: list[LogicalFkCandidate] = field(default_factory=list)
    ambiguity_groups: list[AmbiguityGroup] = field(default_factory=list)
    sp_analysis_degraded: bool = False
    procedures_analyzed: int = 0
    procedures_failed: list[str] = field(default_factory=list)
    excluded_count: int = 0


@dataclass
class UpsertCounts:
    inserted: int = 0
    resurfaced: int = 0
    refreshed: int = 0

    @property
    def affected(self) -> int:
        return self.inserted + self.resurfaced + self.refreshed


@dataclass
class DetectionRunSummary:
    """What a persisted detection run changed."""

    project_id: int
    candidate_count: int = 0
    inserted: int = 0
    resurfaced: int = 0
    refreshed: int = 0
    sp_analysis_degraded: bool = False
    skipped: bool = False

    @property
    def affected(self) -> int:
        return self.inserted + self.resurfaced + self.refreshed


@dataclass(frozen=True)
class DetectionMetadata:
    last_sync_at: datetime | None
    last_detection_run_at: datetime | None
    detection_algorithm_version: str | None


@dataclass(frozen=True)
class DetectionStatus:
    """Advisory staleness report for a project's detection results."""

    project_id: int
    is_stale: bool
    reason: str
    current_version: str
    detection_algorithm_version: str | None = None
    last_detection_run_at: datetime | None = None
    last_sync_at: datetime | None = None


def encode_column_ids(column_ids: list[int]) -> str:
    """Serialize an ordered column id list for storage."""
    return json.dumps([int(c) for c in column_ids], separators=(",", ":"))


def decode_column_ids(raw: str | None) -> list[int]:
    """Parse a stored column id list. Raises ValueError on malformed input."""
    if raw is None or not raw.strip():
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed column id list: {raw!r}") from e
    if isinstance(value, int):
        return [value]
    if not isinstance(value, list):
        raise ValueError(f"Malformed column id list: {raw!r}")
    return [int(v) for v in value]


def decode_discovery_methods(raw: str | None) -> tuple[DiscoveryMethod, ...]:
    """Parse a stored discovery-method list, skipping unknown names."""
    if not raw or not raw.strip():
        return ()
    try:
        names = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed discovery methods %r", raw)
        return ()
    methods = []
    for name in names if isinstance(names, list) else []:
        try:
            methods.append(DiscoveryMethod(name))
        except ValueError:
            logger.warning("Ignoring unknown discovery method %r", name)
    return tuple(methods)


def encode_discovery_methods(methods: tuple[DiscoveryMethod, ...]) -> str:
    return json.dumps([m.value for m in methods])


@dataclass
class PersistedCandidateRow:
    """Loosely typed SUGGESTED row as read back from storage.

    Every field is optional. ``to_candidate`` parses defensively: column ids
    that cannot be read are logged and replaced with ``INVALID_COLUMN_ID``.
    """

    source_table_id: int
    source_table_name: str
    target_table_id: int
    target_table_name: str
    source_column_ids: str | None = None
    target_column_ids: str | None = None
    source_column_name: str | None = None
    source_data_type: str | None = None
    target_column_name: str | None = None
    target_data_type: str | None = None
    confidence_score: Decimal | float | str | None = None
    detection_reason: str | None = None
    discovery_methods: str | None = None

    def _first_column_id(self, raw: str | None, side: str, table_id: int, table_name: str) -> int:
        try:
            ids = decode_column_ids(raw)
        except (TypeError, ValueError):
            ids = []
        if not ids:
            logger.warning(
                "Failed to parse %s column id %r for suggested FK in table %s (%s)",
                side,
                raw,
                table_id,
                table_name,
            )
            return INVALID_COLUMN_ID
        return ids[0]

    def _score(self) -> Decimal:
        try:
            return Decimal(str(self.confidence_score)).quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError):
            logger.warning(
                "Failed to parse confidence score %r for suggested FK in table %s",
                self.confidence_score,
                self.source_table_id,
            )
            return Decimal("0.00")

    def to_candidate(self) -> LogicalFkCandidate:
        from schemalens_core.logical_fk.confidence import classify_band

        source_column_id = self._first_column_id(
            self.source_column_ids, "source", self.source_table_id, self.source_table_name
        )
        target_column_id = self._first_column_id(
            self.target_column_ids, "target", self.target_table_id, self.target_table_name
        )
        score = self._score()
        return LogicalFkCandidate(
            source_table_id=self.source_table_id,
            source_table_name=self.source_table_name,
            source_column_id=source_column_id,
            source_column_name=self.source_column_name or f"Col_{source_column_id}",
            source_data_type=self.source_data_type or "",
            target_table_id=self.target_table_id,
            target_table_name=self.target_table_name,
            target_column_id=target_column_id,
            target_column_name=self.target_column_name or f"Col_{target_column_id}",
            target_data_type=self.target_data_type or "",
            confidence_score=score,
            confidence_band=classify_band(score),
            reason=self.detection_reason or "",
            discovery_methods=decode_discovery_methods(self.discovery_methods),
        )


@dataclass
class LogicalFkView:
    """A persisted logical FK enriched with table and column names."""

    id: int
    project_id: int
    source_table_id: int
    source_table_name: str
    source_column_ids: list[int]
    source_column_names: list[str]
    target_table_id: int
    target_table_name: str
    target_column_ids: list[int]
    target_column_names: list[str]
    discovery_method: DiscoveryMethod
    confidence_score: Decimal
    status: str
    detection_reason: str | None = None
    discovery_methods: tuple[DiscoveryMethod, ...] = ()
    confirmed_by: str | None = None
    confirmed_at: datetime | None = None
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class PhysicalFkView:
    """One column pair of a declared foreign key, with names."""

    constraint_name: str
    source_table_id: int
    source_table_name: str
    source_column_id: int
    source_column_name: str
    target_table_id: int
    target_table_name: str
    target_column_id: int
    target_column_name: str
    on_delete: str | None = None
    on_update: str | None = None
