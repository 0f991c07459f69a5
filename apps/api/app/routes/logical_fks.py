"""Logical foreign key routes."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field
from schemalens_core import get_session as get_db_session
from schemalens_core.logical_fk import (
    DetectionCancelledError,
    DetectionResult,
    DetectionRunSummary,
    DetectionStatus,
    LogicalFkCandidate,
    LogicalFkConflictError,
    LogicalFkError,
    LogicalFkNotFoundError,
    LogicalFkService,
    LogicalFkValidationError,
    LogicalFkView,
    PhysicalFkView,
    ProjectNotFoundError,
)

from app.middleware import get_session

router = APIRouter(tags=["logical-fks"])


class LogicalFkResponse(BaseModel):
    """Response model for a persisted logical foreign key."""

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
    discovery_method: str
    discovery_methods: list[str]
    confidence_score: float
    status: str
    detection_reason: str | None
    confirmed_by: str | None
    confirmed_at: datetime | None
    notes: str | None
    created_by: str | None
    created_at: datetime | None

    @classmethod
    def from_view(cls, view: LogicalFkView) -> "LogicalFkResponse":
        return cls(
            id=view.id,
            project_id=view.project_id,
            source_table_id=view.source_table_id,
            source_table_name=view.source_table_name,
            source_column_ids=view.source_column_ids,
            source_column_names=view.source_column_names,
            target_table_id=view.target_table_id,
            target_table_name=view.target_table_name,
            target_column_ids=view.target_column_ids,
            target_column_names=view.target_column_names,
            discovery_method=view.discovery_method.value,
            discovery_methods=[m.value for m in view.discovery_methods],
            confidence_score=float(view.confidence_score),
            status=view.status,
            detection_reason=view.detection_reason,
            confirmed_by=view.confirmed_by,
            confirmed_at=view.confirmed_at,
            notes=view.notes,
            created_by=view.created_by,
            created_at=view.created_at,
        )


class CandidateResponse(BaseModel):
    """Response model for a detected (not yet persisted) candidate."""

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
    confidence_score: float
    confidence_band: str
    reason: str
    is_ambiguous: bool
    discovery_methods: list[str]
    sp_evidence: list[str]
    match_count: int

    @classmethod
    def from_candidate(cls, candidate: LogicalFkCandidate) -> "CandidateResponse":
        return cls(
            source_table_id=candidate.source_table_id,
            source_table_name=candidate.source_table_name,
            source_column_id=candidate.source_column_id,
            source_column_name=candidate.source_column_name,
            source_data_type=candidate.source_data_type,
            target_table_id=candidate.target_table_id,
            target_table_name=candidate.target_table_name,
            target_column_id=candidate.target_column_id,
            target_column_name=candidate.target_column_name,
            target_data_type=candidate.target_data_type,
            confidence_score=float(candidate.confidence_score),
            confidence_band=candidate.confidence_band.value,
            reason=candidate.reason,
            is_ambiguous=candidate.is_ambiguous,
            discovery_methods=[m.value for m in candidate.discovery_methods],
            sp_evidence=list(candidate.sp_evidence),
            match_count=candidate.match_count,
        )


class DetectCandidatesResponse(BaseModel):
    """Preview of a detection run."""

    project_id: int
    candidates: list[CandidateResponse]
    ambiguity_groups: dict[str, list[str]]
    sp_analysis_degraded: bool
    procedures_analyzed: int
    procedures_failed: list[str]
    excluded_count: int

    @classmethod
    def from_result(cls, result: DetectionResult) -> "DetectCandidatesResponse":
        return cls(
            project_id=result.project_id,
            candidates=[CandidateResponse.from_candidate(c) for c in result.candidates],
            ambiguity_groups={
                group.group_key: [str(key) for key in group.members]
                for group in result.ambiguity_groups
            },
            sp_analysis_degraded=result.sp_analysis_degraded,
            procedures_analyzed=result.procedures_analyzed,
            procedures_failed=result.procedures_failed,
            excluded_count=result.excluded_count,
        )


class DetectionRunResponse(BaseModel):
    """Outcome of a persisted detection run."""

    project_id: int
    candidate_count: int
    affected: int
    inserted: int
    resurfaced: int
    refreshed: int
    sp_analysis_degraded: bool
    skipped: bool

    @classmethod
    def from_summary(cls, summary: DetectionRunSummary) -> "DetectionRunResponse":
        return cls(
            project_id=summary.project_id,
            candidate_count=summary.candidate_count,
            affected=summary.affected,
            inserted=summary.inserted,
            resurfaced=summary.resurfaced,
            refreshed=summary.refreshed,
            sp_analysis_degraded=summary.sp_analysis_degraded,
            skipped=summary.skipped,
        )


class DetectionStatusResponse(BaseModel):
    """Staleness of a project's detection results."""

    project_id: int
    is_stale: bool
    reason: str
    current_version: str
    detection_algorithm_version: str | None
    last_detection_run_at: datetime | None
    last_sync_at: datetime | None

    @classmethod
    def from_status(cls, status: DetectionStatus) -> "DetectionStatusResponse":
        return cls(
            project_id=status.project_id,
            is_stale=status.is_stale,
            reason=status.reason,
            current_version=status.current_version,
            detection_algorithm_version=status.detection_algorithm_version,
            last_detection_run_at=status.last_detection_run_at,
            last_sync_at=status.last_sync_at,
        )


class PhysicalFkResponse(BaseModel):
    """Response model for one column pair of a declared foreign key."""

    constraint_name: str
    source_table_id: int
    source_table_name: str
    source_column_id: int
    source_column_name: str
    target_table_id: int
    target_table_name: str
    target_column_id: int
    target_column_name: str
    on_delete: str | None
    on_update: str | None

    @classmethod
    def from_view(cls, view: PhysicalFkView) -> "PhysicalFkResponse":
        return cls(**view.__dict__)


class CreateLogicalFkRequest(BaseModel):
    """Request model for declaring a logical foreign key by hand."""

    source_table_id: int
    source_column_ids: list[int] = Field(..., min_length=1)
    target_table_id: int
    target_column_ids: list[int] = Field(..., min_length=1)
    notes: str | None = None


class UpdateStatusRequest(BaseModel):
    """Request model for confirm and reject."""

    notes: str | None = None


def get_current_user_id(request: Request) -> str:
    """Get the current user ID from session or raise 401."""
    session = get_session(request)
    user_id = session.get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return str(user_id)


def to_http_error(error: LogicalFkError) -> HTTPException:
    """Map a logical FK error to its HTTP status."""
    if isinstance(error, LogicalFkValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, (LogicalFkNotFoundError, ProjectNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (LogicalFkConflictError, DetectionCancelledError)):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@router.get("/logical-fks/{project_id}", response_model=list[LogicalFkResponse])
async def list_logical_fks(
    request: Request,
    project_id: int,
    status: str | None = Query(None, description="SUGGESTED, CONFIRMED or REJECTED"),
) -> list[LogicalFkResponse]:
    """List logical foreign keys of a project."""
    get_current_user_id(request)

    try:
        async with get_db_session() as db:
            views = await LogicalFkService(db).list_logical_fks(project_id, status)
    except LogicalFkError as e:
        raise to_http_error(e) from e

    return [LogicalFkResponse.from_view(v) for v in views]


@router.get(
    "/logical-fks/{project_id}/detect-candidates",
    response_model=DetectCandidatesResponse,
)
async def detect_candidates(request: Request, project_id: int) -> DetectCandidatesResponse:
    """Run detection and return ranked candidates without persisting them."""
    get_current_user_id(request)

    async with get_db_session() as db:
        result = await LogicalFkService(db).detect_candidates(project_id)

    return DetectCandidatesResponse.from_result(result)


@router.post(
    "/logical-fks/{project_id}/detect-and-persist",
    response_model=DetectionRunResponse,
)
async def detect_and_persist(request: Request, project_id: int) -> DetectionRunResponse:
    """Run detection and store the candidates as SUGGESTED rows."""
    get_current_user_id(request)

    try:
        async with get_db_session() as db:
            summary = await LogicalFkService(db).detect_and_persist_candidates(project_id)
    except LogicalFkError as e:
        raise to_http_error(e) from e

    return DetectionRunResponse.from_summary(summary)


@router.get(
    "/logical-fks/{project_id}/detection-status",
    response_model=DetectionStatusResponse,
)
async def detection_status(request: Request, project_id: int) -> DetectionStatusResponse:
    """Report whether stored detection results are stale."""
    get_current_user_id(request)

    try:
        async with get_db_session() as db:
            status = await LogicalFkService(db).get_detection_status(project_id)
    except LogicalFkError as e:
        raise to_http_error(e) from e

    return DetectionStatusResponse.from_status(status)


@router.get("/logical-fks/{project_id}/suggested", response_model=list[CandidateResponse])
async def list_suggested(request: Request, project_id: int) -> list[CandidateResponse]:
    """List persisted SUGGESTED candidates."""
    get_current_user_id(request)

    async with get_db_session() as db:
        candidates = await LogicalFkService(db).get_persisted_candidates(project_id)

    return [CandidateResponse.from_candidate(c) for c in candidates]


@router.get(
    "/logical-fks/{project_id}/table/{table_id}",
    response_model=list[LogicalFkResponse],
)
async def list_for_table(
    request: Request, project_id: int, table_id: int
) -> list[LogicalFkResponse]:
    """List logical foreign keys where the table is source or target."""
    get_current_user_id(request)

    async with get_db_session() as db:
        views = await LogicalFkService(db).list_for_table(project_id, table_id)

    return [LogicalFkResponse.from_view(v) for v in views]


@router.get(
    "/logical-fks/{project_id}/table/{table_id}/physical",
    response_model=list[PhysicalFkResponse],
)
async def list_physical_for_table(
    request: Request, project_id: int, table_id: int
) -> list[PhysicalFkResponse]:
    """List declared foreign keys where the table is source or target."""
    get_current_user_id(request)

    async with get_db_session() as db:
        views = await LogicalFkService(db).list_physical_fks_for_table(project_id, table_id)

    return [PhysicalFkResponse.from_view(v) for v in views]


@router.get("/logical-fks/{project_id}/{logical_fk_id}", response_model=LogicalFkResponse)
async def get_logical_fk(
    request: Request, project_id: int, logical_fk_id: int
) -> LogicalFkResponse:
    """Get a single logical foreign key."""
    get_current_user_id(request)

    try:
        async with get_db_session() as db:
            view = await LogicalFkService(db).get_logical_fk(project_id, logical_fk_id)
    except LogicalFkError as e:
        raise to_http_error(e) from e

    return LogicalFkResponse.from_view(view)


@router.post(
    "/logical-fks/{project_id}",
    response_model=LogicalFkResponse,
    status_code=201,
)
async def create_logical_fk(
    request: Request, project_id: int, body: CreateLogicalFkRequest
) -> LogicalFkResponse:
    """Declare a logical foreign key by hand. It is confirmed immediately."""
    user_id = get_current_user_id(request)

    try:
        async with get_db_session() as db:
            view = await LogicalFkService(db).create_manual(
                project_id=project_id,
                source_table_id=body.source_table_id,
                source_column_ids=body.source_column_ids,
                target_table_id=body.target_table_id,
                target_column_ids=body.target_column_ids,
                user_id=user_id,
                notes=body.notes,
            )
    except LogicalFkError as e:
        raise to_http_error(e) from e

    return LogicalFkResponse.from_view(view)


@router.put(
    "/logical-fks/{project_id}/{logical_fk_id}/confirm",
    response_model=LogicalFkResponse,
)
async def confirm_logical_fk(
    request: Request,
    project_id: int,
    logical_fk_id: int,
    body: UpdateStatusRequest | None = None,
) -> LogicalFkResponse:
    """Confirm a suggested logical foreign key."""
    user_id = get_current_user_id(request)
    notes = body.notes if body else None

    try:
        async with get_db_session() as db:
            view = await LogicalFkService(db).confirm(project_id, logical_fk_id, user_id, notes)
    except LogicalFkError as e:
        raise to_http_error(e) from e

    return LogicalFkResponse.from_view(view)


@router.put(
    "/logical-fks/{project_id}/{logical_fk_id}/reject",
    response_model=LogicalFkResponse,
)
async def reject_logical_fk(
    request: Request,
    project_id: int,
    logical_fk_id: int,
    body: UpdateStatusRequest | None = None,
) -> LogicalFkResponse:
    """Reject a suggested logical foreign key."""
    user_id = get_current_user_id(request)
    notes = body.notes if body else None

    try:
        async with get_db_session() as db:
            view = await LogicalFkService(db).reject(project_id, logical_fk_id, user_id, notes)
    except LogicalFkError as e:
        raise to_http_error(e) from e

    return LogicalFkResponse.from_view(view)


@router.delete("/logical-fks/{project_id}/{logical_fk_id}")
async def delete_logical_fk(
    request: Request, project_id: int, logical_fk_id: int
) -> dict[str, str]:
    """Delete a logical foreign key."""
    get_current_user_id(request)

    try:
        async with get_db_session() as db:
            await LogicalFkService(db).delete(project_id, logical_fk_id)
    except LogicalFkError as e:
        raise to_http_error(e) from e

    return {"status": "deleted"}
