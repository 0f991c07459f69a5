"""Tests for logical foreign key routes."""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient
from schemalens_core.logical_fk import (
    ConfidenceBand,
    DetectionCancelledError,
    DetectionResult,
    DetectionRunSummary,
    DetectionStatus,
    LogicalFkCandidate,
    LogicalFkConflictError,
    LogicalFkNotFoundError,
    LogicalFkValidationError,
    LogicalFkView,
    PhysicalFkView,
    ProjectNotFoundError,
)
from schemalens_core.models import DiscoveryMethod

USER = {"user_id": "reviewer-1"}


def make_view(**overrides: Any) -> LogicalFkView:
    values = {
        "id": 11,
        "project_id": 1,
        "source_table_id": 2,
        "source_table_name": "Orders",
        "source_column_ids": [21],
        "source_column_names": ["customer_id"],
        "target_table_id": 1,
        "target_table_name": "Customers",
        "target_column_ids": [10],
        "target_column_names": ["id"],
        "discovery_method": DiscoveryMethod.NAME_CONVENTION,
        "confidence_score": Decimal("0.70"),
        "status": "SUGGESTED",
        "detection_reason": "Column 'customer_id' follows naming convention.",
        "discovery_methods": (DiscoveryMethod.NAME_CONVENTION,),
        "created_at": datetime(2026, 1, 15, tzinfo=UTC),
    }
    values.update(overrides)
    return LogicalFkView(**values)


def make_candidate() -> LogicalFkCandidate:
    return LogicalFkCandidate(
        source_table_id=2,
        source_table_name="Orders",
        source_column_id=21,
        source_column_name="customer_id",
        source_data_type="int",
        target_table_id=1,
        target_table_name="Customers",
        target_column_id=10,
        target_column_name="id",
        target_data_type="int",
        confidence_score=Decimal("1.00"),
        confidence_band=ConfidenceBand.HIGHLY_CONFIDENT,
        reason="Corroborated by both strategies.",
        discovery_methods=(DiscoveryMethod.NAME_CONVENTION, DiscoveryMethod.SP_JOIN),
        sp_evidence=("dbo.GetOrders",),
        match_count=2,
    )


def mock_db_session() -> Any:
    @asynccontextmanager
    async def session():
        yield MagicMock()

    return session()


@pytest.fixture
def service() -> Any:
    """Patch the service class and the session helpers of the route module."""
    instance = MagicMock()
    with (
        patch("app.routes.logical_fks.get_session", return_value=USER),
        patch("app.routes.logical_fks.get_db_session", side_effect=lambda: mock_db_session()),
        patch("app.routes.logical_fks.LogicalFkService", return_value=instance),
    ):
        yield instance


@pytest.mark.anyio
class TestAuthentication:
    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("get", "/api/logical-fks/1"),
            ("get", "/api/logical-fks/1/detect-candidates"),
            ("post", "/api/logical-fks/1/detect-and-persist"),
            ("put", "/api/logical-fks/1/11/confirm"),
            ("delete", "/api/logical-fks/1/11"),
        ],
    )
    async def test_requires_session_user(self, client: AsyncClient, method: str, path: str) -> None:
        response = await getattr(client, method)(path)
        assert response.status_code == 401


@pytest.mark.anyio
class TestQueries:
    async def test_list_logical_fks(self, client: AsyncClient, service: Any) -> None:
        service.list_logical_fks = AsyncMock(return_value=[make_view()])

        response = await client.get("/api/logical-fks/1?status=SUGGESTED")

        assert response.status_code == 200
        data = response.json()
        assert data[0]["id"] == 11
        assert data[0]["confidence_score"] == 0.7
        assert data[0]["discovery_method"] == "NAME_CONVENTION"
        assert data[0]["source_column_names"] == ["customer_id"]
        service.list_logical_fks.assert_awaited_once_with(1, "SUGGESTED")

    async def test_list_with_invalid_status(self, client: AsyncClient, service: Any) -> None:
        service.list_logical_fks = AsyncMock(
            side_effect=LogicalFkValidationError("Unknown status filter: maybe")
        )

        response = await client.get("/api/logical-fks/1?status=maybe")

        assert response.status_code == 400
        assert "Unknown status" in response.json()["detail"]

    async def test_get_missing_logical_fk(self, client: AsyncClient, service: Any) -> None:
        service.get_logical_fk = AsyncMock(side_effect=LogicalFkNotFoundError(1, 99))

        response = await client.get("/api/logical-fks/1/99")

        assert response.status_code == 404

    async def test_list_for_table(self, client: AsyncClient, service: Any) -> None:
        service.list_for_table = AsyncMock(return_value=[make_view()])

        response = await client.get("/api/logical-fks/1/table/2")

        assert response.status_code == 200
        assert len(response.json()) == 1
        service.list_for_table.assert_awaited_once_with(1, 2)

    async def test_list_physical_for_table(self, client: AsyncClient, service: Any) -> None:
        service.list_physical_fks_for_table = AsyncMock(
            return_value=[
                PhysicalFkView(
                    constraint_name="FK_Lines_Orders",
                    source_table_id=4,
                    source_table_name="OrderLines",
                    source_column_id=41,
                    source_column_name="order_id",
                    target_table_id=2,
                    target_table_name="Orders",
                    target_column_id=20,
                    target_column_name="id",
                    on_delete="CASCADE",
                )
            ]
        )

        response = await client.get("/api/logical-fks/1/table/2/physical")

        assert response.status_code == 200
        assert response.json()[0]["constraint_name"] == "FK_Lines_Orders"

    async def test_suggested(self, client: AsyncClient, service: Any) -> None:
        service.get_persisted_candidates = AsyncMock(return_value=[make_candidate()])

        response = await client.get("/api/logical-fks/1/suggested")

        assert response.status_code == 200
        assert response.json()[0]["confidence_band"] == "HighlyConfident"


@pytest.mark.anyio
class TestDetection:
    async def test_detect_candidates(self, client: AsyncClient, service: Any) -> None:
        service.detect_candidates = AsyncMock(
            return_value=DetectionResult(
                project_id=1,
                candidates=[make_candidate()],
                sp_analysis_degraded=True,
                procedures_failed=["dbo.Broken"],
                excluded_count=3,
            )
        )

        response = await client.get("/api/logical-fks/1/detect-candidates")

        assert response.status_code == 200
        data = response.json()
        assert data["sp_analysis_degraded"] is True
        assert data["procedures_failed"] == ["dbo.Broken"]
        assert data["excluded_count"] == 3
        candidate = data["candidates"][0]
        assert candidate["confidence_score"] == 1.0
        assert candidate["discovery_methods"] == ["NAME_CONVENTION", "SP_JOIN"]
        assert candidate["sp_evidence"] == ["dbo.GetOrders"]

    async def test_detect_and_persist(self, client: AsyncClient, service: Any) -> None:
        service.detect_and_persist_candidates = AsyncMock(
            return_value=DetectionRunSummary(
                project_id=1, candidate_count=3, inserted=2, refreshed=1
            )
        )

        response = await client.post("/api/logical-fks/1/detect-and-persist")

        assert response.status_code == 200
        data = response.json()
        assert data["affected"] == 3
        assert data["skipped"] is False

    async def test_detect_and_persist_unknown_project(
        self, client: AsyncClient, service: Any
    ) -> None:
        service.detect_and_persist_candidates = AsyncMock(side_effect=ProjectNotFoundError(9))

        response = await client.post("/api/logical-fks/9/detect-and-persist")

        assert response.status_code == 404

    async def test_detect_and_persist_cancelled(self, client: AsyncClient, service: Any) -> None:
        service.detect_and_persist_candidates = AsyncMock(
            side_effect=DetectionCancelledError(1, "naming")
        )

        response = await client.post("/api/logical-fks/1/detect-and-persist")

        assert response.status_code == 409

    async def test_detection_status(self, client: AsyncClient, service: Any) -> None:
        service.get_detection_status = AsyncMock(
            return_value=DetectionStatus(
                project_id=1, is_stale=True, reason="never_run", current_version="2.1.0"
            )
        )

        response = await client.get("/api/logical-fks/1/detection-status")

        assert response.status_code == 200
        assert response.json()["reason"] == "never_run"


@pytest.mark.anyio
class TestReviewWorkflow:
    async def test_create_manual(self, client: AsyncClient, service: Any) -> None:
        service.create_manual = AsyncMock(
            return_value=make_view(
                discovery_method=DiscoveryMethod.MANUAL,
                confidence_score=Decimal("1.00"),
                status="CONFIRMED",
                created_by="reviewer-1",
            )
        )

        response = await client.post(
            "/api/logical-fks/1",
            json={
                "source_table_id": 2,
                "source_column_ids": [21],
                "target_table_id": 1,
                "target_column_ids": [10],
                "notes": "from the data dictionary",
            },
        )

        assert response.status_code == 201
        assert response.json()["status"] == "CONFIRMED"
        kwargs = service.create_manual.await_args.kwargs
        assert kwargs["user_id"] == "reviewer-1"
        assert kwargs["notes"] == "from the data dictionary"

    async def test_create_manual_rejects_empty_columns(
        self, client: AsyncClient, service: Any
    ) -> None:
        response = await client.post(
            "/api/logical-fks/1",
            json={
                "source_table_id": 2,
                "source_column_ids": [],
                "target_table_id": 1,
                "target_column_ids": [10],
            },
        )

        assert response.status_code == 422

    async def test_create_manual_conflict(self, client: AsyncClient, service: Any) -> None:
        service.create_manual = AsyncMock(side_effect=LogicalFkConflictError("exists"))

        response = await client.post(
            "/api/logical-fks/1",
            json={
                "source_table_id": 2,
                "source_column_ids": [21],
                "target_table_id": 1,
                "target_column_ids": [10],
            },
        )

        assert response.status_code == 409

    async def test_confirm(self, client: AsyncClient, service: Any) -> None:
        service.confirm = AsyncMock(
            return_value=make_view(status="CONFIRMED", confirmed_by="reviewer-1")
        )

        response = await client.put("/api/logical-fks/1/11/confirm", json={"notes": "ok"})

        assert response.status_code == 200
        assert response.json()["confirmed_by"] == "reviewer-1"
        service.confirm.assert_awaited_once_with(1, 11, "reviewer-1", "ok")

    async def test_reject_without_body(self, client: AsyncClient, service: Any) -> None:
        service.reject = AsyncMock(return_value=make_view(status="REJECTED"))

        response = await client.put("/api/logical-fks/1/11/reject")

        assert response.status_code == 200
        assert response.json()["status"] == "REJECTED"
        service.reject.assert_awaited_once_with(1, 11, "reviewer-1", None)

    async def test_reject_missing(self, client: AsyncClient, service: Any) -> None:
        service.reject = AsyncMock(side_effect=LogicalFkNotFoundError(1, 11))

        response = await client.put("/api/logical-fks/1/11/reject")

        assert response.status_code == 404

    async def test_delete(self, client: AsyncClient, service: Any) -> None:
        service.delete = AsyncMock(return_value=None)

        response = await client.delete("/api/logical-fks/1/11")

        assert response.status_code == 200
        assert response.json() == {"status": "deleted"}
