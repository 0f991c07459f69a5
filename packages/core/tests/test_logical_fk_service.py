"""Tests for LogicalFkService and its repository against an in-memory database."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from schemalens_core.database import Base
from schemalens_core.logical_fk import (
    DetectionCancelledError,
    DetectionConfig,
    LogicalFkConflictError,
    LogicalFkNotFoundError,
    LogicalFkService,
    LogicalFkValidationError,
    ProjectNotFoundError,
)
from schemalens_core.logical_fk.domain import INVALID_COLUMN_ID
from schemalens_core.models import (
    DbColumn,
    DbTable,
    Dependency,
    DiscoveryMethod,
    LogicalForeignKey,
    LogicalFkStatus,
    PhysicalForeignKey,
    Project,
    StoredProcedure,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

JOIN_PROCEDURE = """CREATE PROCEDURE dbo.GetCustomerOrders AS
SELECT o.id, c.name
FROM dbo.Orders o
INNER JOIN dbo.Customers c ON o.customer_id = c.id"""

WRAPPED_PROCEDURE = """CREATE PROCEDURE dbo.ReconcileOrders @CustomerId INT
WITH EXECUTE AS OWNER
AS
BEGIN
    SET NOCOUNT ON;
    BEGIN TRY
        BEGIN TRANSACTION;
        UPDATE l SET l.order_id = o.id
        FROM dbo.OrderLines l
        INNER JOIN dbo.Orders o ON l.order_id = o.id
        WHERE o.customer_id = @CustomerId;

        SELECT o.id,
            CASE WHEN c.name IS NULL THEN 'unknown' ELSE c.name END AS customer_name
        FROM dbo.Orders o
        INNER JOIN dbo.Customers c ON o.customer_id = c.id;
        COMMIT TRANSACTION;
    END TRY
    BEGIN CATCH
        ROLLBACK TRANSACTION;
    END CATCH
END"""


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def test_session() -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@dataclass
class Schema:
    project_id: int
    customers_id: int
    customers_pk: int
    orders_id: int
    orders_pk: int
    orders_customer: int
    lines_id: int
    lines_order: int


async def seed_schema(session: AsyncSession) -> Schema:
    project = Project(name="Legacy ERP")
    session.add(project)
    await session.flush()

    customers = DbTable(project_id=project.id, table_name="Customers")
    orders = DbTable(project_id=project.id, table_name="Orders")
    lines = DbTable(project_id=project.id, table_name="OrderLines")
    session.add_all([customers, orders, lines])
    await session.flush()

    customers_pk = DbColumn(
        table_id=customers.id, column_name="id", data_type="int", ordinal=1, is_primary_key=True
    )
    customers_name = DbColumn(
        table_id=customers.id, column_name="name", data_type="nvarchar", ordinal=2
    )
    orders_pk = DbColumn(
        table_id=orders.id, column_name="id", data_type="int", ordinal=1, is_primary_key=True
    )
    orders_customer = DbColumn(
        table_id=orders.id, column_name="customer_id", data_type="int", ordinal=2
    )
    lines_pk = DbColumn(
        table_id=lines.id, column_name="id", data_type="int", ordinal=1, is_primary_key=True
    )
    lines_order = DbColumn(table_id=lines.id, column_name="order_id", data_type="int", ordinal=2)
    session.add_all([customers_pk, customers_name, orders_pk, orders_customer, lines_pk, lines_order])
    await session.commit()

    return Schema(
        project_id=project.id,
        customers_id=customers.id,
        customers_pk=customers_pk.id,
        orders_id=orders.id,
        orders_pk=orders_pk.id,
        orders_customer=orders_customer.id,
        lines_id=lines.id,
        lines_order=lines_order.id,
    )


def make_service(session: AsyncSession, **kwargs) -> LogicalFkService:
    return LogicalFkService(session, config=DetectionConfig(), **kwargs)


async def rows_by_status(session: AsyncSession, project_id: int) -> dict[str, int]:
    result = await session.execute(
        select(LogicalForeignKey.status, func.count(LogicalForeignKey.id))
        .where(LogicalForeignKey.project_id == project_id)
        .group_by(LogicalForeignKey.status)
    )
    return {status.value: count for status, count in result.all()}


@pytest.mark.anyio
async def test_detect_candidates_previews_without_writing(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)

    result = await service.detect_candidates(schema.project_id)

    assert [(c.source_column_name, c.target_table_name) for c in result.candidates] == [
        ("order_id", "Orders"),
        ("customer_id", "Customers"),
    ]
    assert all(c.confidence_score == Decimal("0.70") for c in result.candidates)
    assert await rows_by_status(test_session, schema.project_id) == {}


@pytest.mark.anyio
async def test_detect_and_persist_is_idempotent(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)

    with patch("schemalens_core.logical_fk.service.record_detection_run") as record:
        first = await service.detect_and_persist_candidates(schema.project_id)
        second = await service.detect_and_persist_candidates(schema.project_id)

    assert (first.inserted, first.refreshed) == (2, 0)
    assert (second.inserted, second.refreshed) == (0, 2)
    assert record.call_count == 2
    assert record.call_args.kwargs["candidates"] == 2
    assert await rows_by_status(test_session, schema.project_id) == {"SUGGESTED": 2}

    status = await service.get_detection_status(schema.project_id)
    assert not status.is_stale
    assert status.reason == "up_to_date"


@pytest.mark.anyio
async def test_stored_procedure_joins_corroborate_naming(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    test_session.add(
        StoredProcedure(
            project_id=schema.project_id,
            procedure_name="GetCustomerOrders",
            definition=JOIN_PROCEDURE,
        )
    )
    await test_session.commit()

    await make_service(test_session).detect_and_persist_candidates(schema.project_id)

    result = await test_session.execute(
        select(LogicalForeignKey.discovery_method, LogicalForeignKey.confidence_score).where(
            LogicalForeignKey.source_table_id == schema.orders_id
        )
    )
    method, score = result.one()
    assert method == DiscoveryMethod.CORROBORATED
    assert score == Decimal("1.00")


@pytest.mark.anyio
async def test_block_structured_procedure_corroborates_both_edges(
    test_session: AsyncSession,
) -> None:
    schema = await seed_schema(test_session)
    test_session.add(
        StoredProcedure(
            project_id=schema.project_id,
            procedure_name="ReconcileOrders",
            definition=WRAPPED_PROCEDURE,
        )
    )
    await test_session.commit()

    result = await make_service(test_session).detect_candidates(schema.project_id)

    assert result.procedures_analyzed == 1
    assert result.procedures_failed == []
    assert result.sp_analysis_degraded is False
    by_column = {c.source_column_name: c for c in result.candidates}
    assert set(by_column) == {"order_id", "customer_id"}
    for candidate in by_column.values():
        assert candidate.discovery_method == DiscoveryMethod.CORROBORATED
        assert candidate.confidence_score == Decimal("1.00")
        assert candidate.sp_evidence == ("dbo.ReconcileOrders",)


@pytest.mark.anyio
async def test_broken_procedure_does_not_abort_detection(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    test_session.add(
        StoredProcedure(
            project_id=schema.project_id,
            procedure_name="Broken",
            definition="SELECT * FROM Orders o JOIN Customers c ON (o.id = ",
        )
    )
    await test_session.commit()

    result = await make_service(test_session).detect_candidates(schema.project_id)

    assert result.procedures_failed == ["dbo.Broken"]
    assert len(result.candidates) == 2


@pytest.mark.anyio
async def test_physical_foreign_keys_are_excluded(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    test_session.add(
        PhysicalForeignKey(
            project_id=schema.project_id,
            constraint_name="FK_OrderLines_Orders",
            source_table_id=schema.lines_id,
            source_column_id=schema.lines_order,
            target_table_id=schema.orders_id,
            target_column_id=schema.orders_pk,
            on_delete="CASCADE",
        )
    )
    await test_session.commit()
    service = make_service(test_session)

    result = await service.detect_candidates(schema.project_id)

    assert [c.source_column_name for c in result.candidates] == ["customer_id"]
    assert result.excluded_count == 1

    physical = await service.list_physical_fks_for_table(schema.project_id, schema.orders_id)
    assert len(physical) == 1
    assert physical[0].source_table_name == "OrderLines"
    assert physical[0].target_column_name == "id"
    assert physical[0].on_delete == "CASCADE"


@pytest.mark.anyio
async def test_rejected_candidate_resurfaces_only_with_higher_score(
    test_session: AsyncSession,
) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)
    await service.detect_and_persist_candidates(schema.project_id)

    views = await service.list_for_table(schema.project_id, schema.customers_id)
    rejected = await service.reject(schema.project_id, views[0].id, "alice", "not a real link")
    assert rejected.status == "REJECTED"

    preview = await service.detect_candidates(schema.project_id)
    assert [c.source_column_name for c in preview.candidates] == ["order_id"]

    same_score = await service.detect_and_persist_candidates(schema.project_id)
    assert same_score.resurfaced == 0

    test_session.add(
        StoredProcedure(
            project_id=schema.project_id,
            procedure_name="GetCustomerOrders",
            definition=JOIN_PROCEDURE,
        )
    )
    await test_session.flush()

    higher_score = await service.detect_and_persist_candidates(schema.project_id)
    assert higher_score.resurfaced == 1

    test_session.expire_all()
    view = await service.get_logical_fk(schema.project_id, views[0].id)
    assert view.status == "SUGGESTED"
    assert view.confirmed_by is None
    assert view.confidence_score == Decimal("1.00")


@pytest.mark.anyio
async def test_confirmed_rows_are_never_touched_by_detection(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)
    await service.detect_and_persist_candidates(schema.project_id)
    views = await service.list_for_table(schema.project_id, schema.customers_id)

    await service.confirm(schema.project_id, views[0].id, "alice")
    summary = await service.detect_and_persist_candidates(schema.project_id)

    assert summary.candidate_count == 1
    assert (summary.inserted, summary.refreshed) == (0, 1)
    assert await rows_by_status(test_session, schema.project_id) == {
        "CONFIRMED": 1,
        "SUGGESTED": 1,
    }


@pytest.mark.anyio
async def test_confirm_feeds_dependency_graph(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)
    await service.detect_and_persist_candidates(schema.project_id)
    views = await service.list_for_table(schema.project_id, schema.customers_id)

    confirmed = await service.confirm(schema.project_id, views[0].id, "alice", "checked")

    assert confirmed.status == "CONFIRMED"
    assert confirmed.confirmed_by == "alice"
    assert confirmed.notes == "checked"
    result = await test_session.execute(select(Dependency))
    dependency = result.scalar_one()
    assert (dependency.source_id, dependency.target_id) == (schema.orders_id, schema.customers_id)
    assert dependency.dependency_type == "LOGICAL_FK"
    assert dependency.confidence_score == Decimal("0.70")


@pytest.mark.anyio
async def test_dependency_feed_failure_keeps_the_record(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    writer = MagicMock()
    writer.add_dependency = AsyncMock(side_effect=RuntimeError("graph unavailable"))
    service = make_service(test_session, dependency_writer=writer)

    view = await service.create_manual(
        project_id=schema.project_id,
        source_table_id=schema.lines_id,
        source_column_ids=[schema.lines_order],
        target_table_id=schema.orders_id,
        target_column_ids=[schema.orders_pk],
        user_id="bob",
    )

    writer.add_dependency.assert_awaited_once()
    assert view.status == "CONFIRMED"
    assert await rows_by_status(test_session, schema.project_id) == {"CONFIRMED": 1}


@pytest.mark.anyio
async def test_create_manual(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)

    view = await service.create_manual(
        project_id=schema.project_id,
        source_table_id=schema.lines_id,
        source_column_ids=[schema.lines_order],
        target_table_id=schema.orders_id,
        target_column_ids=[schema.orders_pk],
        user_id="bob",
        notes="documented in wiki",
    )

    assert view.discovery_method == DiscoveryMethod.MANUAL
    assert view.confidence_score == Decimal("1.00")
    assert view.status == "CONFIRMED"
    assert view.created_by == "bob"
    assert view.confirmed_by == "bob"
    assert view.source_column_names == ["order_id"]
    assert view.target_table_name == "Orders"

    with pytest.raises(LogicalFkConflictError):
        await service.create_manual(
            project_id=schema.project_id,
            source_table_id=schema.lines_id,
            source_column_ids=[schema.lines_order],
            target_table_id=schema.orders_id,
            target_column_ids=[schema.orders_pk],
            user_id="bob",
        )

    # A confirmed manual FK hides the edge from later detection runs
    result = await service.detect_candidates(schema.project_id)
    assert [c.source_column_name for c in result.candidates] == ["customer_id"]


@pytest.mark.anyio
async def test_create_manual_promotes_rejected_mapping(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)
    await service.detect_and_persist_candidates(schema.project_id)
    suggested = await service.list_for_table(schema.project_id, schema.customers_id)
    await service.reject(schema.project_id, suggested[0].id, "alice")

    view = await service.create_manual(
        project_id=schema.project_id,
        source_table_id=schema.orders_id,
        source_column_ids=[schema.orders_customer],
        target_table_id=schema.customers_id,
        target_column_ids=[schema.customers_pk],
        user_id="bob",
        notes="confirmed with the billing team",
    )

    assert view.id == suggested[0].id
    assert view.status == "CONFIRMED"
    assert view.discovery_method == DiscoveryMethod.MANUAL
    assert view.confidence_score == Decimal("1.00")
    assert view.confirmed_by == "bob"
    assert view.notes == "confirmed with the billing team"
    row = await test_session.get(LogicalForeignKey, view.id)
    assert row.rejected_score is None
    assert await rows_by_status(test_session, schema.project_id) == {
        "SUGGESTED": 1,
        "CONFIRMED": 1,
    }


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("source_ids", "target_ids"),
    [([], [1]), ([1, 2], [3]), ([5], [5])],
)
async def test_create_manual_validation(
    test_session: AsyncSession, source_ids: list[int], target_ids: list[int]
) -> None:
    service = make_service(test_session)

    with pytest.raises(LogicalFkValidationError):
        await service.create_manual(
            project_id=1,
            source_table_id=7,
            source_column_ids=source_ids,
            target_table_id=7,
            target_column_ids=target_ids,
            user_id="bob",
        )


@pytest.mark.anyio
async def test_unknown_ids_raise_not_found(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)

    with pytest.raises(LogicalFkNotFoundError):
        await service.confirm(schema.project_id, 999, "alice")
    with pytest.raises(LogicalFkNotFoundError):
        await service.reject(schema.project_id, 999, "alice")
    with pytest.raises(LogicalFkNotFoundError):
        await service.delete(schema.project_id, 999)
    with pytest.raises(ProjectNotFoundError):
        await service.get_detection_status(999)
    with pytest.raises(ProjectNotFoundError):
        await service.detect_and_persist_candidates(999)


@pytest.mark.anyio
async def test_delete(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)
    await service.detect_and_persist_candidates(schema.project_id)
    views = await service.list_logical_fks(schema.project_id)

    await service.delete(schema.project_id, views[0].id)

    assert len(await service.list_logical_fks(schema.project_id)) == 1


@pytest.mark.anyio
async def test_list_filters_by_status(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)
    await service.detect_and_persist_candidates(schema.project_id)

    assert len(await service.list_logical_fks(schema.project_id, "suggested")) == 2
    assert await service.list_logical_fks(schema.project_id, "CONFIRMED") == []
    with pytest.raises(LogicalFkValidationError):
        await service.list_logical_fks(schema.project_id, "maybe")


@pytest.mark.anyio
async def test_detection_skipped_when_project_locked(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)

    with (
        patch.object(
            service.repository, "lock_project_for_detection", AsyncMock(return_value=None)
        ),
        patch("schemalens_core.logical_fk.service.record_detection_run") as record,
    ):
        summary = await service.detect_and_persist_candidates(schema.project_id)

    assert summary.skipped
    record.assert_called_once_with(schema.project_id, "skipped")
    assert await rows_by_status(test_session, schema.project_id) == {}


@pytest.mark.anyio
async def test_cancellation_stops_before_writing(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(DetectionCancelledError):
        await make_service(test_session).detect_and_persist_candidates(
            schema.project_id, cancel_event=cancel
        )

    assert await rows_by_status(test_session, schema.project_id) == {}


@pytest.mark.anyio
async def test_staleness_follows_algorithm_version(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)

    assert (await service.get_detection_status(schema.project_id)).reason == "never_run"

    await service.detect_and_persist_candidates(schema.project_id)
    bumped = make_service(test_session, algorithm_version="9.9.9")

    status = await bumped.get_detection_status(schema.project_id)
    assert status.is_stale
    assert status.reason == "algorithm_changed"


@pytest.mark.anyio
async def test_persisted_candidates_tolerate_malformed_rows(test_session: AsyncSession) -> None:
    schema = await seed_schema(test_session)
    service = make_service(test_session)
    await service.detect_and_persist_candidates(schema.project_id)
    test_session.add(
        LogicalForeignKey(
            project_id=schema.project_id,
            source_table_id=schema.lines_id,
            source_column_ids="not-json",
            target_table_id=schema.customers_id,
            target_column_ids=f"[{schema.customers_pk}]",
            discovery_method=DiscoveryMethod.NAME_CONVENTION,
            confidence_score=Decimal("0.40"),
            status=LogicalFkStatus.SUGGESTED,
            discovery_methods='["NAME_CONVENTION", "GUESSWORK"]',
        )
    )
    await test_session.flush()

    candidates = await service.get_persisted_candidates(schema.project_id)

    assert len(candidates) == 3
    broken = candidates[-1]
    assert broken.source_column_id == INVALID_COLUMN_ID
    assert broken.source_column_name == f"Col_{INVALID_COLUMN_ID}"
    assert broken.target_column_name == "id"
    assert broken.discovery_methods == (DiscoveryMethod.NAME_CONVENTION,)
    assert candidates[0].source_data_type == "int"
