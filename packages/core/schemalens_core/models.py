"""Database models."""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schemalens_core.database import Base


class LogicalFkStatus(enum.Enum):
    """Review status of a logical foreign key."""

    SUGGESTED = "SUGGESTED"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


class DiscoveryMethod(enum.Enum):
    """How a persisted logical foreign key was discovered."""

    MANUAL = "MANUAL"
    NAME_CONVENTION = "NAME_CONVENTION"
    SP_JOIN = "SP_JOIN"
    CORROBORATED = "CORROBORATED"


class Project(Base):
    """A user database mirrored into the metadata store."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_detection_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    detection_algorithm_version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    tables: Mapped[list["DbTable"]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )


class DbTable(Base):
    """A table captured by schema sync."""

    __tablename__ = "db_tables"
    __table_args__ = (UniqueConstraint("project_id", "schema_name", "table_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    schema_name: Mapped[str] = mapped_column(String(128), nullable=False, default="dbo")
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Relationships
    project: Mapped["Project"] = relationship(back_populates="tables")
    columns: Mapped[list["DbColumn"]] = relationship(
        back_populates="table", cascade="all, delete-orphan"
    )


class DbColumn(Base):
    """A column captured by schema sync, with key flags."""

    __tablename__ = "db_columns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("db_tables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    column_name: Mapped[str] = mapped_column(String(255), nullable=False)
    data_type: Mapped[str] = mapped_column(String(128), nullable=False)
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_primary_key: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_foreign_key: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_unique: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    table: Mapped["DbTable"] = relationship(back_populates="columns")


class PhysicalForeignKey(Base):
    """One column pair of a declared foreign key constraint.

    Composite constraints are stored as several rows sharing a constraint name,
    ordered by ``ordinal``.
    """

    __tablename__ = "physical_foreign_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    constraint_name: Mapped[str] = mapped_column(String(255), nullable=False)
    source_table_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("db_tables.id", ondelete="CASCADE"), nullable=False
    )
    source_column_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("db_columns.id", ondelete="CASCADE"), nullable=False
    )
    target_table_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("db_tables.id", ondelete="CASCADE"), nullable=False
    )
    target_column_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("db_columns.id", ondelete="CASCADE"), nullable=False
    )
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    on_delete: Mapped[str | None] = mapped_column(String(32), nullable=True)
    on_update: Mapped[str | None] = mapped_column(String(32), nullable=True)


class StoredProcedure(Base):
    """A stored procedure and its source text."""

    __tablename__ = "stored_procedures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    schema_name: Mapped[str] = mapped_column(String(128), nullable=False, default="dbo")
    procedure_name: Mapped[str] = mapped_column(String(255), nullable=False)
    definition: Mapped[str | None] = mapped_column(Text, nullable=True)


class LogicalForeignKey(Base):
    """An inferred or manually declared relationship between columns."""

    __tablename__ = "logical_foreign_keys"
    __table_args__ = (
        UniqueConstraint(
            "project_id",
            "source_table_id",
            "source_column_ids",
            "target_table_id",
            "target_column_ids",
            name="uq_logical_fk_mapping",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_table_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("db_tables.id", ondelete="CASCADE"), nullable=False
    )
    # JSON-encoded ordered column id list, e.g. "[12]"
    source_column_ids: Mapped[str] = mapped_column(String(512), nullable=False)
    target_table_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("db_tables.id", ondelete="CASCADE"), nullable=False
    )
    target_column_ids: Mapped[str] = mapped_column(String(512), nullable=False)
    discovery_method: Mapped[DiscoveryMethod] = mapped_column(
        Enum(
            DiscoveryMethod,
            name="logical_fk_discovery_method",
            native_enum=False,
            length=32,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    confidence_score: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    status: Mapped[LogicalFkStatus] = mapped_column(
        Enum(
            LogicalFkStatus,
            name="logical_fk_status",
            native_enum=False,
            length=16,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=LogicalFkStatus.SUGGESTED,
    )
    detection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # JSON-encoded list such as '["NAME_CONVENTION", "SP_JOIN"]'
    discovery_methods: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejected_score: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    confirmed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Dependency(Base):
    """Edge in the impact-analysis dependency graph."""

    __tablename__ = "dependencies"
    __table_args__ = (
        UniqueConstraint(
            "project_id",
            "source_type",
            "source_id",
            "target_type",
            "target_id",
            "dependency_type",
            name="uq_dependency_edge",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[int] = mapped_column(Integer, nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)
    dependency_type: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence_score: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
