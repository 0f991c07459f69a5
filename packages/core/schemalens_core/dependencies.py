"""Writer for the impact-analysis dependency graph."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import exists, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from schemalens_core.models import Dependency

logger = logging.getLogger(__name__)

NODE_TABLE = "TABLE"
DEPENDENCY_LOGICAL_FK = "LOGICAL_FK"

_DEP = Dependency.__table__.c


class DependencyGraphWriter:
    """Adds table-to-table edges to the dependency graph."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add_dependency(
        self,
        project_id: int,
        source_table_id: int,
        target_table_id: int,
        confidence: Decimal,
        dependency_type: str = DEPENDENCY_LOGICAL_FK,
    ) -> None:
        """Insert the edge if absent, otherwise update its confidence."""
        match = (
            Dependency.project_id == project_id,
            Dependency.source_type == NODE_TABLE,
            Dependency.source_id == source_table_id,
            Dependency.target_type == NODE_TABLE,
            Dependency.target_id == target_table_id,
            Dependency.dependency_type == dependency_type,
        )
        insert_stmt = Dependency.__table__.insert().from_select(
            [
                "project_id",
                "source_type",
                "source_id",
                "target_type",
                "target_id",
                "dependency_type",
                "confidence_score",
            ],
            select(
                literal(project_id, type_=_DEP.project_id.type),
                literal(NODE_TABLE, type_=_DEP.source_type.type),
                literal(source_table_id, type_=_DEP.source_id.type),
                literal(NODE_TABLE, type_=_DEP.target_type.type),
                literal(target_table_id, type_=_DEP.target_id.type),
                literal(dependency_type, type_=_DEP.dependency_type.type),
                literal(confidence, type_=_DEP.confidence_score.type),
            ).where(~exists(select(Dependency.id).where(*match))),
        )
        result = await self.session.execute(insert_stmt)
        if not result.rowcount:
            await self.session.execute(
                update(Dependency)
                .where(*match)
                .values(confidence_score=confidence)
                .execution_options(synchronize_session=False)
            )
        logger.info(
            "Recorded %s dependency %s -> %s in project %s",
            dependency_type,
            source_table_id,
            target_table_id,
            project_id,
        )
