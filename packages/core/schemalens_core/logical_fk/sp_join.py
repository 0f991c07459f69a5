"""SP-join strategy: infer edges from JOIN conditions in stored procedures."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from schemalens_core.logical_fk.domain import (
    DetectionColumn,
    EdgeKey,
    JoinCondition,
    ProcedureSource,
    SpJoinEvidence,
    SpJoinResult,
)
from schemalens_core.logical_fk.index import SchemaIndex
from schemalens_core.logical_fk.naming import has_id_suffix
from schemalens_core.logical_fk.resolver import resolve_table_name

logger = logging.getLogger(__name__)

JoinExtractor = Callable[[str], list[JoinCondition]]


def infer_direction(
    left: DetectionColumn, right: DetectionColumn
) -> tuple[DetectionColumn, DetectionColumn]:
    """Return ``(source, target)`` for a joined column pair.

    A lone primary key is the target. Otherwise the side whose name ends in
    ``Id`` is the source; when both or neither do, the left side is.
    """
    if left.is_primary_key != right.is_primary_key:
        return (right, left) if left.is_primary_key else (left, right)
    if has_id_suffix(right.column_name) and not has_id_suffix(left.column_name):
        return right, left
    return left, right


def _resolve_condition(
    condition: JoinCondition, index: SchemaIndex
) -> tuple[DetectionColumn, DetectionColumn] | None:
    left_table_id = resolve_table_name(condition.left_table, index.table_ids)
    right_table_id = resolve_table_name(condition.right_table, index.table_ids)
    if left_table_id is None or right_table_id is None or left_table_id == right_table_id:
        return None

    left = index.find_column(left_table_id, condition.left_column)
    right = index.find_column(right_table_id, condition.right_column)
    if left is None or right is None:
        return None
    return infer_direction(left, right)


def detect_sp_join_candidates(
    index: SchemaIndex,
    procedures: Iterable[ProcedureSource],
    extractor: JoinExtractor,
) -> SpJoinResult:
    """Collect edge evidence from every procedure with a definition.

    A procedure whose source cannot be parsed is logged and skipped; the
    remaining procedures are still analyzed.
    """
    result = SpJoinResult()

    for procedure in procedures:
        if not procedure.definition or not procedure.definition.strip():
            continue
        try:
            conditions = extractor(procedure.definition)
        except Exception as e:
            logger.warning("Failed to analyze procedure %s: %s", procedure.name, e)
            result.procedures_failed.append(procedure.name)
            continue

        result.procedures_analyzed += 1
        for condition in conditions:
            pair = _resolve_condition(condition, index)
            if pair is None:
                continue
            source, target = pair
            key = EdgeKey.between(source, target)
            evidence = result.evidence.get(key)
            if evidence is None:
                evidence = SpJoinEvidence(key=key, source=source, target=target)
                result.evidence[key] = evidence
            evidence.procedures.add(procedure.name)

    return result
