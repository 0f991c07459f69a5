"""Naming-convention strategy: ``customer_id`` points at ``Customers.id``."""

from __future__ import annotations

import logging
import re
from collections.abc import Collection

from schemalens_core.logical_fk.domain import (
    EDGE_ARROW,
    AmbiguityGroup,
    DetectionColumn,
    EdgeKey,
    NamingEdge,
    NamingResult,
)
from schemalens_core.logical_fk.index import SchemaIndex
from schemalens_core.logical_fk.resolver import try_resolve_table

logger = logging.getLogger(__name__)

ID_SUFFIX_PATTERN = re.compile(r"^(.+?)(?:_?[Ii][Dd])$")

TIER_PRIMARY_KEY = 2
TIER_UNIQUE = 1


def id_prefix(column_name: str) -> str | None:
    """Return the part before an ``_id``/``Id``/``ID`` suffix, if any."""
    match = ID_SUFFIX_PATTERN.match(column_name)
    return match.group(1) if match else None


def has_id_suffix(column_name: str) -> bool:
    return ID_SUFFIX_PATTERN.match(column_name) is not None


def structural_tier(column: DetectionColumn) -> int:
    if column.is_primary_key:
        return TIER_PRIMARY_KEY
    if column.is_unique:
        return TIER_UNIQUE
    return 0


def naming_score(candidate_name: str, prefix: str) -> int:
    """Naming affinity of a target key column for a source prefix.

    3 for a bare ``id``, 2 for ``<prefix>id`` or ``<prefix>_id``, 1 for any
    other name ending in ``id``, 0 when unrelated.
    """
    name = candidate_name.lower()
    prefix = prefix.lower()
    if name == "id":
        return 3
    if name in (prefix + "id", prefix + "_id"):
        return 2
    if name.endswith("id"):
        return 1
    return 0


def ambiguity_group_key(source: DetectionColumn, target_table_id: int) -> str:
    return f"{source.table_id}:{source.column_id}{EDGE_ARROW}{target_table_id}"


def _best_targets(source: DetectionColumn, prefix: str, targets: list[DetectionColumn]):
    keyed = [c for c in targets if c.is_primary_key or c.is_unique]
    if not keyed:
        return []

    max_tier = max(structural_tier(c) for c in keyed)
    tier_survivors = [c for c in keyed if structural_tier(c) == max_tier]

    scored = [(naming_score(c.column_name, prefix), c) for c in tier_survivors]
    scored = [(score, c) for score, c in scored if score > 0]
    if not scored:
        return []

    max_score = max(score for score, _ in scored)
    return [c for score, c in scored if score == max_score]


def detect_naming_candidates(index: SchemaIndex) -> NamingResult:
    """Scan every non-key ``…Id`` column and propose edges to key columns.

    Ties after the tier and naming filters are kept as ambiguous edges and
    recorded in an AmbiguityGroup.
    """
    result = NamingResult()

    for column in index.columns:
        if column.is_primary_key or column.is_foreign_key:
            continue
        prefix = id_prefix(column.column_name)
        if prefix is None:
            continue

        target_table_id = try_resolve_table(prefix, index.table_ids)
        if target_table_id is None or target_table_id == column.table_id:
            continue

        winners = _best_targets(column, prefix, index.columns_of(target_table_id))
        if not winners:
            continue

        if len(winners) == 1:
            key = EdgeKey.between(column, winners[0])
            result.edges[key] = NamingEdge(key=key, source=column, target=winners[0])
            continue

        group = AmbiguityGroup(group_key=ambiguity_group_key(column, target_table_id))
        for target in winners:
            key = EdgeKey.between(column, target)
            result.edges[key] = NamingEdge(
                key=key,
                source=column,
                target=target,
                is_ambiguous=True,
                ambiguity_group=group.group_key,
            )
            group.members.append(key)
        result.ambiguity_groups.append(group)
        logger.debug(
            "Ambiguous naming match for %s.%s: %d tied targets",
            column.table_name,
            column.column_name,
            len(winners),
        )

    return result


def resolve_ambiguity(naming: NamingResult, corroborated_keys: Collection[EdgeKey]) -> NamingResult:
    """Use SP-join evidence to settle naming ties.

    A group with exactly one corroborated member keeps that member as an
    unambiguous edge and drops its siblings. Groups with zero or several
    corroborated members are left untouched.
    """
    edges = dict(naming.edges)
    remaining_groups = []

    for group in naming.ambiguity_groups:
        corroborated = [key for key in group.members if key in corroborated_keys]
        if len(corroborated) != 1:
            remaining_groups.append(group)
            continue

        winner = corroborated[0]
        for key in group.members:
            if key != winner:
                edges.pop(key, None)
        edge = edges[winner]
        edges[winner] = NamingEdge(key=winner, source=edge.source, target=edge.target)
        logger.debug("Resolved ambiguity group %s to %s", group.group_key, winner)

    return NamingResult(edges=edges, ambiguity_groups=remaining_groups)
