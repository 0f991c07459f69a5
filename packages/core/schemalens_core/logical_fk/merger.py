"""Merge naming and SP-join evidence into scored candidates."""

from __future__ import annotations

from collections.abc import Collection

from schemalens_core.logical_fk.compatibility import are_compatible
from schemalens_core.logical_fk.config import DetectionConfig
from schemalens_core.logical_fk.confidence import calculate_confidence, classify_band
from schemalens_core.logical_fk.domain import (
    ConfidenceResult,
    DetectionColumn,
    DetectionSignals,
    EdgeKey,
    LogicalFkCandidate,
    NamingResult,
    SpJoinResult,
)
from schemalens_core.logical_fk.naming import has_id_suffix
from schemalens_core.models import DiscoveryMethod


def build_reason(
    source: DetectionColumn,
    target: DetectionColumn,
    signals: DetectionSignals,
    confidence: ConfidenceResult,
    procedures: list[str],
) -> str:
    """Human-readable explanation of how a candidate was scored."""
    parts = []
    if signals.naming_detected:
        parts.append(
            f"Column '{source.column_name}' follows naming convention for "
            f"'{target.table_name}.{target.column_name}'"
        )
    if signals.sp_join_detected:
        parts.append(f"Joined in {signals.sp_count} stored procedure(s): {', '.join(procedures)}")
    if signals.corroborated:
        parts.append("Corroborated by both strategies")
    if signals.type_match:
        parts.append(f"Compatible data types ({source.data_type}/{target.data_type})")
    else:
        parts.append(f"Data type mismatch ({source.data_type}/{target.data_type})")
    if confidence.caps_applied:
        parts.append(f"Capped by {', '.join(confidence.caps_applied)}")
    return ". ".join(parts) + "."


def _sort_key(candidate: LogicalFkCandidate):
    return (
        -candidate.confidence_score,
        candidate.source_table_name.lower(),
        candidate.source_column_name.lower(),
        candidate.target_table_name.lower(),
        candidate.target_column_name.lower(),
        candidate.key,
    )


def merge_evidence(
    naming: NamingResult,
    sp_join: SpJoinResult,
    excluded_keys: Collection[str],
    config: DetectionConfig | None = None,
) -> tuple[list[LogicalFkCandidate], int]:
    """Union both strategies' edges, drop known ones, score the rest.

    Args:
        naming: Naming-convention edges after ambiguity resolution
        sp_join: SP-join evidence
        excluded_keys: Canonical key strings of existing physical and logical FKs
        config: Scoring constants

    Returns:
        (candidates sorted by confidence descending, number of excluded edges)
    """
    candidates = []
    excluded = 0

    for key in sorted(set(naming.edges) | set(sp_join.evidence)):
        if str(key) in excluded_keys:
            excluded += 1
            continue

        naming_edge = naming.edges.get(key)
        evidence = sp_join.evidence.get(key)
        edge = naming_edge or evidence
        source, target = edge.source, edge.target

        procedures = sorted(evidence.procedures) if evidence else []
        signals = DetectionSignals(
            naming_detected=naming_edge is not None,
            sp_join_detected=evidence is not None,
            type_match=are_compatible(source.data_type, target.data_type),
            has_id_suffix=has_id_suffix(source.column_name),
            sp_count=len(procedures),
        )
        confidence = calculate_confidence(signals, config)

        methods = []
        if signals.naming_detected:
            methods.append(DiscoveryMethod.NAME_CONVENTION)
        if signals.sp_join_detected:
            methods.append(DiscoveryMethod.SP_JOIN)

        candidates.append(
            LogicalFkCandidate(
                source_table_id=source.table_id,
                source_table_name=source.table_name,
                source_column_id=source.column_id,
                source_column_name=source.column_name,
                source_data_type=source.data_type,
                target_table_id=target.table_id,
                target_table_name=target.table_name,
                target_column_id=target.column_id,
                target_column_name=target.column_name,
                target_data_type=target.data_type,
                confidence_score=confidence.final_confidence,
                confidence_band=classify_band(confidence.final_confidence),
                reason=build_reason(source, target, signals, confidence, procedures),
                is_ambiguous=naming_edge.is_ambiguous if naming_edge else False,
                discovery_methods=tuple(methods),
                sp_evidence=tuple(procedures),
                match_count=len(procedures) + (1 if signals.naming_detected else 0),
            )
        )

    candidates.sort(key=_sort_key)
    return candidates, excluded
