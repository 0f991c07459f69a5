"""Signal-based confidence scoring with layered caps.

Layer 1: strategy caps (SP-join only, naming only). Corroborated edges are exempt.
Layer 2: safety cap for a type mismatch without corroboration.
Layer 3: absolute bounds [0, 1].
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from schemalens_core.logical_fk.config import DetectionConfig, get_detection_config
from schemalens_core.logical_fk.domain import ConfidenceBand, ConfidenceResult, DetectionSignals

SP_ONLY_CAP = "SP_ONLY_CAP"
NAMING_ONLY_CAP = "NAMING_ONLY_CAP"
TYPE_MISMATCH_CAP = "TYPE_MISMATCH_CAP"

_ZERO = Decimal("0")
_ONE = Decimal("1")
_CENT = Decimal("0.01")

_BAND_THRESHOLDS = (
    (Decimal("0.95"), ConfidenceBand.HIGHLY_CONFIDENT),
    (Decimal("0.85"), ConfidenceBand.VERY_LIKELY),
    (Decimal("0.70"), ConfidenceBand.LIKELY),
    (Decimal("0.55"), ConfidenceBand.POSSIBLE),
)


def _is_sp_only(signals: DetectionSignals) -> bool:
    return signals.sp_join_detected and not signals.naming_detected


def _is_naming_only(signals: DetectionSignals) -> bool:
    return signals.naming_detected and not signals.sp_join_detected


def _mismatch_uncorroborated(signals: DetectionSignals) -> bool:
    return not signals.type_match and not signals.corroborated


def _apply_caps(raw: Decimal, signals: DetectionSignals, config: DetectionConfig) -> Decimal:
    confidence = raw
    if _is_sp_only(signals):
        confidence = min(config.sp_only_cap, confidence)
    elif _is_naming_only(signals):
        confidence = min(config.naming_only_cap, confidence)

    if _mismatch_uncorroborated(signals):
        confidence = min(config.type_mismatch_cap, confidence)

    return max(_ZERO, min(_ONE, confidence))


def _caps_applied(
    raw: Decimal, final: Decimal, signals: DetectionSignals, config: DetectionConfig
) -> tuple[str, ...]:
    if raw <= final:
        return ()
    caps = []
    if _is_sp_only(signals) and raw > config.sp_only_cap:
        caps.append(SP_ONLY_CAP)
    if _is_naming_only(signals) and raw > config.naming_only_cap:
        caps.append(NAMING_ONLY_CAP)
    if _mismatch_uncorroborated(signals) and raw > config.type_mismatch_cap:
        caps.append(TYPE_MISMATCH_CAP)
    return tuple(caps)


def calculate_confidence(
    signals: DetectionSignals,
    config: DetectionConfig | None = None,
) -> ConfidenceResult:
    """Score one edge from its signal vector.

    Args:
        signals: Merged evidence for the edge
        config: Scoring constants; defaults to the cached environment config

    Returns:
        ConfidenceResult with every component, the raw sum, the capped and
        rounded final score, and the names of the caps that lowered it
    """
    config = config or get_detection_config()

    if signals.corroborated:
        base = max(config.naming_base_score, config.sp_join_base_score)
    elif signals.sp_join_detected:
        base = config.sp_join_base_score
    else:
        base = config.naming_base_score

    naming_bonus = (
        config.naming_bonus if signals.sp_join_detected and signals.has_id_suffix else _ZERO
    )
    type_adjustment = config.type_match_bonus if signals.type_match else config.type_mismatch_penalty

    repetition_bonus = _ZERO
    if signals.sp_join_detected and signals.sp_count > 1:
        repetition_bonus = min(
            config.repetition_bonus_cap,
            (signals.sp_count - 1) * config.repetition_bonus_per_sp,
        )

    corroboration_bonus = config.corroboration_bonus if signals.corroborated else _ZERO

    raw = base + naming_bonus + type_adjustment + repetition_bonus + corroboration_bonus
    final = _apply_caps(raw, signals, config).quantize(_CENT, rounding=ROUND_HALF_UP)

    return ConfidenceResult(
        base_score=base,
        naming_bonus=naming_bonus,
        type_adjustment=type_adjustment,
        repetition_bonus=repetition_bonus,
        corroboration_bonus=corroboration_bonus,
        raw_confidence=raw,
        final_confidence=final,
        caps_applied=_caps_applied(raw, final, signals, config),
    )


def classify_band(score: Decimal) -> ConfidenceBand:
    """Map a score to its band. Lower bounds are inclusive."""
    for threshold, band in _BAND_THRESHOLDS:
        if score >= threshold:
            return band
    return ConfidenceBand.LOW
