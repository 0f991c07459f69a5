"""Scoring constants for logical foreign key detection.

Every weight and cap can be overridden with a ``LOGICAL_FK_`` prefixed
environment variable, e.g. ``LOGICAL_FK_SP_ONLY_CAP=0.80``.
"""

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DetectionConfig(BaseSettings):
    """Weights, bonuses and caps used by the confidence calculator."""

    model_config = SettingsConfigDict(
        env_prefix="LOGICAL_FK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Base scores
    naming_base_score: Decimal = Field(
        default=Decimal("0.60"),
        description="Base score for an edge found by naming convention",
    )
    sp_join_base_score: Decimal = Field(
        default=Decimal("0.50"),
        description="Base score for an edge found in stored procedure joins",
    )

    # Bonuses and penalties
    naming_bonus: Decimal = Field(
        default=Decimal("0.15"),
        description="Bonus when SP join evidence exists and the source column ends in Id",
    )
    type_match_bonus: Decimal = Field(default=Decimal("0.10"))
    type_mismatch_penalty: Decimal = Field(default=Decimal("-0.10"))
    repetition_bonus_per_sp: Decimal = Field(
        default=Decimal("0.05"),
        description="Bonus per additional procedure observing the same join",
    )
    repetition_bonus_cap: Decimal = Field(default=Decimal("0.20"))
    corroboration_bonus: Decimal = Field(
        default=Decimal("0.25"),
        description="Bonus when naming and SP join strategies agree",
    )

    # Caps
    sp_only_cap: Decimal = Field(default=Decimal("0.85"))
    naming_only_cap: Decimal = Field(default=Decimal("0.80"))
    type_mismatch_cap: Decimal = Field(
        default=Decimal("0.55"),
        description="Ceiling for uncorroborated edges whose data types differ",
    )


_config: DetectionConfig | None = None


def get_detection_config() -> DetectionConfig:
    """Get cached detection config instance."""
    global _config
    if _config is None:
        _config = DetectionConfig()
    return _config
