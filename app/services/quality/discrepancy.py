"""Compare calculated factors against the factor printed on a settlement."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from app.core.config import Settings
from app.services.quality.decimals import fmt, round_half_up, to_decimal

STATUS_OK = "OK"
STATUS_WARNING = "WARNING"
STATUS_CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class DiscrepancyThresholds:
    """Absolute factor-point differences that trigger each status."""

    warning: Decimal
    critical: Decimal

    @classmethod
    def from_settings(cls, config: Settings) -> "DiscrepancyThresholds":
        return cls(
            warning=to_decimal(config.discrepancy_warning_threshold),
            critical=to_decimal(config.discrepancy_critical_threshold),
        )


@dataclass(frozen=True)
class DiscrepancyCheck:
    original_factor: Decimal
    calculated_factor: Decimal
    difference: Decimal
    has_discrepancy: bool
    status: str

    def to_dict(self) -> dict:
        return {
            "original_factor": fmt(self.original_factor),
            "calculated_factor": fmt(self.calculated_factor),
            "difference": fmt(self.difference),
            "has_discrepancy": self.has_discrepancy,
            "status": self.status,
        }


def detect_discrepancy(
    original_factor: Any,
    calculated_factor: Any,
    thresholds: DiscrepancyThresholds,
) -> Optional[DiscrepancyCheck]:
    """Classify the gap between an original and a calculated factor.

    ``difference`` is ``calculated - original``.  Comparisons are strict:
    a gap exactly equal to a threshold does not reach that status.

    Returns:
        None when there is no original factor to compare against.
    """
    original = to_decimal(original_factor)
    if original is None:
        return None
    calculated = to_decimal(calculated_factor)

    # Thresholds apply to the exact gap; only the reported difference is rounded
    gap = abs(calculated - original)
    if gap > thresholds.critical:
        status = STATUS_CRITICAL
    elif gap > thresholds.warning:
        status = STATUS_WARNING
    else:
        status = STATUS_OK

    return DiscrepancyCheck(
        original_factor=original,
        calculated_factor=calculated,
        difference=round_half_up(calculated - original),
        has_discrepancy=gap > thresholds.warning,
        status=status,
    )
