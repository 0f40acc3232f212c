"""Result types produced by the factor calculator."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from app.services.quality.decimals import fmt
from app.services.quality.humidity import HumidityWaste

SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return fmt(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class TierDetail:
    from_excess: Decimal
    to_excess: Optional[Decimal]
    rate: Decimal
    applied_excess: Decimal
    discount: Decimal

    def to_dict(self) -> dict:
        return {
            "from_excess": fmt(self.from_excess),
            "to_excess": fmt(self.to_excess),
            "rate": fmt(self.rate),
            "applied_excess": fmt(self.applied_excess),
            "discount": fmt(self.discount),
        }


@dataclass(frozen=True)
class DiscountDetail:
    """One itemized discount line."""

    parameter: str
    concept: str
    value: Decimal
    tolerance: Decimal
    excess: Decimal
    rate: Decimal
    discount: Decimal
    tiers: tuple[TierDetail, ...] = ()
    calculation: str = ""

    def to_dict(self) -> dict:
        return {
            "parameter": self.parameter,
            "concept": self.concept,
            "value": fmt(self.value),
            "tolerance": fmt(self.tolerance),
            "excess": fmt(self.excess),
            "rate": fmt(self.rate),
            "discount": fmt(self.discount),
            "tiers": [t.to_dict() for t in self.tiers],
            "calculation": self.calculation,
        }


@dataclass(frozen=True)
class BonusDetail:
    """One itemized bonus line."""

    parameter: str
    concept: str
    value: Decimal
    base: Decimal
    bonus: Decimal

    def to_dict(self) -> dict:
        return {
            "parameter": self.parameter,
            "concept": self.concept,
            "value": fmt(self.value),
            "base": fmt(self.base),
            "bonus": fmt(self.bonus),
        }


@dataclass(frozen=True)
class QualityWarning:
    type: str
    severity: str
    message: str
    parameter: Optional[str] = None
    value: Optional[Decimal] = None
    threshold: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity,
            "parameter": self.parameter,
            "message": self.message,
            "value": fmt(self.value),
            "threshold": fmt(self.threshold),
        }


@dataclass(frozen=True)
class PriceAdjustment:
    """Price and amounts after applying the final factor."""

    base_price_per_ton: Decimal
    adjusted_price_per_ton: Decimal
    adjustment_percent: Decimal
    gross_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "base_price_per_ton": fmt(self.base_price_per_ton),
            "adjusted_price_per_ton": fmt(self.adjusted_price_per_ton),
            "adjustment_percent": fmt(self.adjustment_percent),
            "gross_amount": fmt(self.gross_amount),
            "net_amount": fmt(self.net_amount),
        }


@dataclass(frozen=True)
class CalculationStep:
    """Audit trail entry: what was computed, how, from what."""

    step: int
    description: str
    formula: str
    input: dict
    output: dict

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "description": self.description,
            "formula": self.formula,
            "input": _jsonable(self.input),
            "output": _jsonable(self.output),
        }


@dataclass
class QualityResult:
    """Full outcome of one factor calculation.

    ``grade`` is None when no out-of-tolerance parameter has a grading
    scale.  ``grade_factor`` is the points the grade added (or removed);
    it is already itemized in ``bonuses`` or ``discounts``.  ``out_of_standard`` means at least one hard limit (humidity
    included) was breached.
    """

    grain_type: str
    base_factor: Decimal
    final_factor: Decimal
    total_bonus: Decimal
    total_discount: Decimal
    humidity_factor_discount: Decimal
    humidity_waste: HumidityWaste
    calculation_version: str
    grade: Optional[str] = None
    grade_factor: Decimal = Decimal("0")
    grade_by_parameter: dict = field(default_factory=dict)
    worst_parameter: Optional[str] = None
    bonuses: list = field(default_factory=list)
    discounts: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    price_adjustment: Optional[PriceAdjustment] = None
    out_of_standard: bool = False
    out_of_tolerance: bool = False
    calculation_steps: list = field(default_factory=list)

    def to_dict(self) -> dict:
        """JSON-safe form; Decimals are rendered as plain strings."""
        return {
            "grain_type": self.grain_type,
            "base_factor": fmt(self.base_factor),
            "final_factor": fmt(self.final_factor),
            "grade": self.grade,
            "grade_factor": fmt(self.grade_factor),
            "grade_by_parameter": dict(self.grade_by_parameter),
            "worst_parameter": self.worst_parameter,
            "bonuses": [b.to_dict() for b in self.bonuses],
            "total_bonus": fmt(self.total_bonus),
            "discounts": [d.to_dict() for d in self.discounts],
            "total_discount": fmt(self.total_discount),
            "humidity_factor_discount": fmt(self.humidity_factor_discount),
            "humidity_waste": self.humidity_waste.to_dict(),
            "price_adjustment": (
                self.price_adjustment.to_dict() if self.price_adjustment else None
            ),
            "warnings": [w.to_dict() for w in self.warnings],
            "out_of_standard": self.out_of_standard,
            "out_of_tolerance": self.out_of_tolerance,
            "calculation_steps": [s.to_dict() for s in self.calculation_steps],
            "calculation_version": self.calculation_version,
        }
