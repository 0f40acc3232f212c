"""Commercial factor calculator.

Turns one laboratory analysis into a ``QualityResult``:
  1. Start from a base factor of 100.
  2. Deduct the humidity discount (points above base humidity × ratio)
     and compute the drying waste.
  3. Deduct an itemized discount for every parameter beyond tolerance.
  4. Add the bonuses the grain's rules enumerate.
  5. Grade the lot; the grain's grade adjustment becomes one more bonus
     or discount line.
  6. Clamp to [0, 100] and round half-up to 2 decimals.
  7. Warn, and (optionally) adjust the price.

Every step is recorded in ``calculation_steps`` so a factor on a settlement
can be traced back to the figures that produced it.  Data problems never
raise; they become warnings on the result.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from app.core.config import Settings
from app.core.logging import get_logger
from app.services.quality.decimals import (
    HUNDRED,
    ZERO,
    clamp,
    round_half_up,
    to_decimal,
)
from app.services.quality.humidity import HumidityWaste, humidity_waste_for
from app.services.quality.result import (
    SEVERITY_CRITICAL,
    SEVERITY_WARNING,
    BonusDetail,
    CalculationStep,
    DiscountDetail,
    PriceAdjustment,
    QualityResult,
    QualityWarning,
    TierDetail,
)
from app.services.quality.rules import (
    ABOVE,
    BELOW,
    DEFAULT_RULE_SET,
    GRADE_G1,
    GRADE_G2,
    GRADE_G3,
    BonusRule,
    GrainRules,
    RuleSet,
    ToleranceRule,
)

logger = get_logger(__name__)

ENGINE_VERSION = "v3.0"

BASE_FACTOR = Decimal("100")
KG_PER_TON = Decimal("1000")

MEASURED_PARAMETERS = (
    "humidity",
    "foreign_matter",
    "damaged_grains",
    "hectoliter_weight",
    "protein",
    "broken_grains",
    "green_grains",
    "burnt_grains",
    "sprouted_grains",
    "pest_damaged_grains",
    "fat_content",
    "acidity",
)

# Hectoliter weight is kg/hl, everything else is a percentage
NON_PERCENT_PARAMETERS = frozenset({"hectoliter_weight"})

WARNING_MISSING_VALUE = "missing_value"
WARNING_INVALID_VALUE = "invalid_value"
WARNING_UNKNOWN_GRAIN = "unknown_grain_type"
WARNING_OUT_OF_TOLERANCE = "out_of_tolerance"
WARNING_OUT_OF_STANDARD = "out_of_standard"
WARNING_REQUIRES_DRYING = "requires_drying"

# Bonus/discount lines coming from the lot's grade rather than a measurement
GRADE_PARAMETER = "grade"

_GRADE_RANK = {GRADE_G1: 1, GRADE_G2: 2, GRADE_G3: 3}


class FactorCalculator:
    """Computes factor, grade, waste and price adjustment for an analysis."""

    def __init__(
        self,
        rule_set: RuleSet = DEFAULT_RULE_SET,
        default_humidity_discount_ratio: Decimal = Decimal("1.5"),
    ) -> None:
        self.rule_set = rule_set
        self.default_humidity_discount_ratio = to_decimal(
            default_humidity_discount_ratio
        )

    @classmethod
    def from_settings(
        cls, config: Settings, rule_set: RuleSet = DEFAULT_RULE_SET
    ) -> "FactorCalculator":
        return cls(
            rule_set=rule_set,
            default_humidity_discount_ratio=to_decimal(
                config.default_humidity_discount_ratio
            ),
        )

    @property
    def calculation_version(self) -> str:
        return f"{ENGINE_VERSION}/{self.rule_set.version}"

    # ── Public API ───────────────────────────────────────────────────

    def calculate(
        self,
        analysis: Any,
        grain_type: Any,
        quantity_kg: Any = None,
        base_price_per_ton: Any = None,
    ) -> QualityResult:
        """Calculate the commercial factor for one analysis.

        Args:
            analysis: Any object exposing the measured parameters as
                attributes (ORM row, dataclass, SimpleNamespace).
            grain_type: Grain type name; trade aliases are accepted.
            quantity_kg: Gross kilograms of the lot, for waste and amounts.
            base_price_per_ton: Contract price; enables price adjustment.

        Returns:
            A ``QualityResult``.  Never raises for data problems.
        """
        rules = self.rule_set.rules_for(grain_type)
        warnings: list[QualityWarning] = []
        steps: list[CalculationStep] = []

        if not self.rule_set.is_known(grain_type):
            warnings.append(
                QualityWarning(
                    type=WARNING_UNKNOWN_GRAIN,
                    severity=SEVERITY_WARNING,
                    message=f"No quality rules for grain type '{rules.grain_type}'",
                )
            )

        values = self._read_measurements(analysis, warnings)
        gross_kg = self._read_quantity(quantity_kg, warnings)

        # 1. Base factor
        self._step(
            steps,
            "Base factor",
            "factor = 100",
            {"grain_type": rules.grain_type},
            {"factor": BASE_FACTOR},
        )

        # 2. Humidity
        humidity = values["humidity"]
        waste = humidity_waste_for(rules, humidity, gross_kg)
        humidity_discount, ratio = self._humidity_discount(rules, humidity)
        self._check_humidity(rules, humidity, warnings)
        self._step(
            steps,
            "Humidity discount and drying waste",
            "discount = (humidity - base) × ratio; waste% from band table + handling",
            {
                "humidity": humidity,
                "base_humidity": rules.base_humidity,
                "ratio": ratio,
                "gross_kg": gross_kg,
            },
            {
                "humidity_factor_discount": humidity_discount,
                "waste_percent": waste.waste_percent,
                "waste_kg": waste.waste_kg,
                "handling_waste_percent": waste.handling_waste_percent,
                "total_waste_percent": waste.total_waste_percent,
                "net_quantity_kg": waste.net_quantity_kg,
            },
        )

        # 3. Discounts
        discounts = self._discounts(rules, values, warnings)
        self._step(
            steps,
            "Tolerance discounts",
            "Σ excess × rate (marginal per tier)",
            {d.parameter: d.value for d in discounts},
            {
                "discounts": {d.parameter: d.discount for d in discounts},
                "total_discount": sum((d.discount for d in discounts), ZERO),
            },
        )

        # 4. Bonuses
        bonuses = self._bonuses(rules, values)
        self._step(
            steps,
            "Bonuses",
            "Σ enumerated bonuses",
            {b.parameter: b.value for b in bonuses},
            {
                "bonuses": {b.parameter: b.bonus for b in bonuses},
                "total_bonus": sum((b.bonus for b in bonuses), ZERO),
            },
        )

        # 5. Grade
        out_of_tolerance_params = [d.parameter for d in discounts]
        out_of_tolerance = bool(discounts)
        grade_by_parameter = self._grades(rules, values)
        grade, worst_parameter = self._worst_grade(
            grade_by_parameter, out_of_tolerance_params
        )
        grade_factor = self._grade_factor(rules, grade)
        if grade_factor > ZERO:
            bonuses.append(self._grade_bonus(grade, grade_factor))
        elif grade_factor < ZERO:
            discounts.append(self._grade_discount(grade, grade_factor))
        self._step(
            steps,
            "Grade",
            "worst grade among out-of-tolerance parameters; adjustment per grade",
            {"grade_by_parameter": grade_by_parameter},
            {
                "grade": grade,
                "worst_parameter": worst_parameter,
                "grade_factor": grade_factor,
            },
        )

        # 6. Final factor
        total_bonus = sum((b.bonus for b in bonuses), ZERO)
        total_discount = sum((d.discount for d in discounts), ZERO)
        raw_factor = BASE_FACTOR + total_bonus - total_discount - humidity_discount
        final_factor = round_half_up(clamp(raw_factor))
        self._step(
            steps,
            "Final factor",
            "clamp(100 + bonus - discount - humidity, 0, 100)",
            {
                "total_bonus": total_bonus,
                "total_discount": total_discount,
                "humidity_factor_discount": humidity_discount,
            },
            {"raw_factor": raw_factor, "final_factor": final_factor},
        )

        # 7. Validation
        out_of_standard = any(w.type == WARNING_OUT_OF_STANDARD for w in warnings)
        self._step(
            steps,
            "Validation",
            "out_of_standard = any hard limit breached",
            {"warnings": len(warnings)},
            {"out_of_standard": out_of_standard, "out_of_tolerance": out_of_tolerance},
        )

        # 8. Price
        price_adjustment = None
        if base_price_per_ton is not None:
            price_adjustment = self._price_adjustment(
                final_factor, base_price_per_ton, gross_kg, waste, warnings
            )
            if price_adjustment is not None:
                self._step(
                    steps,
                    "Price adjustment",
                    "adjusted = base × factor / 100",
                    {"base_price_per_ton": price_adjustment.base_price_per_ton},
                    {
                        "adjusted_price_per_ton": price_adjustment.adjusted_price_per_ton,
                        "gross_amount": price_adjustment.gross_amount,
                        "net_amount": price_adjustment.net_amount,
                    },
                )

        logger.debug(
            "Factor calculated: grain=%s factor=%s discounts=%d bonuses=%d warnings=%d",
            rules.grain_type,
            final_factor,
            len(discounts),
            len(bonuses),
            len(warnings),
        )

        return QualityResult(
            grain_type=rules.grain_type,
            base_factor=BASE_FACTOR,
            final_factor=final_factor,
            total_bonus=total_bonus,
            total_discount=total_discount,
            humidity_factor_discount=humidity_discount,
            humidity_waste=waste,
            calculation_version=self.calculation_version,
            grade=grade,
            grade_factor=grade_factor,
            grade_by_parameter=grade_by_parameter,
            worst_parameter=worst_parameter,
            bonuses=bonuses,
            discounts=discounts,
            warnings=warnings,
            price_adjustment=price_adjustment,
            out_of_standard=out_of_standard,
            out_of_tolerance=out_of_tolerance,
            calculation_steps=steps,
        )

    # ── Measurements ─────────────────────────────────────────────────

    def _read_measurements(
        self, analysis: Any, warnings: list[QualityWarning]
    ) -> dict[str, Decimal]:
        """Read and sanitize measured values.

        Humidity is always present in the result (0 when missing or
        unreadable).  Other unreadable values are left out.
        """
        values: dict[str, Decimal] = {}
        for param in MEASURED_PARAMETERS:
            raw = getattr(analysis, param, None)
            if raw is None:
                if param == "humidity":
                    warnings.append(
                        QualityWarning(
                            type=WARNING_MISSING_VALUE,
                            severity=SEVERITY_CRITICAL,
                            parameter=param,
                            message="Humidity not measured; assumed 0",
                        )
                    )
                    values[param] = ZERO
                continue

            try:
                value = to_decimal(raw)
            except ValueError:
                warnings.append(
                    QualityWarning(
                        type=WARNING_INVALID_VALUE,
                        severity=SEVERITY_CRITICAL,
                        parameter=param,
                        message=f"Unreadable value {raw!r} ignored",
                    )
                )
                if param == "humidity":
                    values[param] = ZERO
                continue

            if value < ZERO:
                warnings.append(
                    QualityWarning(
                        type=WARNING_INVALID_VALUE,
                        severity=SEVERITY_CRITICAL,
                        parameter=param,
                        message=f"Negative value {value} clamped to 0",
                        value=value,
                        threshold=ZERO,
                    )
                )
                value = ZERO
            elif param not in NON_PERCENT_PARAMETERS and value > HUNDRED:
                warnings.append(
                    QualityWarning(
                        type=WARNING_INVALID_VALUE,
                        severity=SEVERITY_CRITICAL,
                        parameter=param,
                        message=f"Percentage {value} clamped to 100",
                        value=value,
                        threshold=HUNDRED,
                    )
                )
                value = HUNDRED

            values[param] = value
        return values

    @staticmethod
    def _read_quantity(
        quantity_kg: Any, warnings: list[QualityWarning]
    ) -> Optional[Decimal]:
        try:
            gross = to_decimal(quantity_kg)
        except ValueError:
            warnings.append(
                QualityWarning(
                    type=WARNING_INVALID_VALUE,
                    severity=SEVERITY_CRITICAL,
                    parameter="quantity_kg",
                    message=f"Unreadable quantity {quantity_kg!r} ignored",
                )
            )
            return None
        if gross is not None and gross < ZERO:
            warnings.append(
                QualityWarning(
                    type=WARNING_INVALID_VALUE,
                    severity=SEVERITY_CRITICAL,
                    parameter="quantity_kg",
                    message=f"Negative quantity {gross} clamped to 0",
                    value=gross,
                    threshold=ZERO,
                )
            )
            gross = ZERO
        return gross

    # ── Humidity ─────────────────────────────────────────────────────

    def _humidity_discount(
        self, rules: GrainRules, humidity: Decimal
    ) -> tuple[Decimal, Optional[Decimal]]:
        if rules.base_humidity is None:
            return ZERO, None
        ratio = rules.humidity_discount_ratio
        if ratio is None:
            ratio = self.default_humidity_discount_ratio
        if humidity <= rules.base_humidity:
            return ZERO, ratio
        return round_half_up((humidity - rules.base_humidity) * ratio), ratio

    def _check_humidity(
        self, rules: GrainRules, humidity: Decimal, warnings: list[QualityWarning]
    ) -> None:
        if rules.base_humidity is None or humidity <= rules.base_humidity:
            return
        warnings.append(
            QualityWarning(
                type=WARNING_REQUIRES_DRYING,
                severity=SEVERITY_WARNING,
                parameter="humidity",
                message=(
                    f"Humidity {humidity}% above base {rules.base_humidity}%; "
                    "lot requires drying"
                ),
                value=humidity,
                threshold=rules.base_humidity,
            )
        )
        limit = rules.humidity_hard_limit
        if limit is not None and humidity > limit:
            warnings.append(
                QualityWarning(
                    type=WARNING_OUT_OF_STANDARD,
                    severity=SEVERITY_CRITICAL,
                    parameter="humidity",
                    message=f"Humidity {humidity}% exceeds the {limit}% limit",
                    value=humidity,
                    threshold=limit,
                )
            )

    # ── Discounts ────────────────────────────────────────────────────

    def _discounts(
        self,
        rules: GrainRules,
        values: dict[str, Decimal],
        warnings: list[QualityWarning],
    ) -> list[DiscountDetail]:
        details: list[DiscountDetail] = []
        for rule in rules.tolerances.values():
            value = values.get(rule.parameter)
            if value is None:
                continue

            excess = rule.excess(value)
            if excess > ZERO:
                details.append(self._discount_for(rule, value, excess))
                side = BELOW if rule.direction == BELOW else ABOVE
                warnings.append(
                    QualityWarning(
                        type=WARNING_OUT_OF_TOLERANCE,
                        severity=SEVERITY_WARNING,
                        parameter=rule.parameter,
                        message=(
                            f"{rule.concept}: {value} {side} tolerance "
                            f"{rule.tolerance}"
                        ),
                        value=value,
                        threshold=rule.tolerance,
                    )
                )

            if rule.breaches_hard_limit(value):
                warnings.append(
                    QualityWarning(
                        type=WARNING_OUT_OF_STANDARD,
                        severity=SEVERITY_CRITICAL,
                        parameter=rule.parameter,
                        message=(
                            f"{rule.concept}: {value} beyond the limit "
                            f"{rule.hard_limit}"
                        ),
                        value=value,
                        threshold=rule.hard_limit,
                    )
                )
        return details

    @staticmethod
    def _discount_for(
        rule: ToleranceRule, value: Decimal, excess: Decimal
    ) -> DiscountDetail:
        if not rule.tiers:
            discount = round_half_up(excess * rule.rate)
            return DiscountDetail(
                parameter=rule.parameter,
                concept=rule.concept,
                value=value,
                tolerance=rule.tolerance,
                excess=excess,
                rate=rule.rate,
                discount=discount,
                calculation=f"{excess} × {rule.rate} = {discount}",
            )

        tiers: list[TierDetail] = []
        lower = ZERO
        for tier in rule.tiers:
            upper = tier.up_to_excess
            top = excess if upper is None else min(excess, upper)
            applied = top - lower
            if applied <= ZERO:
                break
            tiers.append(
                TierDetail(
                    from_excess=lower,
                    to_excess=upper,
                    rate=tier.rate,
                    applied_excess=applied,
                    discount=applied * tier.rate,
                )
            )
            if upper is None:
                break
            lower = upper

        discount = round_half_up(sum((t.discount for t in tiers), ZERO))
        return DiscountDetail(
            parameter=rule.parameter,
            concept=rule.concept,
            value=value,
            tolerance=rule.tolerance,
            excess=excess,
            rate=rule.rate,
            discount=discount,
            tiers=tuple(tiers),
            calculation=" + ".join(
                f"{t.applied_excess} × {t.rate}" for t in tiers
            )
            + f" = {discount}",
        )

    # ── Bonuses ──────────────────────────────────────────────────────

    def _bonuses(
        self, rules: GrainRules, values: dict[str, Decimal]
    ) -> list[BonusDetail]:
        details: list[BonusDetail] = []
        for rule in rules.bonuses:
            value = values.get(rule.parameter)
            if value is None or not self._requirement_met(rule, values):
                continue
            bonus = self._bonus_amount(rule, value)
            if bonus > ZERO:
                details.append(
                    BonusDetail(
                        parameter=rule.parameter,
                        concept=rule.concept,
                        value=value,
                        base=rule.base,
                        bonus=round_half_up(bonus),
                    )
                )
        return details

    @staticmethod
    def _requirement_met(rule: BonusRule, values: dict[str, Decimal]) -> bool:
        if rule.requires is None:
            return True
        parameter, minimum = rule.requires
        other = values.get(parameter)
        return other is not None and other >= minimum

    @staticmethod
    def _bonus_amount(rule: BonusRule, value: Decimal) -> Decimal:
        if rule.steps:
            for minimum, bonus in rule.steps:
                if value >= minimum:
                    return bonus
            return ZERO
        if value > rule.base:
            return (value - rule.base) * rule.rate
        return ZERO

    # ── Grade ────────────────────────────────────────────────────────

    @staticmethod
    def _grades(rules: GrainRules, values: dict[str, Decimal]) -> dict[str, str]:
        grades: dict[str, str] = {}
        for scale in rules.grading:
            value = values.get(scale.parameter)
            if value is not None:
                grades[scale.parameter] = scale.grade_for(value)
        return grades

    @staticmethod
    def _worst_grade(
        grade_by_parameter: dict[str, str], out_of_tolerance: list[str]
    ) -> tuple[Optional[str], Optional[str]]:
        worst: Optional[str] = None
        worst_parameter: Optional[str] = None
        for parameter, grade in grade_by_parameter.items():
            if parameter not in out_of_tolerance:
                continue
            if worst is None or _GRADE_RANK[grade] > _GRADE_RANK[worst]:
                worst = grade
                worst_parameter = parameter
        return worst, worst_parameter

    @staticmethod
    def _grade_factor(rules: GrainRules, grade: Optional[str]) -> Decimal:
        if grade is None:
            return ZERO
        return rules.grade_adjustments.get(grade, ZERO)

    @staticmethod
    def _grade_bonus(grade: str, grade_factor: Decimal) -> BonusDetail:
        return BonusDetail(
            parameter=GRADE_PARAMETER,
            concept=f"Grado {grade}",
            value=grade_factor,
            base=ZERO,
            bonus=round_half_up(grade_factor),
        )

    @staticmethod
    def _grade_discount(grade: str, grade_factor: Decimal) -> DiscountDetail:
        points = -grade_factor
        discount = round_half_up(points)
        return DiscountDetail(
            parameter=GRADE_PARAMETER,
            concept=f"Grado {grade}",
            value=grade_factor,
            tolerance=ZERO,
            excess=points,
            rate=Decimal("1"),
            discount=discount,
            calculation=f"{grade} → {grade_factor} = {discount}",
        )

    # ── Price ────────────────────────────────────────────────────────

    @staticmethod
    def _price_adjustment(
        final_factor: Decimal,
        base_price_per_ton: Any,
        gross_kg: Optional[Decimal],
        waste: HumidityWaste,
        warnings: list[QualityWarning],
    ) -> Optional[PriceAdjustment]:
        try:
            base_price = to_decimal(base_price_per_ton)
        except ValueError:
            warnings.append(
                QualityWarning(
                    type=WARNING_INVALID_VALUE,
                    severity=SEVERITY_CRITICAL,
                    parameter="base_price_per_ton",
                    message=f"Unreadable price {base_price_per_ton!r} ignored",
                )
            )
            return None

        adjusted = round_half_up(base_price * final_factor / HUNDRED)
        gross_amount = None
        net_amount = None
        if gross_kg is not None:
            gross_amount = round_half_up(gross_kg / KG_PER_TON * base_price)
            net_amount = round_half_up(waste.net_quantity_kg / KG_PER_TON * adjusted)

        return PriceAdjustment(
            base_price_per_ton=base_price,
            adjusted_price_per_ton=adjusted,
            adjustment_percent=final_factor - HUNDRED,
            gross_amount=gross_amount,
            net_amount=net_amount,
        )

    # ── Audit trail ──────────────────────────────────────────────────

    @staticmethod
    def _step(
        steps: list[CalculationStep],
        description: str,
        formula: str,
        inputs: dict,
        outputs: dict,
    ) -> None:
        steps.append(
            CalculationStep(
                step=len(steps) + 1,
                description=description,
                formula=formula,
                input=inputs,
                output=outputs,
            )
        )
