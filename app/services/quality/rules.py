"""Per-grain quality rule tables.

Each grain type carries its base (standard) humidity, the banded drying
waste table, the tolerance table that drives discounts, the bonus rules it
explicitly enumerates, its grading scales and the humidity hard limit.
Values follow the Cámara Arbitral de Cereales trade norms (Trigo Pan XX,
Maíz XII, Soja XVII, Sorgo XVIII, Girasol IX).

Tables are frozen dataclasses and read-only mappings.  They are built once
at import time into ``DEFAULT_RULE_SET`` and handed to calculators
explicitly, so tests (or a future rule revision) can inject their own
``RuleSet`` without touching module state.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from app.services.quality.decimals import ZERO

RULE_SET_VERSION = "caci-2024.1"

ABOVE = "above"
BELOW = "below"

GRADE_G1 = "G1"
GRADE_G2 = "G2"
GRADE_G3 = "G3"


class GrainType(str, Enum):
    """Grain types with a rule table."""

    WHEAT = "WHEAT"
    CORN = "CORN"
    SOYBEAN = "SOYBEAN"
    SORGHUM = "SORGHUM"
    SUNFLOWER = "SUNFLOWER"


# Trade names as they appear on settlement documents
GRAIN_ALIASES: Mapping[str, GrainType] = MappingProxyType(
    {
        "TRIGO": GrainType.WHEAT,
        "TRIGO PAN": GrainType.WHEAT,
        "MAIZ": GrainType.CORN,
        "MAIZE": GrainType.CORN,
        "SOJA": GrainType.SOYBEAN,
        "SOY": GrainType.SOYBEAN,
        "SOYA": GrainType.SOYBEAN,
        "SORGO": GrainType.SORGHUM,
        "GIRASOL": GrainType.SUNFLOWER,
    }
)


def normalize_grain_type(value: object) -> str:
    """Return the canonical uppercase key for a grain type name.

    Accents are stripped and whitespace collapsed before uppercasing, so
    ``"maíz"``, ``" Maiz "`` and ``"CORN"`` all resolve to ``"CORN"``.
    Unknown names are returned normalized but otherwise unchanged.
    """
    if isinstance(value, GrainType):
        return value.value
    text = unicodedata.normalize("NFKD", str(value or ""))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = " ".join(text.split()).upper()
    alias = GRAIN_ALIASES.get(text)
    return alias.value if alias is not None else text


# ── Table entries ────────────────────────────────────────────────────


@dataclass(frozen=True)
class HumidityBand:
    """Drying waste that applies from ``humidity`` up to the next band."""

    humidity: Decimal
    waste_percent: Decimal


@dataclass(frozen=True)
class DiscountTier:
    """Marginal rate for the excess up to ``up_to_excess`` (None = open)."""

    up_to_excess: Optional[Decimal]
    rate: Decimal


@dataclass(frozen=True)
class ToleranceRule:
    """Discount rule for one measured parameter.

    ``direction`` says which side of ``tolerance`` is worse: ``above`` for
    impurities (foreign matter, damaged grains), ``below`` for parameters
    where less is worse (protein, hectoliter weight, fat content).
    """

    parameter: str
    concept: str
    tolerance: Decimal
    rate: Decimal
    tiers: tuple[DiscountTier, ...] = ()
    direction: str = ABOVE
    hard_limit: Optional[Decimal] = None

    def excess(self, value: Decimal) -> Decimal:
        """Distance beyond tolerance on the bad side (0 when within)."""
        if self.direction == BELOW:
            return max(ZERO, self.tolerance - value)
        return max(ZERO, value - self.tolerance)

    def breaches_hard_limit(self, value: Decimal) -> bool:
        if self.hard_limit is None:
            return False
        if self.direction == BELOW:
            return value < self.hard_limit
        return value > self.hard_limit


@dataclass(frozen=True)
class BonusRule:
    """Bonus for a parameter measured better than its base.

    Linear rules pay ``(value - base) * rate``; stepped rules pay the bonus
    of the highest step whose minimum the value reaches.  ``requires`` names
    another parameter and the minimum it must reach for the bonus to apply.
    """

    parameter: str
    concept: str
    base: Decimal
    rate: Decimal = ZERO
    steps: tuple[tuple[Decimal, Decimal], ...] = ()
    requires: Optional[tuple[str, Decimal]] = None


@dataclass(frozen=True)
class GradeScale:
    """G1/G2 limits for one parameter; anything worse is G3."""

    parameter: str
    g1_limit: Decimal
    g2_limit: Decimal
    direction: str = ABOVE

    def grade_for(self, value: Decimal) -> str:
        if self.direction == BELOW:
            if value >= self.g1_limit:
                return GRADE_G1
            if value >= self.g2_limit:
                return GRADE_G2
            return GRADE_G3
        if value <= self.g1_limit:
            return GRADE_G1
        if value <= self.g2_limit:
            return GRADE_G2
        return GRADE_G3


def _empty_mapping() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class GrainRules:
    """Complete rule table for one grain type.

    ``base_humidity`` is None only for the zero-effect table returned for
    unknown grain types.  ``humidity_discount_ratio`` is the factor points
    deducted per humidity point above base; None defers to the configured
    default.  ``handling_waste_percent`` is added to the drying waste of
    lots above base.  ``grade_adjustments`` maps a grade to the factor
    points it adds (negative for a discount); grades not listed add nothing.
    """

    grain_type: str
    base_humidity: Optional[Decimal]
    humidity_waste_table: tuple[HumidityBand, ...] = ()
    humidity_discount_ratio: Optional[Decimal] = None
    humidity_hard_limit: Optional[Decimal] = None
    handling_waste_percent: Decimal = ZERO
    tolerances: Mapping[str, ToleranceRule] = field(default_factory=_empty_mapping)
    bonuses: tuple[BonusRule, ...] = ()
    grading: tuple[GradeScale, ...] = ()
    grade_adjustments: Mapping[str, Decimal] = field(default_factory=_empty_mapping)
    norm: str = ""


@dataclass(frozen=True)
class RuleSet:
    """Versioned collection of grain rule tables keyed by grain type."""

    version: str
    grains: Mapping[str, GrainRules]

    def is_known(self, grain_type: object) -> bool:
        return normalize_grain_type(grain_type) in self.grains

    def rules_for(self, grain_type: object) -> GrainRules:
        """Rules for the grain, or a zero-effect table when unknown."""
        key = normalize_grain_type(grain_type)
        rules = self.grains.get(key)
        if rules is None:
            return GrainRules(grain_type=key, base_humidity=None)
        return rules

    def lookup_base_humidity(self, grain_type: object) -> Optional[Decimal]:
        return self.rules_for(grain_type).base_humidity

    def lookup_humidity_waste_table(
        self, grain_type: object
    ) -> tuple[HumidityBand, ...]:
        return self.rules_for(grain_type).humidity_waste_table

    def lookup_tolerance_table(self, grain_type: object) -> Mapping[str, ToleranceRule]:
        return self.rules_for(grain_type).tolerances


def build_rule_set(version: str, grains: Iterable[GrainRules]) -> RuleSet:
    """Freeze a list of grain tables into a ``RuleSet``."""
    table = {normalize_grain_type(g.grain_type): g for g in grains}
    return RuleSet(version=version, grains=MappingProxyType(table))


# ── Built-in tables ──────────────────────────────────────────────────


def _d(value: str) -> Decimal:
    return Decimal(value)


def waste_bands(
    base: str,
    top: str,
    increment: str = "0.75",
    step: str = "0.5",
) -> tuple[HumidityBand, ...]:
    """Build half-point drying bands from ``base`` (0 %) up to ``top``.

    Each band adds ``increment`` waste points, matching the banded merma
    tables printed on settlement documents.
    """
    bands = []
    humidity = _d(base)
    waste = ZERO
    while humidity <= _d(top):
        bands.append(HumidityBand(humidity=humidity, waste_percent=waste))
        humidity += _d(step)
        waste += _d(increment)
    return tuple(bands)


def _tolerances(*rules: ToleranceRule) -> Mapping[str, ToleranceRule]:
    return MappingProxyType({r.parameter: r for r in rules})


def _grade_adjustments(g1: str, g3: str) -> Mapping[str, Decimal]:
    return MappingProxyType({GRADE_G1: _d(g1), GRADE_G3: _d(g3)})


WHEAT_RULES = GrainRules(
    grain_type=GrainType.WHEAT.value,
    norm="Norma XX - Trigo Pan",
    base_humidity=_d("14.0"),
    humidity_waste_table=waste_bands("14.0", "18.0"),
    humidity_hard_limit=_d("18.0"),
    handling_waste_percent=_d("0.10"),
    tolerances=_tolerances(
        ToleranceRule(
            parameter="foreign_matter",
            concept="Materias extrañas",
            tolerance=_d("0.80"),
            rate=_d("1.0"),
            hard_limit=_d("2.0"),
        ),
        ToleranceRule(
            parameter="damaged_grains",
            concept="Granos dañados",
            tolerance=_d("3.0"),
            rate=_d("1.0"),
        ),
        ToleranceRule(
            parameter="protein",
            concept="Proteína baja",
            tolerance=_d("11.0"),
            rate=_d("2.0"),
            direction=BELOW,
            tiers=(
                DiscountTier(up_to_excess=_d("1.0"), rate=_d("2.0")),
                DiscountTier(up_to_excess=_d("2.0"), rate=_d("3.0")),
                DiscountTier(up_to_excess=None, rate=_d("4.0")),
            ),
        ),
        ToleranceRule(
            parameter="hectoliter_weight",
            concept="Peso hectolítrico",
            tolerance=_d("73.0"),
            rate=ZERO,
            direction=BELOW,
            hard_limit=_d("68.0"),
        ),
    ),
    bonuses=(
        BonusRule(
            parameter="protein",
            concept="Proteína",
            base=_d("11.0"),
            rate=_d("2.0"),
            requires=("hectoliter_weight", _d("75.0")),
        ),
    ),
    grading=(
        GradeScale("hectoliter_weight", _d("79.0"), _d("76.0"), direction=BELOW),
        GradeScale("foreign_matter", _d("0.20"), _d("0.80")),
        GradeScale("damaged_grains", _d("2.0"), _d("3.0")),
    ),
    grade_adjustments=_grade_adjustments("1.5", "-1.0"),
)

CORN_RULES = GrainRules(
    grain_type=GrainType.CORN.value,
    norm="Norma XII - Maíz",
    base_humidity=_d("14.5"),
    humidity_waste_table=waste_bands("14.5", "21.0"),
    humidity_hard_limit=_d("21.0"),
    handling_waste_percent=_d("0.25"),
    tolerances=_tolerances(
        ToleranceRule(
            parameter="foreign_matter",
            concept="Materias extrañas",
            tolerance=_d("1.5"),
            rate=_d("1.0"),
        ),
        ToleranceRule(
            parameter="broken_grains",
            concept="Granos quebrados",
            tolerance=_d("3.0"),
            rate=_d("1.0"),
        ),
        ToleranceRule(
            parameter="damaged_grains",
            concept="Granos dañados",
            tolerance=_d("5.0"),
            rate=_d("1.0"),
        ),
    ),
    bonuses=(
        BonusRule(
            parameter="hectoliter_weight",
            concept="Peso hectolítrico",
            base=_d("75.0"),
            steps=((_d("77.0"), _d("1.0")), (_d("76.0"), _d("0.5"))),
        ),
    ),
    grading=(
        GradeScale("hectoliter_weight", _d("75.0"), _d("72.0"), direction=BELOW),
        GradeScale("damaged_grains", _d("3.0"), _d("5.0")),
        GradeScale("broken_grains", _d("2.0"), _d("3.0")),
        GradeScale("foreign_matter", _d("1.0"), _d("1.5")),
    ),
    grade_adjustments=_grade_adjustments("1.0", "-1.5"),
)

SOYBEAN_RULES = GrainRules(
    grain_type=GrainType.SOYBEAN.value,
    norm="Norma XVII - Soja",
    base_humidity=_d("13.5"),
    humidity_waste_table=waste_bands("13.5", "20.0"),
    humidity_hard_limit=_d("20.0"),
    handling_waste_percent=_d("0.25"),
    tolerances=_tolerances(
        ToleranceRule(
            parameter="foreign_matter",
            concept="Materias extrañas",
            tolerance=_d("1.0"),
            rate=_d("1.0"),
            tiers=(
                DiscountTier(up_to_excess=_d("2.0"), rate=_d("1.0")),
                DiscountTier(up_to_excess=None, rate=_d("1.5")),
            ),
        ),
        ToleranceRule(
            parameter="damaged_grains",
            concept="Granos dañados",
            tolerance=_d("5.0"),
            rate=_d("1.0"),
        ),
        ToleranceRule(
            parameter="green_grains",
            concept="Granos verdes",
            tolerance=_d("5.0"),
            rate=_d("0.2"),
            hard_limit=_d("10.0"),
        ),
        ToleranceRule(
            parameter="broken_grains",
            concept="Granos quebrados",
            tolerance=_d("20.0"),
            rate=_d("0.25"),
            hard_limit=_d("30.0"),
            tiers=(
                DiscountTier(up_to_excess=_d("5.0"), rate=_d("0.25")),
                DiscountTier(up_to_excess=_d("10.0"), rate=_d("0.5")),
                DiscountTier(up_to_excess=None, rate=_d("0.75")),
            ),
        ),
    ),
)

SORGHUM_RULES = GrainRules(
    grain_type=GrainType.SORGHUM.value,
    norm="Norma XVIII - Sorgo",
    base_humidity=_d("15.0"),
    humidity_waste_table=waste_bands("15.0", "20.0"),
    humidity_hard_limit=_d("20.0"),
    handling_waste_percent=_d("0.25"),
    tolerances=_tolerances(
        ToleranceRule(
            parameter="foreign_matter",
            concept="Materias extrañas",
            tolerance=_d("1.0"),
            rate=_d("1.0"),
        ),
        ToleranceRule(
            parameter="broken_grains",
            concept="Granos quebrados",
            tolerance=_d("2.0"),
            rate=_d("1.0"),
        ),
        ToleranceRule(
            parameter="damaged_grains",
            concept="Granos dañados",
            tolerance=_d("2.0"),
            rate=_d("1.0"),
        ),
    ),
    bonuses=(
        BonusRule(
            parameter="hectoliter_weight",
            concept="Peso hectolítrico",
            base=_d("72.0"),
            steps=((_d("74.0"), _d("0.5")),),
        ),
    ),
    grading=(
        GradeScale("damaged_grains", _d("2.0"), _d("4.0")),
        GradeScale("foreign_matter", _d("2.0"), _d("3.0")),
        GradeScale("broken_grains", _d("3.0"), _d("5.0")),
    ),
    grade_adjustments=_grade_adjustments("1.0", "-1.5"),
)

SUNFLOWER_RULES = GrainRules(
    grain_type=GrainType.SUNFLOWER.value,
    norm="Norma IX - Girasol",
    base_humidity=_d("11.0"),
    humidity_waste_table=waste_bands("11.0", "16.0"),
    humidity_hard_limit=_d("16.0"),
    handling_waste_percent=_d("0.20"),
    tolerances=_tolerances(
        ToleranceRule(
            parameter="foreign_matter",
            concept="Materias extrañas",
            tolerance=_d("3.0"),
            rate=_d("1.0"),
        ),
        ToleranceRule(
            parameter="acidity",
            concept="Acidez",
            tolerance=_d("1.5"),
            rate=_d("2.5"),
            hard_limit=_d("2.0"),
        ),
        ToleranceRule(
            parameter="fat_content",
            concept="Materia grasa",
            tolerance=_d("42.0"),
            rate=_d("2.0"),
            direction=BELOW,
        ),
    ),
    bonuses=(
        BonusRule(
            parameter="fat_content",
            concept="Materia grasa",
            base=_d("42.0"),
            rate=_d("2.0"),
        ),
    ),
)

DEFAULT_RULE_SET = build_rule_set(
    RULE_SET_VERSION,
    [WHEAT_RULES, CORN_RULES, SOYBEAN_RULES, SORGHUM_RULES, SUNFLOWER_RULES],
)
