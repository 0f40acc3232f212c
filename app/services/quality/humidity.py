"""Drying waste (merma por humedad) from the banded humidity tables.

A lot at or under its base humidity loses nothing.  Above base, the drying
waste comes from the band table and the grain's handling waste (merma de
manipuleo) is added on top, since the lot goes through the dryer.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Sequence

from app.services.quality.decimals import ZERO, HUNDRED, fmt, round_half_up, to_decimal
from app.services.quality.rules import (
    DEFAULT_RULE_SET,
    GrainRules,
    HumidityBand,
    RuleSet,
)


@dataclass(frozen=True)
class HumidityWaste:
    """Drying and handling waste for one lot.

    ``waste_percent``/``waste_kg`` are the drying waste and drive
    ``net_quantity_kg``; handling waste is reported next to it.
    """

    base_humidity: Optional[Decimal]
    actual_humidity: Decimal
    waste_percent: Decimal
    waste_kg: Decimal
    net_quantity_kg: Decimal
    requires_drying: bool
    handling_waste_percent: Decimal = ZERO
    handling_waste_kg: Decimal = ZERO

    @property
    def total_waste_percent(self) -> Decimal:
        return self.waste_percent + self.handling_waste_percent

    @property
    def total_waste_kg(self) -> Decimal:
        return self.waste_kg + self.handling_waste_kg

    def to_dict(self) -> dict:
        return {
            "base_humidity": fmt(self.base_humidity),
            "actual_humidity": fmt(self.actual_humidity),
            "waste_percent": fmt(self.waste_percent),
            "waste_kg": fmt(self.waste_kg),
            "handling_waste_percent": fmt(self.handling_waste_percent),
            "handling_waste_kg": fmt(self.handling_waste_kg),
            "total_waste_percent": fmt(self.total_waste_percent),
            "total_waste_kg": fmt(self.total_waste_kg),
            "net_quantity_kg": fmt(self.net_quantity_kg),
            "requires_drying": self.requires_drying,
        }


def lookup_waste_percent(table: Sequence[HumidityBand], actual: Decimal) -> Decimal:
    """Waste % of the highest band whose humidity does not exceed ``actual``.

    Values between bands take the lower band; values below the first band
    yield 0.  Callers handle the at-or-under-base case before looking up.
    """
    for band in reversed(table):
        if band.humidity <= actual:
            return band.waste_percent
    return ZERO


def _no_waste(
    base: Optional[Decimal], actual: Decimal, gross: Decimal
) -> HumidityWaste:
    return HumidityWaste(
        base_humidity=base,
        actual_humidity=actual,
        waste_percent=ZERO,
        waste_kg=ZERO,
        net_quantity_kg=round_half_up(gross),
        requires_drying=False,
    )


def humidity_waste_for(
    rules: GrainRules, actual_humidity: Any, gross_quantity_kg: Any = None
) -> HumidityWaste:
    """Compute drying waste against an already resolved rule table."""
    actual = to_decimal(actual_humidity)
    if actual is None:
        actual = ZERO
    gross = to_decimal(gross_quantity_kg)
    if gross is None:
        gross = ZERO

    base = rules.base_humidity
    if base is None or actual <= base:
        return _no_waste(base, actual, gross)

    percent = lookup_waste_percent(rules.humidity_waste_table, actual)
    handling = rules.handling_waste_percent
    waste_kg = round_half_up(gross * percent / HUNDRED)
    return HumidityWaste(
        base_humidity=base,
        actual_humidity=actual,
        waste_percent=percent,
        waste_kg=waste_kg,
        net_quantity_kg=round_half_up(gross - waste_kg),
        requires_drying=True,
        handling_waste_percent=handling,
        handling_waste_kg=round_half_up(gross * handling / HUNDRED),
    )


def calculate_humidity_waste(
    grain_type: Any,
    actual_humidity: Any,
    gross_quantity_kg: Any = None,
    rule_set: RuleSet = DEFAULT_RULE_SET,
) -> HumidityWaste:
    """Drying waste for a lot of ``grain_type`` at ``actual_humidity``.

    Unknown grain types have no base humidity and therefore no waste.
    A missing gross quantity is treated as 0 kg.
    """
    return humidity_waste_for(
        rule_set.rules_for(grain_type), actual_humidity, gross_quantity_kg
    )
