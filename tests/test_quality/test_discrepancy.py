"""Unit tests for the discrepancy detector and settlement status rule."""

from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.config import Settings
from app.services.quality.discrepancy import (
    STATUS_CRITICAL,
    STATUS_OK,
    STATUS_WARNING,
    DiscrepancyThresholds,
    detect_discrepancy,
)
from app.services.settlement.recalculation import resolve_settlement_status

THRESHOLDS = DiscrepancyThresholds(warning=Decimal("0.5"), critical=Decimal("2.0"))


@pytest.mark.parametrize(
    "original, calculated, status, has_discrepancy",
    [
        ("99.30", "100.50", STATUS_WARNING, True),
        ("97.00", "99.50", STATUS_CRITICAL, True),
        ("98.00", "98.30", STATUS_OK, False),
        ("98.00", "98.50", STATUS_OK, False),
        ("98.00", "100.00", STATUS_WARNING, True),
    ],
)
def test_detect_discrepancy_thresholds(original, calculated, status, has_discrepancy):
    """1.2 → WARNING, 2.5 → CRITICAL, 0.3 → OK; thresholds are exclusive."""
    check = detect_discrepancy(original, calculated, THRESHOLDS)

    assert check.status == status
    assert check.has_discrepancy is has_discrepancy


@pytest.mark.parametrize(
    "calculated, status, difference",
    [
        ("100.504", STATUS_WARNING, "0.50"),
        ("102.004", STATUS_CRITICAL, "2.00"),
    ],
)
def test_gap_just_over_threshold_is_not_rounded_away(calculated, status, difference):
    """0.504 and 2.004 round to the thresholds but still exceed them."""
    check = detect_discrepancy("100", calculated, THRESHOLDS)

    assert check.status == status
    assert check.has_discrepancy is True
    assert check.difference == Decimal(difference)


def test_difference_is_calculated_minus_original():
    check = detect_discrepancy(Decimal("100.00"), Decimal("97.75"), THRESHOLDS)

    assert check.difference == Decimal("-2.25")
    assert check.status == STATUS_CRITICAL


def test_no_original_factor_returns_none():
    assert detect_discrepancy(None, Decimal("97.75"), THRESHOLDS) is None


def test_thresholds_from_settings():
    config = Settings(
        database_url="sqlite://",
        discrepancy_warning_threshold=1.0,
        discrepancy_critical_threshold=3.0,
    )
    thresholds = DiscrepancyThresholds.from_settings(config)

    check = detect_discrepancy("98.00", "99.20", thresholds)
    assert check.status == STATUS_WARNING
    check = detect_discrepancy("98.00", "98.90", thresholds)
    assert check.status == STATUS_OK


def test_to_dict():
    data = detect_discrepancy("99.30", "100.50", THRESHOLDS).to_dict()
    assert data == {
        "original_factor": "99.30",
        "calculated_factor": "100.50",
        "difference": "1.20",
        "has_discrepancy": True,
        "status": "WARNING",
    }


# ── Settlement status ────────────────────────────────────────────────


def test_any_discrepancy_needs_review():
    checks = [
        detect_discrepancy("98.00", "98.10", THRESHOLDS),
        detect_discrepancy("98.00", "99.00", THRESHOLDS),
    ]
    assert resolve_settlement_status(checks) == "needs_review"


def test_all_ok_is_validated():
    checks = [detect_discrepancy("98.00", "98.10", THRESHOLDS), None]
    assert resolve_settlement_status(checks) == "validated"


def test_failed_entry_needs_review():
    assert resolve_settlement_status([], failed=1) == "needs_review"


def test_nothing_to_compare_is_validated():
    assert resolve_settlement_status([]) == "validated"
