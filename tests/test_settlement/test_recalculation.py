"""Integration tests for the settlement recalculation orchestrator.

Runs against the SQLite test database from ``conftest.py``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import Settings
from app.models.ctg_entry import CtgEntry
from app.models.quality import QualityAnalysis, QualityResultRecord
from app.models.settlement import Settlement
from app.services.settlement.recalculation import (
    SKIP_REASON_NO_ANALYSIS,
    SettlementNotFoundError,
    SettlementRecalculator,
)
from app.services.settlement.store import QualityResultStore

OWNER = "tenant-a"


# ── Helpers ──────────────────────────────────────────────────────────


def _config() -> Settings:
    return Settings(database_url="sqlite://", test_database_url="sqlite://")


def _settlement(db, owner: str = OWNER, grain_type: str = "SOYBEAN") -> Settlement:
    """Three lots: one matching, one off by 3.5 points, one without analysis."""
    settlement = Settlement(
        owner_id=owner,
        settlement_number="LIQ-0001",
        grain_type=grain_type,
        price_per_ton=Decimal("300000"),
    )
    matching = CtgEntry(
        ctg_number="CTG-1", line_number=1, gross_kg=Decimal("30000"),
        factor=Decimal("97.75"),
    )
    off = CtgEntry(
        ctg_number="CTG-2", line_number=2, gross_kg=Decimal("28000"),
        factor=Decimal("100.00"),
    )
    missing = CtgEntry(
        ctg_number="CTG-3", line_number=3, gross_kg=Decimal("25000"),
        factor=Decimal("99.00"),
    )
    settlement.ctg_entries.extend([matching, off, missing])
    matching.analyses.append(
        QualityAnalysis(analysis_date=datetime(2024, 5, 10), humidity=Decimal("15.0"))
    )
    off.analyses.append(
        QualityAnalysis(
            analysis_date=datetime(2024, 5, 10),
            humidity=Decimal("13.0"),
            foreign_matter=Decimal("4.0"),
        )
    )
    db.add(settlement)
    db.commit()
    return settlement


class _FailingStore(QualityResultStore):
    """Fails to persist the result of one CTG entry."""

    def __init__(self, db, failing_ctg_number: str) -> None:
        super().__init__(db)
        self.failing_ctg_number = failing_ctg_number

    def put(self, key, result):
        _, ctg_entry_id = key
        entry = self.db.get(CtgEntry, ctg_entry_id)
        if entry.ctg_number == self.failing_ctg_number:
            raise OperationalError(
                "INSERT INTO quality_results", {}, Exception("database is locked")
            )
        return super().put(key, result)


# ── Tests ────────────────────────────────────────────────────────────


def test_recalculate_counts_and_status(db_session):
    """3 lots, 1 without analysis → 2 recalculated, 1 skipped."""
    settlement = _settlement(db_session)

    report = SettlementRecalculator(db_session, _config()).recalculate(
        settlement.id, OWNER
    )

    assert report.total_ctgs == 3
    assert report.recalculated == 2
    assert report.skipped == 1
    assert report.failed == 0
    assert report.status == "needs_review"

    skipped = [o for o in report.results if o.status == "skipped"]
    assert [o.ctg_number for o in skipped] == ["CTG-3"]
    assert skipped[0].reason == SKIP_REASON_NO_ANALYSIS

    [discrepancy] = report.discrepancies
    assert discrepancy["ctg_number"] == "CTG-2"
    assert discrepancy["status"] == "CRITICAL"
    assert discrepancy["difference"] == "-3.50"


def test_results_and_entries_are_persisted(db_session):
    settlement = _settlement(db_session)
    SettlementRecalculator(db_session, _config()).recalculate(settlement.id, OWNER)

    db_session.expire_all()
    entries = {
        e.ctg_number: e
        for e in db_session.query(CtgEntry).filter(
            CtgEntry.settlement_id == settlement.id
        )
    }
    assert entries["CTG-1"].calculated_factor == Decimal("97.75")
    assert entries["CTG-1"].discrepancy_status == "OK"
    assert entries["CTG-2"].calculated_factor == Decimal("96.50")
    assert entries["CTG-2"].discrepancy_status == "CRITICAL"
    assert entries["CTG-3"].calculated_factor is None

    records = db_session.query(QualityResultRecord).all()
    assert len(records) == 2
    assert db_session.get(Settlement, settlement.id).status == "needs_review"


def test_rerun_is_idempotent(db_session):
    """A second run updates the same rows instead of inserting new ones."""
    settlement = _settlement(db_session)
    recalculator = SettlementRecalculator(db_session, _config())

    first = recalculator.recalculate(settlement.id, OWNER)
    second = recalculator.recalculate(settlement.id, OWNER)

    assert db_session.query(QualityResultRecord).count() == 2
    first_ids = [o.result_id for o in first.results if o.result_id]
    second_ids = [o.result_id for o in second.results if o.result_id]
    assert first_ids == second_ids
    assert [o.final_factor for o in first.results] == [
        o.final_factor for o in second.results
    ]
    assert all(o.created for o in first.results if o.status == "recalculated")
    assert not any(o.created for o in second.results if o.status == "recalculated")
    assert first.status == second.status


def test_latest_analysis_is_used(db_session):
    settlement = _settlement(db_session)
    entry = settlement.ctg_entries[0]
    entry.analyses.append(
        QualityAnalysis(analysis_date=datetime(2024, 5, 12), humidity=Decimal("13.0"))
    )
    db_session.commit()

    report = SettlementRecalculator(db_session, _config()).recalculate(
        settlement.id, OWNER
    )

    outcome = next(o for o in report.results if o.ctg_number == "CTG-1")
    assert Decimal(outcome.final_factor) == Decimal("100.00")
    assert outcome.discrepancy.status == "CRITICAL"


def test_all_matching_is_validated(db_session):
    settlement = _settlement(db_session)
    settlement.ctg_entries[1].factor = Decimal("96.50")
    db_session.commit()

    report = SettlementRecalculator(db_session, _config()).recalculate(
        settlement.id, OWNER
    )

    assert report.discrepancies == []
    assert report.status == "validated"


def test_missing_original_factor_is_not_a_discrepancy(db_session):
    settlement = _settlement(db_session)
    settlement.ctg_entries[1].factor = None
    db_session.commit()

    report = SettlementRecalculator(db_session, _config()).recalculate(
        settlement.id, OWNER
    )

    outcome = next(o for o in report.results if o.ctg_number == "CTG-2")
    assert outcome.discrepancy is None
    assert report.status == "validated"


def test_persistence_failure_is_isolated(db_session):
    settlement = _settlement(db_session)
    recalculator = SettlementRecalculator(
        db_session, _config(), store=_FailingStore(db_session, "CTG-2")
    )

    report = recalculator.recalculate(settlement.id, OWNER)

    assert report.recalculated == 1
    assert report.failed == 1
    assert report.skipped == 1
    assert report.status == "needs_review"
    failed = next(o for o in report.results if o.status == "failed")
    assert failed.ctg_number == "CTG-2"
    assert "OperationalError" in failed.reason

    # The other entry's result survived the rolled-back savepoint
    records = db_session.query(QualityResultRecord).all()
    assert len(records) == 1


def test_other_tenant_cannot_recalculate(db_session):
    settlement = _settlement(db_session)

    with pytest.raises(SettlementNotFoundError):
        SettlementRecalculator(db_session, _config()).recalculate(
            settlement.id, "tenant-b"
        )


def test_unknown_settlement(db_session):
    with pytest.raises(SettlementNotFoundError):
        SettlementRecalculator(db_session, _config()).recalculate(uuid.uuid4(), OWNER)


def test_unknown_grain_recalculates_with_warning(db_session):
    settlement = _settlement(db_session, grain_type="CEBADA")

    report = SettlementRecalculator(db_session, _config()).recalculate(
        settlement.id, OWNER
    )

    assert report.recalculated == 2
    record = db_session.query(QualityResultRecord).first()
    assert record.final_factor == Decimal("100.00")
    assert record.warnings[0]["type"] == "unknown_grain_type"
