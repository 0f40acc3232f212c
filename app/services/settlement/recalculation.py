"""Settlement recalculation orchestrator.

A recalculation run:
  1. Loads the settlement (scoped to its owner) with its CTG entries and
     their analyses.
  2. For every entry, picks the latest analysis and runs the factor
     calculator; entries without an analysis are skipped.
  3. Upserts each result inside its own SAVEPOINT, so a persistence error
     on one entry is reported as ``failed`` without losing the others.
  4. Compares each calculated factor with the factor on the document.
  5. After every entry is processed, flips the settlement status and
     commits everything in a single transaction.

Running it twice on unchanged data updates the same rows with the same
values and yields the same status.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.config import Settings
from app.core.logging import get_logger
from app.models.ctg_entry import CtgEntry
from app.models.quality import QualityResultRecord, utcnow
from app.models.settlement import (
    STATUS_NEEDS_REVIEW,
    STATUS_VALIDATED,
    Settlement,
)
from app.services.quality.calculator import FactorCalculator
from app.services.quality.decimals import fmt
from app.services.quality.discrepancy import (
    DiscrepancyCheck,
    DiscrepancyThresholds,
    detect_discrepancy,
)
from app.services.settlement.store import QualityResultStore

logger = get_logger(__name__)

SKIP_REASON_NO_ANALYSIS = "No quality analysis"

OUTCOME_RECALCULATED = "recalculated"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"


class SettlementNotFoundError(LookupError):
    """The settlement does not exist or belongs to another owner."""

    def __init__(self, settlement_id: uuid.UUID) -> None:
        super().__init__(f"Settlement {settlement_id} not found")
        self.settlement_id = settlement_id


@dataclass
class EntryOutcome:
    """What happened to one CTG entry during a run."""

    ctg_entry_id: uuid.UUID
    ctg_number: str
    status: str
    reason: Optional[str] = None
    result_id: Optional[uuid.UUID] = None
    final_factor: Optional[str] = None
    created: Optional[bool] = None
    discrepancy: Optional[DiscrepancyCheck] = None


@dataclass
class RecalculationReport:
    settlement_id: uuid.UUID
    total_ctgs: int
    recalculated: int = 0
    skipped: int = 0
    failed: int = 0
    status: Optional[str] = None
    discrepancies: list[dict] = field(default_factory=list)
    results: list[EntryOutcome] = field(default_factory=list)


def resolve_settlement_status(
    checks: Iterable[Optional[DiscrepancyCheck]], failed: int = 0
) -> str:
    """``needs_review`` if any discrepancy or failed entry, else ``validated``."""
    if failed:
        return STATUS_NEEDS_REVIEW
    if any(c is not None and c.has_discrepancy for c in checks):
        return STATUS_NEEDS_REVIEW
    return STATUS_VALIDATED


def discrepancy_item(entry: CtgEntry, check: DiscrepancyCheck) -> dict:
    return {
        "ctg_entry_id": entry.id,
        "ctg_number": entry.ctg_number,
        **check.to_dict(),
    }


def load_settlement(
    db: Session, settlement_id: uuid.UUID, owner_id: str
) -> Settlement:
    """Fetch a settlement for its owner, with entries and analyses.

    Raises:
        SettlementNotFoundError: If missing or owned by someone else.
    """
    settlement = (
        db.query(Settlement)
        .options(
            selectinload(Settlement.ctg_entries).selectinload(CtgEntry.analyses)
        )
        .filter(Settlement.id == settlement_id, Settlement.owner_id == owner_id)
        .one_or_none()
    )
    if settlement is None:
        raise SettlementNotFoundError(settlement_id)
    return settlement


def latest_result(db: Session, entry: CtgEntry) -> Optional[QualityResultRecord]:
    """Result of the entry's latest analysis, if it was ever calculated."""
    analysis = entry.latest_analysis
    if analysis is None:
        return None
    return QualityResultStore(db).get((analysis.id, entry.id))


def collect_discrepancies(
    db: Session, settlement: Settlement, thresholds: DiscrepancyThresholds
) -> list[dict]:
    """Compare stored results with original factors, without recalculating."""
    items = []
    for entry in settlement.ctg_entries:
        record = latest_result(db, entry)
        if record is None:
            continue
        check = detect_discrepancy(entry.factor, record.final_factor, thresholds)
        if check is not None and check.has_discrepancy:
            items.append(discrepancy_item(entry, check))
    return items


class SettlementRecalculator:
    """Recalculates every CTG entry of a settlement."""

    def __init__(
        self,
        db: Session,
        config: Settings,
        calculator: Optional[FactorCalculator] = None,
        store: Optional[QualityResultStore] = None,
    ) -> None:
        self.db = db
        self.config = config
        self.calculator = calculator or FactorCalculator.from_settings(config)
        self.store = store or QualityResultStore(db)
        self.thresholds = DiscrepancyThresholds.from_settings(config)

    # ── Public API ───────────────────────────────────────────────────

    def recalculate(
        self, settlement_id: uuid.UUID, owner_id: str
    ) -> RecalculationReport:
        """Recalculate a settlement and commit results plus new status.

        Raises:
            SettlementNotFoundError: If the settlement is not visible to
                ``owner_id``.
        """
        settlement = load_settlement(self.db, settlement_id, owner_id)
        entries = list(settlement.ctg_entries)
        report = RecalculationReport(
            settlement_id=settlement.id, total_ctgs=len(entries)
        )
        logger.info(
            "Recalculation started: settlement=%s grain=%s entries=%d",
            settlement.id,
            settlement.grain_type,
            len(entries),
        )

        try:
            self._apply_statement_timeout()

            checks: list[Optional[DiscrepancyCheck]] = []
            for entry in entries:
                outcome = self._process_entry(settlement, entry)
                report.results.append(outcome)
                if outcome.status == OUTCOME_RECALCULATED:
                    report.recalculated += 1
                    checks.append(outcome.discrepancy)
                    if outcome.discrepancy and outcome.discrepancy.has_discrepancy:
                        report.discrepancies.append(
                            discrepancy_item(entry, outcome.discrepancy)
                        )
                elif outcome.status == OUTCOME_SKIPPED:
                    report.skipped += 1
                else:
                    report.failed += 1

            report.status = resolve_settlement_status(checks, report.failed)
            settlement.status = report.status
            settlement.updated_at = utcnow()
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Recalculation failed: settlement=%s", settlement_id)
            raise

        logger.info(
            "Recalculation complete: settlement=%s recalculated=%d skipped=%d "
            "failed=%d discrepancies=%d status=%s",
            report.settlement_id,
            report.recalculated,
            report.skipped,
            report.failed,
            len(report.discrepancies),
            report.status,
        )
        return report

    # ── Internal helpers ─────────────────────────────────────────────

    def _process_entry(self, settlement: Settlement, entry: CtgEntry) -> EntryOutcome:
        analysis = entry.latest_analysis
        if analysis is None:
            logger.info("CTG %s skipped: %s", entry.ctg_number, SKIP_REASON_NO_ANALYSIS)
            return EntryOutcome(
                ctg_entry_id=entry.id,
                ctg_number=entry.ctg_number,
                status=OUTCOME_SKIPPED,
                reason=SKIP_REASON_NO_ANALYSIS,
            )

        result = self.calculator.calculate(
            analysis,
            settlement.grain_type,
            quantity_kg=entry.gross_kg,
            base_price_per_ton=settlement.price_per_ton,
        )

        try:
            with self.db.begin_nested():
                put = self.store.put((analysis.id, entry.id), result)
        except SQLAlchemyError as e:
            logger.error("CTG %s failed to persist: %s", entry.ctg_number, e)
            return EntryOutcome(
                ctg_entry_id=entry.id,
                ctg_number=entry.ctg_number,
                status=OUTCOME_FAILED,
                reason=f"Persistence error: {e.__class__.__name__}",
            )

        if not put.created and put.previous_version != result.calculation_version:
            logger.info(
                "CTG %s result moved from %s to %s",
                entry.ctg_number,
                put.previous_version,
                result.calculation_version,
            )

        check = detect_discrepancy(entry.factor, result.final_factor, self.thresholds)
        entry.calculated_factor = result.final_factor
        entry.discrepancy_status = check.status if check is not None else None
        entry.updated_at = utcnow()

        logger.debug(
            "CTG %s: factor=%s original=%s status=%s",
            entry.ctg_number,
            result.final_factor,
            entry.factor,
            entry.discrepancy_status,
        )
        return EntryOutcome(
            ctg_entry_id=entry.id,
            ctg_number=entry.ctg_number,
            status=OUTCOME_RECALCULATED,
            result_id=put.record.id,
            final_factor=fmt(result.final_factor),
            created=put.created,
            discrepancy=check,
        )

    def _apply_statement_timeout(self) -> None:
        """Bound every statement of this transaction on PostgreSQL.

        SQLite gets the same bound as its busy timeout at connect time.
        """
        if self.db.get_bind().dialect.name != "postgresql":
            return
        timeout_ms = int(self.config.persistence_timeout_seconds * 1000)
        self.db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
