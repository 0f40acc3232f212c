"""Keyed upsert store for calculated quality results."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.models.quality import QualityResultRecord, utcnow
from app.services.quality.result import QualityResult

logger = get_logger(__name__)

ResultKey = tuple[uuid.UUID, uuid.UUID]


@dataclass
class PutOutcome:
    record: QualityResultRecord
    created: bool
    previous_version: Optional[str] = None


class QualityResultStore:
    """``put((analysis_id, ctg_entry_id), result)`` keeps one row per key.

    A second ``put`` for the same key overwrites the row in place, so
    recalculating unchanged data never creates duplicates.  The store
    flushes but never commits; the caller owns the transaction.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, key: ResultKey) -> Optional[QualityResultRecord]:
        analysis_id, ctg_entry_id = key
        return (
            self.db.query(QualityResultRecord)
            .filter(
                QualityResultRecord.analysis_id == analysis_id,
                QualityResultRecord.ctg_entry_id == ctg_entry_id,
            )
            .one_or_none()
        )

    def put(self, key: ResultKey, result: QualityResult) -> PutOutcome:
        analysis_id, ctg_entry_id = key
        record = self.get(key)
        created = record is None
        previous_version = None if created else record.calculation_version

        if created:
            record = QualityResultRecord(
                analysis_id=analysis_id,
                ctg_entry_id=ctg_entry_id,
            )
            self.db.add(record)

        self._apply(record, result)
        self.db.flush()

        logger.debug(
            "Quality result %s: analysis=%s ctg_entry=%s factor=%s",
            "inserted" if created else "updated",
            analysis_id,
            ctg_entry_id,
            result.final_factor,
        )
        return PutOutcome(
            record=record, created=created, previous_version=previous_version
        )

    @staticmethod
    def _apply(record: QualityResultRecord, result: QualityResult) -> None:
        payload = result.to_dict()
        waste = result.humidity_waste

        record.grain_type = result.grain_type
        record.base_factor = result.base_factor
        record.final_factor = result.final_factor
        record.total_bonus = result.total_bonus
        record.total_discount = result.total_discount
        record.humidity_factor_discount = result.humidity_factor_discount
        record.grade = result.grade
        record.grade_factor = result.grade_factor
        record.worst_parameter = result.worst_parameter
        record.humidity_waste_percent = waste.waste_percent
        record.humidity_waste_kg = waste.waste_kg
        record.handling_waste_percent = waste.handling_waste_percent
        record.net_quantity_kg = waste.net_quantity_kg
        record.requires_drying = waste.requires_drying
        record.out_of_standard = result.out_of_standard
        record.out_of_tolerance = result.out_of_tolerance
        record.grade_by_parameter = payload["grade_by_parameter"]
        record.bonus_details = payload["bonuses"]
        record.discount_details = payload["discounts"]
        record.warnings = payload["warnings"]
        record.calculation_steps = payload["calculation_steps"]
        record.price_adjustment = payload["price_adjustment"]
        record.calculation_version = result.calculation_version
        record.calculated_at = utcnow()
