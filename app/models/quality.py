"""Quality analysis and calculated result models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.ctg_entry import CtgEntry


def utcnow() -> datetime:
    # Naive UTC with microseconds; the latest-analysis tie-break relies on it
    return datetime.now(timezone.utc).replace(tzinfo=None)


class QualityAnalysis(Base):
    """Laboratory analysis of a lot.  Rows are never updated once stored."""

    __tablename__ = "quality_analyses"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    ctg_entry_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("ctg_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    analysis_date: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    laboratory: Mapped[Optional[str]] = mapped_column(String(150))

    # Percentages, except hectoliter_weight (kg/hl)
    humidity: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    foreign_matter: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    damaged_grains: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    hectoliter_weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    protein: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    broken_grains: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    green_grains: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    burnt_grains: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    sprouted_grains: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    pest_damaged_grains: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    fat_content: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))
    acidity: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 3))

    observations: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
    )

    # -- Relationships --
    ctg_entry: Mapped[CtgEntry] = relationship(
        "CtgEntry",
        back_populates="analyses",
    )

    def __repr__(self) -> str:
        return (
            f"<QualityAnalysis(ctg_entry_id={self.ctg_entry_id}, "
            f"humidity={self.humidity}, date={self.analysis_date})>"
        )


class QualityResultRecord(Base):
    """Persisted ``QualityResult``; one row per (analysis, CTG entry)."""

    __tablename__ = "quality_results"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    analysis_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("quality_analyses.id", ondelete="CASCADE"),
        nullable=False,
    )
    ctg_entry_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("ctg_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    grain_type: Mapped[str] = mapped_column(String(30), nullable=False)

    base_factor: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)
    final_factor: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)
    total_bonus: Mapped[Decimal] = mapped_column(Numeric(7, 2), default=0)
    total_discount: Mapped[Decimal] = mapped_column(Numeric(7, 2), default=0)
    humidity_factor_discount: Mapped[Decimal] = mapped_column(
        Numeric(7, 2), default=0
    )
    grade: Mapped[Optional[str]] = mapped_column(String(5))
    grade_factor: Mapped[Decimal] = mapped_column(Numeric(7, 2), default=0)
    worst_parameter: Mapped[Optional[str]] = mapped_column(String(50))

    humidity_waste_percent: Mapped[Decimal] = mapped_column(
        Numeric(7, 2), default=0
    )
    humidity_waste_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    handling_waste_percent: Mapped[Decimal] = mapped_column(
        Numeric(7, 2), default=0
    )
    net_quantity_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    requires_drying: Mapped[bool] = mapped_column(Boolean, default=False)

    out_of_standard: Mapped[bool] = mapped_column(Boolean, default=False)
    out_of_tolerance: Mapped[bool] = mapped_column(Boolean, default=False)

    grade_by_parameter: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    bonus_details: Mapped[Optional[list[Any]]] = mapped_column(JSON)
    discount_details: Mapped[Optional[list[Any]]] = mapped_column(JSON)
    warnings: Mapped[Optional[list[Any]]] = mapped_column(JSON)
    calculation_steps: Mapped[Optional[list[Any]]] = mapped_column(JSON)
    price_adjustment: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)

    calculation_version: Mapped[str] = mapped_column(String(50), nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    # -- Relationships --
    analysis: Mapped[QualityAnalysis] = relationship("QualityAnalysis")
    ctg_entry: Mapped[CtgEntry] = relationship("CtgEntry")

    __table_args__ = (
        UniqueConstraint(
            "analysis_id", "ctg_entry_id", name="uq_quality_result_analysis_ctg"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<QualityResultRecord(ctg_entry_id={self.ctg_entry_id}, "
            f"final_factor={self.final_factor}, grade={self.grade!r})>"
        )
