"""CTG entry model: one lot (carta de porte) listed on a settlement."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.quality import QualityAnalysis
    from app.models.settlement import Settlement


class CtgEntry(Base):
    """A settlement line.

    ``factor`` is the factor printed on the settlement document; the
    recalculation writes ``calculated_factor`` and ``discrepancy_status``
    next to it.
    """

    __tablename__ = "ctg_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    settlement_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("settlements.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ctg_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )
    gross_kg: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    net_kg: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    waste_kg: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    factor: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(7, 2),
        nullable=True,
    )
    calculated_factor: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(7, 2),
        nullable=True,
    )
    discrepancy_status: Mapped[Optional[str]] = mapped_column(
        String(10),
        nullable=True,
        comment="OK | WARNING | CRITICAL",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )

    # -- Relationships --
    settlement: Mapped[Settlement] = relationship(
        "Settlement",
        back_populates="ctg_entries",
    )
    analyses: Mapped[list[QualityAnalysis]] = relationship(
        "QualityAnalysis",
        back_populates="ctg_entry",
        cascade="all, delete-orphan",
        lazy="select",
    )

    @property
    def latest_analysis(self) -> Optional[QualityAnalysis]:
        """The authoritative analysis: latest date, ties by creation time."""
        if not self.analyses:
            return None
        return max(
            self.analyses,
            key=lambda a: (a.analysis_date, a.created_at or datetime.min),
        )

    def __repr__(self) -> str:
        return (
            f"<CtgEntry(ctg_number={self.ctg_number!r}, "
            f"line={self.line_number}, factor={self.factor})>"
        )
