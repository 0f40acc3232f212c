"""Settlement model: one liquidación issued by a buyer for a grain delivery."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Date, DateTime, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.ctg_entry import CtgEntry

STATUS_PENDING_PROCESSING = "pending_processing"
STATUS_DRAFT = "draft"
STATUS_VALIDATED = "validated"
STATUS_NEEDS_REVIEW = "needs_review"

SETTLEMENT_STATUSES = (
    STATUS_PENDING_PROCESSING,
    STATUS_DRAFT,
    STATUS_VALIDATED,
    STATUS_NEEDS_REVIEW,
)


class Settlement(Base):
    """Aggregate root for a settlement and its CTG lines.

    ``owner_id`` scopes every read and write to one tenant.
    """

    __tablename__ = "settlements"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    owner_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    settlement_number: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    grain_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    settlement_date: Mapped[Optional[date]] = mapped_column(
        Date,
    )
    price_per_ton: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    gross_kg: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    net_kg: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    gross_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    net_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=STATUS_DRAFT,
        comment="pending_processing | draft | validated | needs_review",
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
    ctg_entries: Mapped[list[CtgEntry]] = relationship(
        "CtgEntry",
        back_populates="settlement",
        order_by="CtgEntry.line_number",
        cascade="all, delete-orphan",
        lazy="select",
    )

    __table_args__ = (Index("ix_settlement_owner_status", "owner_id", "status"),)

    def __repr__(self) -> str:
        return (
            f"<Settlement(number={self.settlement_number!r}, "
            f"grain_type={self.grain_type!r}, status={self.status!r})>"
        )
