"""Pydantic schemas for settlements and their CTG entries."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.settlement import SETTLEMENT_STATUSES, STATUS_DRAFT
from app.services.quality.rules import normalize_grain_type


class CtgEntryBase(BaseModel):
    """Shared fields for a settlement line."""

    ctg_number: str = Field(..., max_length=50)
    line_number: Optional[int] = Field(None, ge=1)
    gross_kg: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    net_kg: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    waste_kg: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    factor: Optional[Decimal] = Field(
        None,
        max_digits=7,
        decimal_places=2,
        description="Factor printed on the settlement document",
    )


class CtgEntryCreate(CtgEntryBase):
    """Schema for a line submitted with a new settlement."""

    pass


class CtgEntryResponse(CtgEntryBase):
    """Schema returned when reading a settlement line."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    settlement_id: UUID
    line_number: int
    calculated_factor: Optional[Decimal] = None
    discrepancy_status: Optional[str] = None
    created_at: Optional[datetime] = None


class SettlementBase(BaseModel):
    """Shared fields for settlements."""

    settlement_number: Optional[str] = Field(None, max_length=50)
    grain_type: str = Field(..., max_length=30)
    settlement_date: Optional[date] = None
    price_per_ton: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    gross_kg: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    net_kg: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    gross_amount: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)
    net_amount: Optional[Decimal] = Field(None, max_digits=15, decimal_places=2)


class SettlementCreate(SettlementBase):
    """Schema for registering a settlement with its CTG entries."""

    status: str = Field(
        STATUS_DRAFT,
        description="pending_processing | draft | validated | needs_review",
    )
    ctg_entries: list[CtgEntryCreate] = Field(default_factory=list)

    @field_validator("grain_type")
    @classmethod
    def _normalize_grain(cls, v: str) -> str:
        normalized = normalize_grain_type(v)
        if not normalized:
            raise ValueError("grain_type must not be blank")
        return normalized

    @field_validator("status")
    @classmethod
    def _known_status(cls, v: str) -> str:
        if v not in SETTLEMENT_STATUSES:
            raise ValueError(
                f"status must be one of: {', '.join(SETTLEMENT_STATUSES)}"
            )
        return v


class SettlementResponse(SettlementBase):
    """Schema returned when reading a settlement."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SettlementSummary(BaseModel):
    """Counters shown next to a settlement's lines."""

    total_ctgs: int
    ctgs_with_analysis: int
    ctgs_with_quality: int
    discrepancies: int


class SettlementDetailResponse(SettlementResponse):
    """Settlement with its lines and a quality summary."""

    ctg_entries: list[CtgEntryResponse] = Field(default_factory=list)
    summary: Optional[SettlementSummary] = None
