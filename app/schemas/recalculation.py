"""Pydantic schemas for recalculation reports and discrepancies."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DiscrepancyCheckResponse(BaseModel):
    """Calculated vs. original factor for one lot."""

    original_factor: Decimal
    calculated_factor: Decimal
    difference: Decimal = Field(..., description="calculated - original")
    has_discrepancy: bool
    status: str = Field(..., description="OK | WARNING | CRITICAL")


class DiscrepancyItem(DiscrepancyCheckResponse):
    """Discrepancy tied to the CTG entry it was found on."""

    ctg_entry_id: UUID
    ctg_number: str


class EntryOutcomeResponse(BaseModel):
    ctg_entry_id: UUID
    ctg_number: str
    status: str = Field(..., description="recalculated | skipped | failed")
    reason: Optional[str] = None
    result_id: Optional[UUID] = None
    final_factor: Optional[Decimal] = None
    created: Optional[bool] = None
    discrepancy: Optional[DiscrepancyCheckResponse] = None


class RecalculationReportResponse(BaseModel):
    """Summary of a settlement recalculation run."""

    settlement_id: UUID
    total_ctgs: int
    recalculated: int
    skipped: int
    failed: int
    status: str
    discrepancies: list[DiscrepancyItem] = Field(default_factory=list)
    results: list[EntryOutcomeResponse] = Field(default_factory=list)


class DiscrepancyListResponse(BaseModel):
    settlement_id: UUID
    total: int
    items: list[DiscrepancyItem] = Field(default_factory=list)
