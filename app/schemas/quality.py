"""Pydantic schemas for quality analyses and calculated results."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.recalculation import DiscrepancyItem


class AnalysisMeasurements(BaseModel):
    """Measured parameters.  Percentages except hectoliter_weight (kg/hl).

    Values are not range-checked here: the calculator clamps out-of-range
    values and reports them as critical warnings.
    """

    humidity: Optional[Decimal] = None
    foreign_matter: Optional[Decimal] = None
    damaged_grains: Optional[Decimal] = None
    hectoliter_weight: Optional[Decimal] = None
    protein: Optional[Decimal] = None
    broken_grains: Optional[Decimal] = None
    green_grains: Optional[Decimal] = None
    burnt_grains: Optional[Decimal] = None
    sprouted_grains: Optional[Decimal] = None
    pest_damaged_grains: Optional[Decimal] = None
    fat_content: Optional[Decimal] = Field(None, description="Sunflower only")
    acidity: Optional[Decimal] = Field(None, description="Sunflower only")


class QualityAnalysisCreate(AnalysisMeasurements):
    """Schema for attaching a laboratory analysis to a CTG entry."""

    analysis_date: Optional[datetime] = None
    laboratory: Optional[str] = Field(None, max_length=150)
    observations: Optional[str] = None


class QualityAnalysisResponse(QualityAnalysisCreate):
    """Schema returned when reading an analysis."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ctg_entry_id: UUID
    analysis_date: datetime
    created_at: Optional[datetime] = None


class CalculationRequest(BaseModel):
    """Stateless calculation preview input."""

    grain_type: str = Field(..., max_length=30)
    analysis: AnalysisMeasurements
    quantity_kg: Optional[Decimal] = Field(None, ge=0)
    base_price_per_ton: Optional[Decimal] = Field(None, ge=0)


class CalculationResponse(BaseModel):
    """Full calculator output, as returned by the preview endpoint."""

    grain_type: str
    base_factor: Decimal
    final_factor: Decimal
    grade: Optional[str] = None
    grade_factor: Decimal = Decimal("0")
    grade_by_parameter: dict[str, str] = Field(default_factory=dict)
    worst_parameter: Optional[str] = None
    bonuses: list[dict[str, Any]] = Field(default_factory=list)
    total_bonus: Decimal
    discounts: list[dict[str, Any]] = Field(default_factory=list)
    total_discount: Decimal
    humidity_factor_discount: Decimal
    humidity_waste: dict[str, Any]
    price_adjustment: Optional[dict[str, Any]] = None
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    out_of_standard: bool
    out_of_tolerance: bool
    calculation_steps: list[dict[str, Any]] = Field(default_factory=list)
    calculation_version: str


class QualityResultResponse(BaseModel):
    """Stored result row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    analysis_id: UUID
    ctg_entry_id: UUID
    grain_type: str
    base_factor: Decimal
    final_factor: Decimal
    total_bonus: Decimal
    total_discount: Decimal
    humidity_factor_discount: Decimal
    grade: Optional[str] = None
    grade_factor: Decimal = Decimal("0")
    worst_parameter: Optional[str] = None
    humidity_waste_percent: Decimal
    humidity_waste_kg: Optional[Decimal] = None
    handling_waste_percent: Decimal = Decimal("0")
    net_quantity_kg: Optional[Decimal] = None
    requires_drying: bool
    out_of_standard: bool
    out_of_tolerance: bool
    grade_by_parameter: Optional[dict[str, Any]] = None
    bonus_details: Optional[list[Any]] = None
    discount_details: Optional[list[Any]] = None
    warnings: Optional[list[Any]] = None
    calculation_steps: Optional[list[Any]] = None
    price_adjustment: Optional[dict[str, Any]] = None
    calculation_version: str
    calculated_at: Optional[datetime] = None


class CtgQualityResponse(BaseModel):
    """Latest analysis, latest result and discrepancy for one lot."""

    ctg_entry_id: UUID
    ctg_number: str
    original_factor: Optional[Decimal] = None
    latest_analysis: Optional[QualityAnalysisResponse] = None
    latest_result: Optional[QualityResultResponse] = None
    discrepancy: Optional[DiscrepancyItem] = None
