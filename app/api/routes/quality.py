"""Quality endpoints.

Attach laboratory analyses to CTG entries, read a lot's latest quality
state, preview a calculation without persisting it, and list stored
results that fall outside the trade standard.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.api.dependencies import get_tenant_id
from app.core.config import settings
from app.core.database import get_db
from app.core.logging import get_logger
from app.models.ctg_entry import CtgEntry
from app.models.quality import QualityAnalysis, QualityResultRecord
from app.models.settlement import Settlement
from app.schemas.quality import (
    CalculationRequest,
    CalculationResponse,
    CtgQualityResponse,
    QualityAnalysisCreate,
    QualityAnalysisResponse,
    QualityResultResponse,
)
from app.services.quality.calculator import FactorCalculator
from app.services.quality.discrepancy import DiscrepancyThresholds, detect_discrepancy
from app.services.settlement.recalculation import discrepancy_item, latest_result

logger = get_logger(__name__)

router = APIRouter()


def _get_entry_or_404(db: Session, ctg_entry_id: UUID, owner_id: str) -> CtgEntry:
    entry = (
        db.query(CtgEntry)
        .join(Settlement, CtgEntry.settlement_id == Settlement.id)
        .filter(CtgEntry.id == ctg_entry_id, Settlement.owner_id == owner_id)
        .one_or_none()
    )
    if entry is None:
        raise HTTPException(
            status_code=404, detail=f"CTG entry {ctg_entry_id} not found"
        )
    return entry


@router.post("/calculate", response_model=CalculationResponse)
def calculate_quality(payload: CalculationRequest) -> CalculationResponse:
    """Run the factor calculator on ad-hoc measurements.

    Nothing is stored.  Unknown grain types and out-of-range values come
    back as warnings in the response body.
    """
    calculator = FactorCalculator.from_settings(settings)
    result = calculator.calculate(
        payload.analysis,
        payload.grain_type,
        quantity_kg=payload.quantity_kg,
        base_price_per_ton=payload.base_price_per_ton,
    )
    return CalculationResponse(**result.to_dict())


@router.post(
    "/ctg/{ctg_entry_id}/analyses",
    response_model=QualityAnalysisResponse,
    status_code=201,
)
def create_analysis(
    ctg_entry_id: UUID,
    payload: QualityAnalysisCreate,
    owner_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> QualityAnalysis:
    """Attach a new laboratory analysis to a CTG entry.

    Analyses are never edited: a correction is a new analysis, and the one
    with the latest ``analysis_date`` becomes authoritative.
    """
    entry = _get_entry_or_404(db, ctg_entry_id, owner_id)
    analysis = QualityAnalysis(
        ctg_entry_id=entry.id,
        **payload.model_dump(exclude_none=True),
    )
    db.add(analysis)
    db.commit()
    db.refresh(analysis)
    logger.info(
        "Analysis attached: ctg=%s analysis=%s humidity=%s",
        entry.ctg_number,
        analysis.id,
        analysis.humidity,
    )
    return analysis


@router.get("/ctg/{ctg_entry_id}", response_model=CtgQualityResponse)
def get_ctg_quality(
    ctg_entry_id: UUID,
    owner_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> CtgQualityResponse:
    """Latest analysis, its stored result and the factor discrepancy."""
    entry = _get_entry_or_404(db, ctg_entry_id, owner_id)
    analysis = entry.latest_analysis
    record = latest_result(db, entry)

    discrepancy = None
    if record is not None:
        check = detect_discrepancy(
            entry.factor,
            record.final_factor,
            DiscrepancyThresholds.from_settings(settings),
        )
        if check is not None:
            discrepancy = discrepancy_item(entry, check)

    return CtgQualityResponse(
        ctg_entry_id=entry.id,
        ctg_number=entry.ctg_number,
        original_factor=entry.factor,
        latest_analysis=(
            QualityAnalysisResponse.model_validate(analysis) if analysis else None
        ),
        latest_result=(
            QualityResultResponse.model_validate(record) if record else None
        ),
        discrepancy=discrepancy,
    )


@router.get("/results/out-of-standard", response_model=list[QualityResultResponse])
def list_out_of_standard(
    include_out_of_tolerance: bool = Query(
        False, description="Also list results that are only out of tolerance"
    ),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    owner_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> list:
    """Stored results of the tenant that breach a hard limit."""
    flag = QualityResultRecord.out_of_standard.is_(True)
    if include_out_of_tolerance:
        flag = or_(flag, QualityResultRecord.out_of_tolerance.is_(True))

    query = (
        db.query(QualityResultRecord)
        .join(CtgEntry, QualityResultRecord.ctg_entry_id == CtgEntry.id)
        .join(Settlement, CtgEntry.settlement_id == Settlement.id)
        .filter(Settlement.owner_id == owner_id, flag)
        .order_by(QualityResultRecord.calculated_at.desc())
    )
    offset = (page - 1) * limit
    return query.offset(offset).limit(limit).all()
