"""Settlement endpoints.

Register settlements with their CTG entries, read them back, run the
quality recalculation and list factor discrepancies.  Every route is
scoped to the tenant in the ``X-Tenant-Id`` header.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.dependencies import get_tenant_id
from app.core.config import settings
from app.core.database import get_db
from app.core.logging import get_logger
from app.models.ctg_entry import CtgEntry
from app.models.settlement import Settlement
from app.schemas.recalculation import (
    DiscrepancyListResponse,
    EntryOutcomeResponse,
    RecalculationReportResponse,
)
from app.schemas.settlement import (
    SettlementCreate,
    SettlementDetailResponse,
    SettlementSummary,
)
from app.services.quality.discrepancy import DiscrepancyThresholds
from app.services.settlement.recalculation import (
    RecalculationReport,
    SettlementNotFoundError,
    SettlementRecalculator,
    collect_discrepancies,
    latest_result,
    load_settlement,
)

logger = get_logger(__name__)

router = APIRouter()


def _get_settlement_or_404(db: Session, settlement_id: UUID, owner_id: str) -> Settlement:
    try:
        return load_settlement(db, settlement_id, owner_id)
    except SettlementNotFoundError:
        raise HTTPException(
            status_code=404, detail=f"Settlement {settlement_id} not found"
        )


def _report_response(report: RecalculationReport) -> RecalculationReportResponse:
    return RecalculationReportResponse(
        settlement_id=report.settlement_id,
        total_ctgs=report.total_ctgs,
        recalculated=report.recalculated,
        skipped=report.skipped,
        failed=report.failed,
        status=report.status,
        discrepancies=report.discrepancies,
        results=[
            EntryOutcomeResponse(
                ctg_entry_id=o.ctg_entry_id,
                ctg_number=o.ctg_number,
                status=o.status,
                reason=o.reason,
                result_id=o.result_id,
                final_factor=o.final_factor,
                created=o.created,
                discrepancy=o.discrepancy.to_dict() if o.discrepancy else None,
            )
            for o in report.results
        ],
    )


@router.post("", response_model=SettlementDetailResponse, status_code=201)
def create_settlement(
    payload: SettlementCreate,
    owner_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> SettlementDetailResponse:
    """Register a settlement and its CTG entries for the calling tenant.

    Lines without an explicit ``line_number`` are numbered in the order
    they were submitted.
    """
    settlement = Settlement(
        owner_id=owner_id,
        **payload.model_dump(exclude={"ctg_entries"}),
    )
    for index, entry in enumerate(payload.ctg_entries, start=1):
        data = entry.model_dump()
        if data.get("line_number") is None:
            data["line_number"] = index
        settlement.ctg_entries.append(CtgEntry(**data))

    db.add(settlement)
    db.commit()
    db.refresh(settlement)
    logger.info(
        "Settlement registered: id=%s owner=%s entries=%d",
        settlement.id,
        owner_id,
        len(settlement.ctg_entries),
    )
    return get_settlement(settlement.id, owner_id, db)


@router.get("/{settlement_id}", response_model=SettlementDetailResponse)
def get_settlement(
    settlement_id: UUID,
    owner_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> SettlementDetailResponse:
    """Settlement with its lines and a quality summary."""
    settlement = _get_settlement_or_404(db, settlement_id, owner_id)
    thresholds = DiscrepancyThresholds.from_settings(settings)

    entries = settlement.ctg_entries
    summary = SettlementSummary(
        total_ctgs=len(entries),
        ctgs_with_analysis=sum(1 for e in entries if e.analyses),
        ctgs_with_quality=sum(
            1 for e in entries if latest_result(db, e) is not None
        ),
        discrepancies=len(collect_discrepancies(db, settlement, thresholds)),
    )

    response = SettlementDetailResponse.model_validate(settlement)
    response.summary = summary
    return response


@router.post("/{settlement_id}/recalculate", response_model=RecalculationReportResponse)
def recalculate_settlement(
    settlement_id: UUID,
    owner_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> RecalculationReportResponse:
    """Recalculate every CTG entry and update the settlement status.

    Entries without an analysis are skipped and entries that fail to
    persist are reported as failed; neither turns the response into an
    error.
    """
    recalculator = SettlementRecalculator(db, settings)
    try:
        report = recalculator.recalculate(settlement_id, owner_id)
    except SettlementNotFoundError:
        raise HTTPException(
            status_code=404, detail=f"Settlement {settlement_id} not found"
        )
    return _report_response(report)


@router.get(
    "/{settlement_id}/discrepancies", response_model=DiscrepancyListResponse
)
def list_settlement_discrepancies(
    settlement_id: UUID,
    owner_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> DiscrepancyListResponse:
    """Lines whose stored calculated factor differs from the original one."""
    settlement = _get_settlement_or_404(db, settlement_id, owner_id)
    items = collect_discrepancies(
        db, settlement, DiscrepancyThresholds.from_settings(settings)
    )
    return DiscrepancyListResponse(
        settlement_id=settlement.id, total=len(items), items=items
    )
