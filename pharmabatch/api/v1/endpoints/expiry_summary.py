"""
Expiry Summary API Endpoints - dashboard views over current batch stock.
"""
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.database import get_db
from pharmabatch.schemas.expiry_trend import (
    ExpirySummaryResponse, CriticalItem, BatchExpiryReportResponse,
)
from pharmabatch.services.expiry_summary_service import ExpirySummaryService

router = APIRouter()


@router.get(
    "",
    response_model=ExpirySummaryResponse,
    summary="Expiry Dashboard Summary"
)
async def get_expiry_summary(
    db: AsyncSession = Depends(get_db),
):
    service = ExpirySummaryService(db)
    return await service.get_expiry_summary()


@router.get(
    "/critical",
    response_model=List[CriticalItem],
    summary="Most Urgent Batches"
)
async def get_critical_items(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """ACTIVE batches expiring soonest, with severity."""
    service = ExpirySummaryService(db)
    return await service.get_critical_items(limit=limit)


@router.get(
    "/report",
    response_model=BatchExpiryReportResponse,
    summary="Batch Expiry Report"
)
async def get_batch_expiry_report(
    db: AsyncSession = Depends(get_db),
):
    """Status counts, values and batches bucketed by days to expiry."""
    service = ExpirySummaryService(db)
    return await service.generate_batch_expiry_report()
