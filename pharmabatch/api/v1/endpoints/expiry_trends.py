"""
Expiry Trend API Endpoints.

Daily snapshots, trend analysis at different granularities, moving-average
predictions, per-category breakdowns, period comparison and CSV export.
"""
import csv
import io
from datetime import date
from typing import Optional, List, Dict, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.database import get_db
from pharmabatch.api.deps import unwrap
from pharmabatch.schemas.expiry_trend import (
    ExpiryTrendSnapshotResponse, CurrentTrendResponse,
    TrendAnalysisResponse, CategoryTrendPointResponse, PeriodComparisonRequest,
    PredictionResponse,
)
from pharmabatch.services.expiry_prediction_service import ExpiryPredictionService
from pharmabatch.services.expiry_trend_service import ExpiryTrendService
from pharmabatch.services.trend_analytics import EXPORT_COLUMNS, TrendGranularity

router = APIRouter()


# ============================================================================
# SNAPSHOTS
# ============================================================================

@router.post(
    "/snapshots",
    response_model=ExpiryTrendSnapshotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Capture Expiry Snapshot"
)
async def capture_snapshot(
    snapshot_date: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
):
    """Capture the snapshot for a date. Returns the existing one if already captured."""
    service = ExpiryTrendService(db)
    return await service.capture_snapshot(snapshot_date)


@router.post(
    "/snapshots/{snapshot_date}/recompute",
    response_model=ExpiryTrendSnapshotResponse,
    summary="Recompute Expiry Snapshot"
)
async def recompute_snapshot(
    snapshot_date: date,
    db: AsyncSession = Depends(get_db),
):
    """Recompute a snapshot in place from current batch data."""
    service = ExpiryTrendService(db)
    return await service.recompute_snapshot(snapshot_date)


@router.get(
    "/snapshots",
    response_model=List[ExpiryTrendSnapshotResponse],
    summary="List Snapshots"
)
async def list_snapshots(
    start: date,
    end: date,
    db: AsyncSession = Depends(get_db),
):
    service = ExpiryTrendService(db)
    return await service.get_snapshots(start, end)


@router.get(
    "/snapshots/{snapshot_date}",
    response_model=ExpiryTrendSnapshotResponse,
    summary="Get Snapshot"
)
async def get_snapshot(
    snapshot_date: date,
    db: AsyncSession = Depends(get_db),
):
    service = ExpiryTrendService(db)
    return unwrap(await service.get_snapshot_or_error(snapshot_date))


@router.get(
    "/current",
    response_model=CurrentTrendResponse,
    summary="Current Expiry Trends"
)
async def get_current_trends(
    db: AsyncSession = Depends(get_db),
):
    """Today's snapshot (captured on demand) compared with the one a week earlier."""
    service = ExpiryTrendService(db)
    return await service.get_current_trends()


# ============================================================================
# ANALYSIS
# ============================================================================

@router.get(
    "/analysis",
    response_model=TrendAnalysisResponse,
    summary="Analyze Expiry Trends"
)
async def analyze_trends(
    start: date,
    end: date,
    granularity: TrendGranularity = TrendGranularity.DAILY,
    db: AsyncSession = Depends(get_db),
):
    service = ExpiryTrendService(db)
    return unwrap(await service.analyze_trends(start, end, granularity.value))


@router.get(
    "/analysis/categories/{category_id}",
    response_model=TrendAnalysisResponse,
    summary="Analyze Category Expiry Trends"
)
async def analyze_category_trends(
    category_id: UUID,
    start: date,
    end: date,
    granularity: TrendGranularity = TrendGranularity.DAILY,
    db: AsyncSession = Depends(get_db),
):
    """Trend analysis with the category breakdown narrowed to one category."""
    service = ExpiryTrendService(db)
    return unwrap(await service.analyze_category_trends(start, end, category_id, granularity.value))


@router.get(
    "/by-category",
    response_model=Dict[str, List[CategoryTrendPointResponse]],
    summary="Category-wise Expiry Trends"
)
async def get_category_trends(
    days_back: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    """Daily expiry series per category, from `days_back` days ago through the next 30 days."""
    service = ExpiryTrendService(db)
    return await service.get_category_trends(days_back=days_back)


@router.get(
    "/predictions",
    response_model=PredictionResponse,
    summary="Predict Expiries"
)
async def get_predictions(
    days_ahead: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    """Moving-average forecast of daily expiries over the next `days_ahead` days."""
    service = ExpiryPredictionService(db)
    return unwrap(await service.generate_predictions(days_ahead=days_ahead))


@router.post(
    "/compare",
    summary="Compare Two Periods"
)
async def compare_periods(
    data: PeriodComparisonRequest,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    service = ExpiryTrendService(db)
    return unwrap(await service.compare_periods(
        data.period1_start, data.period1_end, data.period2_start, data.period2_end
    ))


# ============================================================================
# EXPORT
# ============================================================================

@router.get(
    "/export",
    summary="Export Snapshots"
)
async def export_snapshots(
    start: date,
    end: date,
    format: str = Query("json", pattern="^(json|csv)$"),
    db: AsyncSession = Depends(get_db),
):
    """Export snapshot rows as JSON or as a CSV attachment."""
    service = ExpiryTrendService(db)
    rows = await service.export_rows(start, end)

    if format == "json":
        return rows

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
    filename = f"expiry_trends_{start.isoformat()}_{end.isoformat()}.csv"

    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )
