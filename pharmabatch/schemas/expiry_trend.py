"""
Expiry Trend & Summary Schemas.

Response models for snapshots, trend analysis, predictions and the
dashboard summary views.
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


# ============================================================================
# SNAPSHOT SCHEMAS
# ============================================================================

class ExpiryTrendSnapshotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    snapshot_date: date
    total_products: int

    expired_count: int
    expiring_7_days: int
    expiring_30_days: int
    expiring_60_days: int
    expiring_90_days: int

    expired_value: Decimal
    expiring_7_days_value: Decimal
    expiring_30_days_value: Decimal
    expiring_60_days_value: Decimal
    expiring_90_days_value: Decimal

    avg_days_to_expiry: float

    critical_category_id: Optional[UUID] = None
    critical_category_name: Optional[str] = None
    critical_category_count: Optional[int] = None

    trend_direction: str
    trend_percentage: float
    created_at: datetime


class SnapshotComparison(BaseModel):
    previous_date: date
    expired_count_change: int
    expired_count_change_percent: float
    value_at_risk_change: Decimal
    value_at_risk_change_percent: float


class CurrentTrendResponse(BaseModel):
    snapshot: ExpiryTrendSnapshotResponse
    comparison: Optional[SnapshotComparison] = None


# ============================================================================
# ANALYSIS SCHEMAS
# ============================================================================

class TrendPointResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_start: date
    period_end: date
    label: str
    expired_count: float
    expiring_7_days: float
    expiring_30_days: float
    expiring_60_days: float
    expiring_90_days: float
    expired_value: Decimal
    expiring_30_days_value: Decimal
    trend_direction: str
    percentage_change: float
    sample_size: int


class SummaryStatisticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_expired: int
    total_expiring: int
    total_value_lost: Decimal
    total_value_at_risk: Decimal
    average_expiry_rate: float
    overall_trend: str
    trend_strength: float
    data_points: int


class TrendInsightResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    title: str
    description: str
    recommendation: str
    severity: float


class CategoryAnalysisResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category_name: str
    expiry_count: int
    value_at_risk: Decimal
    percentage_of_total: float
    trend: str
    top_products: List[str]


class TrendAnalysisResponse(BaseModel):
    start: date
    end: date
    granularity: str
    points: List[TrendPointResponse]
    summary: SummaryStatisticsResponse
    insights: List[TrendInsightResponse]
    category_analysis: Dict[str, CategoryAnalysisResponse]


class CategoryTrendPointResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    point_date: date
    label: str
    expired_count: int
    expiring_count: int
    value: Decimal
    trend_direction: str
    percentage_change: float


class PeriodComparisonRequest(BaseModel):
    period1_start: date
    period1_end: date
    period2_start: date
    period2_end: date


# ============================================================================
# PREDICTION SCHEMAS
# ============================================================================

class PredictionPointResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    target_date: date
    predicted_expiry: int
    lower_bound: int
    upper_bound: int
    confidence: float
    estimated_value: Decimal


class PredictionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    prediction_date: date
    days_ahead: int
    algorithm: str
    overall_confidence: float
    risk_level: str
    estimated_loss: Decimal
    data_points_used: int
    points: List[PredictionPointResponse]
    recommendations: List[str]


# ============================================================================
# SUMMARY VIEW SCHEMAS
# ============================================================================

class CriticalItem(BaseModel):
    batch_id: UUID
    product_id: UUID
    product_name: str
    product_code: str
    batch_number: str
    expiry_date: date
    quantity: int
    value: Decimal
    days_until_expiry: int
    severity: str
    category: str


class TrendIndicator(BaseModel):
    percentage_change: float
    direction: str
    severity: str
    message: str


class ExpirySummaryResponse(BaseModel):
    as_of: date
    expired_count: int
    expiring_today_count: int
    expiring_this_week_count: int
    expiring_this_month_count: int
    category_breakdown: Dict[str, int]
    total_value_at_risk: Decimal
    expired_value: Decimal
    critical_items: List[CriticalItem]
    quarantined_items_count: int
    pending_review_count: int
    expired_trend: TrendIndicator


class RangeBatch(BaseModel):
    batch_id: UUID
    product_name: str
    batch_number: str
    quantity: int
    days_until_expiry: int
    value: Decimal


class ExpiryRangeStats(BaseModel):
    range_name: str
    batch_count: int
    total_quantity: int
    total_value: Decimal
    severity: str
    days_range: int
    batches: List[RangeBatch]


class BatchExpiryReportResponse(BaseModel):
    as_of: date
    total_batches: int
    status_counts: Dict[str, int]
    active_batches: int
    quarantined_batches: int
    expiring_batches: int
    expired_batches: int
    total_inventory_value: Decimal
    expiring_inventory_value: Decimal
    expired_inventory_value: Decimal
    ranges: Dict[str, ExpiryRangeStats]


class JobRunResponse(BaseModel):
    job: str
    run_date: date
    started_at: datetime
    duration_ms: int
    result: Dict[str, Any]
