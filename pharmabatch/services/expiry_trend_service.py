"""
Expiry Trend Service - daily snapshot capture and trend queries.

capture_snapshot() is idempotent per calendar date: the first call for a
date computes and stores the row, every later call (including a racing
concurrent one) returns that row unchanged.
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.config import settings
from pharmabatch.core.result import Ok, Result, not_found, validation_error
from pharmabatch.models.batch import ProductBatch, BatchStatus
from pharmabatch.models.expiry_trend import ExpiryTrendSnapshot, TrendDirection
from pharmabatch.models.product import Category, Product
from pharmabatch.services import trend_analytics
from pharmabatch.services.trend_analytics import TrendGranularity


logger = logging.getLogger(__name__)

EXPIRY_WINDOWS = (7, 30, 60, 90)
CRITICAL_CATEGORY_WINDOW = 30

ZERO = Decimal("0")


@dataclass
class _BatchRow:
    quantity: int
    expiry_date: date
    cost_per_unit: Optional[Decimal]
    category_id: Optional[uuid.UUID]

    @property
    def value(self) -> Decimal:
        if self.cost_per_unit is None:
            return ZERO
        return Decimal(str(self.cost_per_unit)) * self.quantity


def classify_trend(expired_count: int, prior_average: Optional[float]) -> Tuple[str, float]:
    """Direction and percentage of expired_count against the prior average."""
    if not prior_average:
        return TrendDirection.STABLE.value, 0.0

    pct = (expired_count - prior_average) / prior_average * 100
    threshold = settings.TREND_THRESHOLD_PERCENT
    if pct > threshold:
        return TrendDirection.WORSENING.value, pct
    if pct < -threshold:
        return TrendDirection.IMPROVING.value, pct
    return TrendDirection.STABLE.value, pct


class ExpiryTrendService:
    """Service for expiry trend snapshots."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== CAPTURE ====================

    async def capture_snapshot(self, snapshot_date: Optional[date] = None) -> ExpiryTrendSnapshot:
        """Capture the snapshot for a date, or return the one already stored."""
        snapshot_date = snapshot_date or date.today()

        existing = await self.get_snapshot(snapshot_date)
        if existing is not None:
            logger.info(f"Snapshot already exists for {snapshot_date}")
            return existing

        logger.info(f"Capturing expiry trend snapshot for {snapshot_date}")
        snapshot = ExpiryTrendSnapshot(id=uuid.uuid4(), snapshot_date=snapshot_date)
        await self._populate(snapshot, snapshot_date)
        try:
            async with self.db.begin_nested():
                self.db.add(snapshot)
                await self.db.flush()
        except IntegrityError:
            # Another capture for the same date committed first
            logger.info(f"Concurrent snapshot capture for {snapshot_date}; using stored row")
            winner = await self.get_snapshot(snapshot_date)
            if winner is None:
                raise
            return winner

        logger.info(
            f"Snapshot {snapshot_date}: expired={snapshot.expired_count} "
            f"expiring_30={snapshot.expiring_30_days} trend={snapshot.trend_direction}"
        )
        return snapshot

    async def recompute_snapshot(self, snapshot_date: date) -> ExpiryTrendSnapshot:
        """Explicitly rebuild a stored snapshot from current batch data."""
        snapshot = await self.get_snapshot(snapshot_date)
        if snapshot is None:
            return await self.capture_snapshot(snapshot_date)

        await self._populate(snapshot, snapshot_date)
        await self.db.flush()
        logger.info(f"Recomputed snapshot for {snapshot_date}")
        return snapshot

    async def _populate(self, snapshot: ExpiryTrendSnapshot, snapshot_date: date) -> None:
        rows = await self._load_active_batches()

        expired = [r for r in rows if r.expiry_date < snapshot_date]
        snapshot.total_products = len(rows)
        snapshot.expired_count = len(expired)
        snapshot.expired_value = sum((r.value for r in expired), ZERO)

        for days in EXPIRY_WINDOWS:
            horizon = snapshot_date + timedelta(days=days)
            window = [r for r in rows if snapshot_date < r.expiry_date <= horizon]
            setattr(snapshot, f"expiring_{days}_days", len(window))
            setattr(snapshot, f"expiring_{days}_days_value", sum((r.value for r in window), ZERO))

        remaining = [(r.expiry_date - snapshot_date).days for r in rows if r.expiry_date > snapshot_date]
        snapshot.avg_days_to_expiry = sum(remaining) / len(remaining) if remaining else 0.0

        category_id, count = self._critical_category(rows, snapshot_date)
        snapshot.critical_category_id = category_id
        snapshot.critical_category_count = count
        snapshot.critical_category_name = None
        if category_id is not None:
            category = await self.db.get(Category, category_id)
            snapshot.critical_category_name = category.name if category else None

        prior_average = await self._prior_average_expired(snapshot_date)
        direction, pct = classify_trend(snapshot.expired_count, prior_average)
        snapshot.trend_direction = direction
        snapshot.trend_percentage = pct

    async def _load_active_batches(self) -> List[_BatchRow]:
        result = await self.db.execute(
            select(
                ProductBatch.quantity,
                ProductBatch.expiry_date,
                ProductBatch.cost_per_unit,
                Product.category_id,
            )
            .join(Product, Product.id == ProductBatch.product_id)
            .where(ProductBatch.status == BatchStatus.ACTIVE.value)
        )
        return [_BatchRow(*row) for row in result.all()]

    @staticmethod
    def _critical_category(
        rows: List[_BatchRow], snapshot_date: date
    ) -> Tuple[Optional[uuid.UUID], Optional[int]]:
        """Category with most batches expiring within 30 days; ties go to the lowest id."""
        horizon = snapshot_date + timedelta(days=CRITICAL_CATEGORY_WINDOW)
        counts: Dict[uuid.UUID, int] = defaultdict(int)
        for r in rows:
            if r.category_id is not None and snapshot_date < r.expiry_date <= horizon:
                counts[r.category_id] += 1
        if not counts:
            return None, None
        best = min(counts.items(), key=lambda item: (-item[1], item[0]))
        return best[0], best[1]

    async def _prior_average_expired(self, snapshot_date: date) -> Optional[float]:
        lookback = settings.TREND_LOOKBACK_DAYS
        avg = await self.db.scalar(
            select(func.avg(ExpiryTrendSnapshot.expired_count)).where(
                and_(
                    ExpiryTrendSnapshot.snapshot_date >= snapshot_date - timedelta(days=lookback),
                    ExpiryTrendSnapshot.snapshot_date <= snapshot_date - timedelta(days=1),
                )
            )
        )
        return float(avg) if avg is not None else None

    # ==================== QUERIES ====================

    async def get_snapshot(self, snapshot_date: date) -> Optional[ExpiryTrendSnapshot]:
        result = await self.db.execute(
            select(ExpiryTrendSnapshot).where(ExpiryTrendSnapshot.snapshot_date == snapshot_date)
        )
        return result.scalar_one_or_none()

    async def get_snapshots(self, start: date, end: date) -> List[ExpiryTrendSnapshot]:
        result = await self.db.execute(
            select(ExpiryTrendSnapshot)
            .where(
                and_(
                    ExpiryTrendSnapshot.snapshot_date >= start,
                    ExpiryTrendSnapshot.snapshot_date <= end,
                )
            )
            .order_by(ExpiryTrendSnapshot.snapshot_date)
        )
        return list(result.scalars().all())

    async def get_current_trends(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Today's snapshot (captured on demand) compared with a week earlier."""
        today = today or date.today()
        snapshot = await self.capture_snapshot(today)
        previous = await self.get_snapshot(today - timedelta(days=7))

        comparison = None
        if previous is not None:
            current_risk = snapshot.expired_value + snapshot.expiring_30_days_value
            previous_risk = previous.expired_value + previous.expiring_30_days_value
            comparison = {
                "previous_date": previous.snapshot_date,
                "expired_count_change": snapshot.expired_count - previous.expired_count,
                "expired_count_change_percent": trend_analytics.percentage_change(
                    previous.expired_count, snapshot.expired_count
                ),
                "value_at_risk_change": current_risk - previous_risk,
                "value_at_risk_change_percent": trend_analytics.percentage_change(
                    previous_risk, current_risk
                ),
            }
        return {"snapshot": snapshot, "comparison": comparison}

    async def analyze_trends(
        self,
        start: date,
        end: date,
        granularity: str = TrendGranularity.DAILY.value,
        today: Optional[date] = None,
    ) -> Result[Dict[str, Any]]:
        if start > end:
            return validation_error("start date must not be after end date", start=start, end=end)
        try:
            level = TrendGranularity(granularity.upper())
        except ValueError:
            return validation_error(f"Unknown granularity '{granularity}'", granularity=granularity)

        snapshots = await self.get_snapshots(start, end)
        summary = trend_analytics.summarize(snapshots)
        return Ok({
            "start": start,
            "end": end,
            "granularity": level.value,
            "points": trend_analytics.aggregate(snapshots, level),
            "summary": summary,
            "insights": trend_analytics.generate_insights(summary),
            "category_analysis": trend_analytics.analyze_categories(
                await self._load_category_batches(),
                start,
                end,
                today or date.today(),
                await self._count_batches(),
            ),
        })

    async def analyze_category_trends(
        self,
        start: date,
        end: date,
        category_id: uuid.UUID,
        granularity: str = TrendGranularity.DAILY.value,
        today: Optional[date] = None,
    ) -> Result[Dict[str, Any]]:
        """Trend analysis with the category breakdown narrowed to one category."""
        category = await self.db.get(Category, category_id)
        if category is None:
            return not_found("Category", category_id)

        logger.info(f"Analyzing category {category.name} trends from {start} to {end}")
        result = await self.analyze_trends(start, end, granularity, today)
        if not result.ok:
            return result

        analysis = result.value
        analysis["category_analysis"] = {
            name: entry
            for name, entry in analysis["category_analysis"].items()
            if name == category.name
        }
        analysis["insights"] = [trend_analytics.category_insight(category.name)] + analysis["insights"]
        return Ok(analysis)

    async def get_category_trends(
        self, days_back: int = 30, today: Optional[date] = None
    ) -> Dict[str, List[trend_analytics.CategoryTrendPoint]]:
        """Daily expiry series per category, from days_back ago through the next 30 days."""
        today = today or date.today()
        return trend_analytics.category_daily_points(
            await self._load_category_batches(),
            today - timedelta(days=days_back),
            today,
        )

    async def _load_category_batches(self) -> List[trend_analytics.CategoryBatch]:
        result = await self.db.execute(
            select(
                Category.name,
                Product.name,
                ProductBatch.expiry_date,
                ProductBatch.quantity,
                ProductBatch.cost_per_unit,
            )
            .join(Product, Product.id == ProductBatch.product_id)
            .join(Category, Category.id == Product.category_id)
        )
        return [trend_analytics.CategoryBatch(*row) for row in result.all()]

    async def _count_batches(self) -> int:
        return await self.db.scalar(select(func.count(ProductBatch.id))) or 0

    async def compare_periods(
        self,
        period1_start: date,
        period1_end: date,
        period2_start: date,
        period2_end: date,
    ) -> Result[Dict[str, Any]]:
        p1 = await self.get_snapshots(period1_start, period1_end)
        p2 = await self.get_snapshots(period2_start, period2_end)
        comparison = trend_analytics.compare_periods(p1, p2)
        if comparison is None:
            return validation_error(
                "Insufficient data for comparison",
                period1_points=len(p1),
                period2_points=len(p2),
            )
        comparison["period1"].update({"start": period1_start, "end": period1_end})
        comparison["period2"].update({"start": period2_start, "end": period2_end})
        return Ok(comparison)

    async def export_rows(self, start: date, end: date) -> List[Dict[str, Any]]:
        return trend_analytics.to_export_rows(await self.get_snapshots(start, end))

    async def get_snapshot_or_error(self, snapshot_date: date) -> Result[ExpiryTrendSnapshot]:
        snapshot = await self.get_snapshot(snapshot_date)
        if snapshot is None:
            return not_found("ExpiryTrendSnapshot", snapshot_date)
        return Ok(snapshot)
