"""
Expiry Summary Service - read-only dashboard and report views.

All views read ACTIVE batches unless stated otherwise; date windows are
pushed into the SQL filter and the remaining bucketing happens in Python.
"""
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.config import settings
from pharmabatch.core.result import Ok, Result, validation_error
from pharmabatch.models.batch import ProductBatch, BatchStatus
from pharmabatch.models.expiry_trend import ExpiryTrendSnapshot
from pharmabatch.models.product import Category, Product
from pharmabatch.models.quarantine import QuarantineRecord, QuarantineStatus


logger = logging.getLogger(__name__)

ZERO = Decimal("0")
UNCATEGORIZED = "Uncategorized"

# (name, lower bound exclusive offset, upper bound inclusive offset, severity, sort key)
EXPIRY_RANGES = [
    ("0-7 days", None, 7, "CRITICAL", 7),
    ("8-30 days", 7, 30, "HIGH", 30),
    ("31-60 days", 30, 60, "MEDIUM", 60),
    ("61-90 days", 60, 90, "LOW", 90),
]
EXPIRED_RANGE = ("Expired", "CRITICAL", 999)


def severity_for(days_until_expiry: int) -> str:
    if days_until_expiry <= 0:
        return "EXPIRED"
    if days_until_expiry <= settings.EXPIRY_CRITICAL_DAYS:
        return "CRITICAL"
    if days_until_expiry <= 15:
        return "HIGH"
    if days_until_expiry <= settings.EXPIRY_WARNING_DAYS:
        return "MEDIUM"
    return "LOW"


class ExpirySummaryService:
    """Dashboard summaries over the batch store."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _active_rows(
        self,
        expiry_from: Optional[date] = None,
        expiry_to: Optional[date] = None,
        before: Optional[date] = None,
    ) -> List[Tuple[ProductBatch, Product, Optional[str]]]:
        conditions = [ProductBatch.status == BatchStatus.ACTIVE.value]
        if expiry_from is not None:
            conditions.append(ProductBatch.expiry_date >= expiry_from)
        if expiry_to is not None:
            conditions.append(ProductBatch.expiry_date <= expiry_to)
        if before is not None:
            conditions.append(ProductBatch.expiry_date < before)

        result = await self.db.execute(
            select(ProductBatch, Product, Category.name)
            .join(Product, Product.id == ProductBatch.product_id)
            .outerjoin(Category, Category.id == Product.category_id)
            .where(and_(*conditions))
            .order_by(ProductBatch.expiry_date, ProductBatch.id)
        )
        return [tuple(row) for row in result.all()]

    # ==================== DASHBOARD SUMMARY ====================

    async def get_expiry_summary(self, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or date.today()
        week_end = today + timedelta(days=settings.EXPIRY_CRITICAL_DAYS)
        month_end = today + timedelta(days=settings.EXPIRY_WARNING_DAYS)

        expired_rows = await self._active_rows(before=today)
        month_rows = await self._active_rows(expiry_from=today, expiry_to=month_end)

        category_breakdown: Dict[str, int] = {}
        for _, _, category_name in month_rows:
            name = category_name or UNCATEGORIZED
            category_breakdown[name] = category_breakdown.get(name, 0) + 1

        total_records = await self.db.scalar(select(func.count(QuarantineRecord.id)))
        pending_review = await self.db.scalar(
            select(func.count(QuarantineRecord.id)).where(
                QuarantineRecord.status == QuarantineStatus.PENDING_REVIEW.value
            )
        )

        critical = await self.get_critical_items(limit=5, today=today)
        expired_trend = await self._expired_trend(len(expired_rows), today)

        summary = {
            "as_of": today,
            "expired_count": len(expired_rows),
            "expiring_today_count": sum(1 for b, _, _ in month_rows if b.expiry_date == today),
            "expiring_this_week_count": sum(1 for b, _, _ in month_rows if b.expiry_date <= week_end),
            "expiring_this_month_count": len(month_rows),
            "category_breakdown": category_breakdown,
            "total_value_at_risk": sum((b.stock_value for b, _, _ in month_rows), ZERO),
            "expired_value": sum((b.stock_value for b, _, _ in expired_rows), ZERO),
            "critical_items": critical,
            "quarantined_items_count": total_records or 0,
            "pending_review_count": pending_review or 0,
            "expired_trend": expired_trend,
        }
        logger.debug(
            f"Expiry summary {today}: expired={summary['expired_count']} "
            f"expiring_30={summary['expiring_this_month_count']}"
        )
        return summary

    async def _expired_trend(self, current_expired: int, today: date) -> Dict[str, Any]:
        """Compare today's expired count with the snapshot (or recount) of a week ago."""
        last_week = today - timedelta(days=7)
        result = await self.db.execute(
            select(ExpiryTrendSnapshot.expired_count).where(
                ExpiryTrendSnapshot.snapshot_date == last_week
            )
        )
        previous = result.scalar_one_or_none()
        if previous is None:
            previous = len(await self._active_rows(before=last_week))

        pct = 0.0
        direction = "STABLE"
        severity = "GOOD"
        if previous > 0:
            pct = (current_expired - previous) / previous * 100
            if pct > 0:
                direction = "UP"
                severity = "CRITICAL" if pct > 20 else "WARNING"
            elif pct < 0:
                direction = "DOWN"
        elif current_expired > 0:
            direction = "UP"
            severity = "WARNING"
            pct = 100.0

        verb = {"UP": "Increased", "DOWN": "Decreased"}.get(direction, "No change")
        return {
            "percentage_change": pct,
            "direction": direction,
            "severity": severity,
            "message": f"{verb} {abs(pct):.1f}% from last week",
        }

    # ==================== CRITICAL ITEMS ====================

    async def get_critical_items(self, limit: int = 10, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """ACTIVE batches expiring within the critical window (or already past it)."""
        today = today or date.today()
        rows = await self._active_rows(expiry_to=today + timedelta(days=settings.EXPIRY_CRITICAL_DAYS))
        return [self._critical_item(b, p, c, today) for b, p, c in rows[:max(limit, 0)]]

    @staticmethod
    def _critical_item(batch: ProductBatch, product: Product, category_name: Optional[str], today: date) -> Dict[str, Any]:
        days = batch.days_until_expiry(today)
        return {
            "batch_id": batch.id,
            "product_id": product.id,
            "product_name": product.name,
            "product_code": product.code,
            "batch_number": batch.batch_number,
            "expiry_date": batch.expiry_date,
            "quantity": batch.quantity,
            "value": batch.stock_value,
            "days_until_expiry": days,
            "severity": severity_for(days),
            "category": category_name or UNCATEGORIZED,
        }

    # ==================== EXPIRING BATCHES ====================

    async def get_expiring_batches(
        self, days_ahead: int = 30, today: Optional[date] = None
    ) -> Result[List[Dict[str, Any]]]:
        if days_ahead < 0:
            return validation_error("days_ahead cannot be negative", days_ahead=days_ahead)
        today = today or date.today()
        rows = await self._active_rows(expiry_from=today, expiry_to=today + timedelta(days=days_ahead))
        return Ok([
            {
                "batch_id": b.id,
                "batch_number": b.batch_number,
                "product_id": p.id,
                "product_name": p.name,
                "quantity": b.quantity,
                "expiry_date": b.expiry_date,
                "days_until_expiry": b.days_until_expiry(today),
                "stock_value": b.stock_value,
            }
            for b, p, _ in rows
        ])

    # ==================== BATCH EXPIRY REPORT ====================

    async def generate_batch_expiry_report(self, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or date.today()

        status_counts = {s.value: 0 for s in BatchStatus}
        result = await self.db.execute(
            select(ProductBatch.status, func.count(ProductBatch.id)).group_by(ProductBatch.status)
        )
        for status, count in result.all():
            status_counts[status] = count

        expired_value = await self._status_value(BatchStatus.EXPIRED.value)
        active_rows = await self._active_rows()
        month_end = today + timedelta(days=settings.EXPIRY_WARNING_DAYS)

        expiring = [b for b, _, _ in active_rows if today < b.expiry_date <= month_end]
        past_expiry = [r for r in active_rows if r[0].expiry_date < today]

        ranges: Dict[str, Dict[str, Any]] = {}
        for name, lower, upper, severity, sort_key in EXPIRY_RANGES:
            lo = today + timedelta(days=lower) if lower is not None else None
            hi = today + timedelta(days=upper)
            members = [
                r for r in active_rows
                if (r[0].expiry_date > lo if lo is not None else r[0].expiry_date >= today)
                and r[0].expiry_date <= hi
            ]
            ranges[name] = self._range_stats(name, members, severity, sort_key, today)

        name, severity, sort_key = EXPIRED_RANGE
        ranges[name] = self._range_stats(name, past_expiry, severity, sort_key, today)

        return {
            "as_of": today,
            "total_batches": sum(status_counts.values()),
            "status_counts": status_counts,
            "active_batches": status_counts[BatchStatus.ACTIVE.value],
            "quarantined_batches": status_counts[BatchStatus.QUARANTINED.value],
            "expiring_batches": len(expiring),
            "expired_batches": status_counts[BatchStatus.EXPIRED.value] + len(past_expiry),
            "total_inventory_value": sum((b.stock_value for b, _, _ in active_rows), ZERO),
            "expiring_inventory_value": sum((b.stock_value for b in expiring), ZERO),
            "expired_inventory_value": expired_value,
            "ranges": ranges,
        }

    async def _status_value(self, status: str) -> Decimal:
        value = await self.db.scalar(
            select(
                func.coalesce(func.sum(ProductBatch.quantity * ProductBatch.cost_per_unit), 0)
            ).where(ProductBatch.status == status)
        )
        return Decimal(str(value or 0))

    @staticmethod
    def _range_stats(
        name: str, rows: List[Tuple[ProductBatch, Product, Optional[str]]],
        severity: str, sort_key: int, today: date,
    ) -> Dict[str, Any]:
        return {
            "range_name": name,
            "batch_count": len(rows),
            "total_quantity": sum(b.quantity for b, _, _ in rows),
            "total_value": sum((b.stock_value for b, _, _ in rows), ZERO),
            "severity": severity,
            "days_range": sort_key,
            "batches": [
                {
                    "batch_id": b.id,
                    "product_name": p.name,
                    "batch_number": b.batch_number,
                    "quantity": b.quantity,
                    "days_until_expiry": b.days_until_expiry(today),
                    "value": b.stock_value,
                }
                for b, p, _ in rows
            ],
        }
