"""
Expiry Trend Analytics

Pure functions over persisted snapshot rows: time-granularity aggregation,
moving-average prediction, summary statistics, insights, period comparison,
per-category expiry analysis and export rows. Nothing here touches the
database; callers load the snapshots (or batch rows) and pass them in,
sorted or not.
"""
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pharmabatch.models.expiry_trend import TrendDirection


class TrendGranularity(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"


# Swing (percent) between half-week averages that counts as a trend
WEEKLY_SWING_PERCENT = 10.0
# A monthly direction needs more than 1.5x the opposing daily votes
MONTHLY_VOTE_FACTOR = 1.5
# First-vs-last change (percent) that marks an overall trend in summaries
SUMMARY_TREND_PERCENT = 20.0
HIGH_VALUE_AT_RISK = Decimal("10000")

# Half-period category trend: one half must exceed the other by 1.2x
CATEGORY_TREND_FACTOR = 1.2
CATEGORY_TOP_PRODUCTS = 5
CATEGORY_LOOKAHEAD_DAYS = 90
VALUE_AT_RISK_DAYS = 30
# Day-on-day swing (percent) that marks a category series point
CATEGORY_SWING_PERCENT = 10.0

PREDICTION_BAND = 0.2
ALGORITHM_MOVING_AVERAGE = "MOVING_AVERAGE"
ALGORITHM_INSUFFICIENT_DATA = "INSUFFICIENT_DATA"

ZERO = Decimal("0")


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class TrendPoint:
    """One point of a trend series at DAILY, WEEKLY or MONTHLY granularity."""
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


@dataclass
class PredictionPoint:
    target_date: date
    predicted_expiry: int
    lower_bound: int
    upper_bound: int
    confidence: float
    estimated_value: Decimal


@dataclass
class Prediction:
    prediction_date: date
    days_ahead: int
    algorithm: str
    overall_confidence: float
    risk_level: str
    estimated_loss: Decimal
    data_points_used: int
    points: List[PredictionPoint] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def total_predicted(self) -> int:
        return sum(p.predicted_expiry for p in self.points)


@dataclass
class SummaryStatistics:
    total_expired: int
    total_expiring: int
    total_value_lost: Decimal
    total_value_at_risk: Decimal
    average_expiry_rate: float
    overall_trend: str
    trend_strength: float
    data_points: int


@dataclass
class TrendInsight:
    type: str
    title: str
    description: str
    recommendation: str
    severity: float


@dataclass
class CategoryBatch:
    """A batch as seen by category analysis, any status."""
    category_name: str
    product_name: str
    expiry_date: date
    quantity: int
    cost_per_unit: Optional[Decimal] = None

    @property
    def value(self) -> Decimal:
        if self.cost_per_unit is None:
            return ZERO
        return Decimal(str(self.cost_per_unit)) * self.quantity


@dataclass
class CategoryAnalysis:
    category_name: str
    expiry_count: int
    value_at_risk: Decimal
    percentage_of_total: float
    trend: str
    top_products: List[str] = field(default_factory=list)


@dataclass
class CategoryTrendPoint:
    point_date: date
    label: str
    expired_count: int
    expiring_count: int
    value: Decimal
    trend_direction: str
    percentage_change: float


# =============================================================================
# SMALL HELPERS
# =============================================================================

def percentage_change(old: float, new: float) -> float:
    """Percent change from old to new; 0 when old is 0."""
    old = float(old or 0)
    new = float(new or 0)
    if old == 0:
        return 0.0
    return (new - old) / old * 100


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _value(snapshot, attr: str) -> Decimal:
    raw = getattr(snapshot, attr, None)
    if raw is None:
        return ZERO
    return raw if isinstance(raw, Decimal) else Decimal(str(raw))


def _count(snapshot, attr: str) -> int:
    return int(getattr(snapshot, attr, None) or 0)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _sorted(snapshots: Iterable) -> List:
    return sorted(snapshots, key=lambda s: s.snapshot_date)


def _money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# =============================================================================
# AGGREGATION
# =============================================================================

def aggregate(snapshots: Iterable, granularity: TrendGranularity) -> List[TrendPoint]:
    """Group snapshots into a trend series, oldest period first."""
    granularity = TrendGranularity(granularity)
    ordered = _sorted(snapshots)

    if granularity == TrendGranularity.DAILY:
        return [_daily_point(s) for s in ordered]

    groups: "OrderedDict[tuple, List]" = OrderedDict()
    for snapshot in ordered:
        d = snapshot.snapshot_date
        if granularity == TrendGranularity.WEEKLY:
            iso_year, iso_week, _ = d.isocalendar()
            key = (iso_year, iso_week)
        else:
            key = (d.year, d.month)
        groups.setdefault(key, []).append(snapshot)

    if granularity == TrendGranularity.WEEKLY:
        return [_weekly_point(key, group) for key, group in groups.items()]
    return [_monthly_point(key, group) for key, group in groups.items()]


def _daily_point(snapshot) -> TrendPoint:
    d = snapshot.snapshot_date
    return TrendPoint(
        period_start=d,
        period_end=d,
        label=d.isoformat(),
        expired_count=_count(snapshot, "expired_count"),
        expiring_7_days=_count(snapshot, "expiring_7_days"),
        expiring_30_days=_count(snapshot, "expiring_30_days"),
        expiring_60_days=_count(snapshot, "expiring_60_days"),
        expiring_90_days=_count(snapshot, "expiring_90_days"),
        expired_value=_value(snapshot, "expired_value"),
        expiring_30_days_value=_value(snapshot, "expiring_30_days_value"),
        trend_direction=snapshot.trend_direction or TrendDirection.STABLE.value,
        percentage_change=float(snapshot.trend_percentage or 0.0),
        sample_size=1,
    )


def _weekly_point(key: tuple, group: List) -> TrendPoint:
    iso_year, iso_week = key
    week_start = date.fromisocalendar(iso_year, iso_week, 1)

    def avg(attr: str) -> float:
        return round(_mean([_count(s, attr) for s in group]), 2)

    first, last = group[0], group[-1]
    return TrendPoint(
        period_start=week_start,
        period_end=week_start + timedelta(days=6),
        label=f"{iso_year}-W{iso_week:02d}",
        expired_count=avg("expired_count"),
        expiring_7_days=avg("expiring_7_days"),
        expiring_30_days=avg("expiring_30_days"),
        expiring_60_days=avg("expiring_60_days"),
        expiring_90_days=avg("expiring_90_days"),
        expired_value=sum((_value(s, "expired_value") for s in group), ZERO),
        expiring_30_days_value=sum((_value(s, "expiring_30_days_value") for s in group), ZERO),
        trend_direction=weekly_trend(group),
        percentage_change=(
            percentage_change(_count(first, "expired_count"), _count(last, "expired_count"))
            if len(group) >= 2 else 0.0
        ),
        sample_size=len(group),
    )


def _monthly_point(key: tuple, group: List) -> TrendPoint:
    year, month = key
    month_start = date(year, month, 1)
    next_month = date(year + month // 12, month % 12 + 1, 1)

    def total(attr: str) -> int:
        return sum(_count(s, attr) for s in group)

    return TrendPoint(
        period_start=month_start,
        period_end=next_month - timedelta(days=1),
        label=month_start.strftime("%B %Y").upper(),
        expired_count=total("expired_count"),
        expiring_7_days=total("expiring_7_days"),
        expiring_30_days=total("expiring_30_days"),
        expiring_60_days=total("expiring_60_days"),
        expiring_90_days=total("expiring_90_days"),
        expired_value=sum((_value(s, "expired_value") for s in group), ZERO),
        expiring_30_days_value=sum((_value(s, "expiring_30_days_value") for s in group), ZERO),
        trend_direction=monthly_trend(group),
        percentage_change=_mean([float(s.trend_percentage or 0.0) for s in group]),
        sample_size=len(group),
    )


def weekly_trend(group: Sequence) -> str:
    """Second-half vs first-half average of the week's expired counts."""
    if len(group) < 2:
        return TrendDirection.STABLE.value

    counts = [_count(s, "expired_count") for s in _sorted(group)]
    mid = len(counts) // 2
    first_avg = _mean(counts[:mid])
    second_avg = _mean(counts[mid:])

    if first_avg == 0:
        return TrendDirection.WORSENING.value if second_avg > 0 else TrendDirection.STABLE.value

    change = (second_avg - first_avg) / first_avg * 100
    if change > WEEKLY_SWING_PERCENT:
        return TrendDirection.WORSENING.value
    if change < -WEEKLY_SWING_PERCENT:
        return TrendDirection.IMPROVING.value
    return TrendDirection.STABLE.value


def monthly_trend(group: Sequence) -> str:
    """Majority vote of the daily directions; the winner needs 1.5x the loser."""
    worsening = sum(1 for s in group if s.trend_direction == TrendDirection.WORSENING.value)
    improving = sum(1 for s in group if s.trend_direction == TrendDirection.IMPROVING.value)

    if worsening > improving * MONTHLY_VOTE_FACTOR:
        return TrendDirection.WORSENING.value
    if improving > worsening * MONTHLY_VOTE_FACTOR:
        return TrendDirection.IMPROVING.value
    return TrendDirection.STABLE.value


# =============================================================================
# PREDICTION
# =============================================================================

def risk_level_for(total_predicted: int) -> str:
    if total_predicted < 10:
        return RiskLevel.LOW.value
    if total_predicted < 50:
        return RiskLevel.MEDIUM.value
    if total_predicted < 100:
        return RiskLevel.HIGH.value
    return RiskLevel.CRITICAL.value


def confidence_for(sample_size: int) -> float:
    return min(95.0, 50.0 + 0.5 * sample_size)


_RECOMMENDATIONS = {
    RiskLevel.LOW.value: ["Continue routine expiry monitoring"],
    RiskLevel.MEDIUM.value: [
        "Review ordering patterns for slow-moving batches",
        "Enforce FIFO picking on high-volume products",
    ],
    RiskLevel.HIGH.value: [
        "Review ordering patterns",
        "Run promotions on near-expiry stock",
        "Redistribute near-expiry batches to higher-demand locations",
    ],
    RiskLevel.CRITICAL.value: [
        "Implement aggressive promotional campaigns",
        "Review ordering patterns",
        "Consider donation programs for near-expiry items",
    ],
}


def predict(
    snapshots: Iterable,
    days_ahead: int,
    today: date,
    window_days: int = 90,
    min_samples: int = 7,
) -> Prediction:
    """
    Moving-average forecast of daily expired counts.

    The mean expired_count over the trailing window is the estimate for
    every future day, with a +/-20% band.
    """
    window_start = today - timedelta(days=window_days)
    history = [s for s in _sorted(snapshots) if window_start <= s.snapshot_date <= today]

    if len(history) < min_samples:
        return Prediction(
            prediction_date=today,
            days_ahead=days_ahead,
            algorithm=ALGORITHM_INSUFFICIENT_DATA,
            overall_confidence=0.0,
            risk_level=RiskLevel.UNKNOWN.value,
            estimated_loss=ZERO,
            data_points_used=0,
            recommendations=["Collect more historical data for accurate predictions"],
        )

    average = _mean([_count(s, "expired_count") for s in history])
    predicted = round_half_up(average)
    lower = int(predicted * (1 - PREDICTION_BAND))
    upper = int(predicted * (1 + PREDICTION_BAND))

    total_expired = sum(_count(s, "expired_count") for s in history)
    total_value = sum((_value(s, "expired_value") for s in history), ZERO)
    value_per_unit = total_value / total_expired if total_expired else ZERO

    confidence = confidence_for(len(history))
    points = [
        PredictionPoint(
            target_date=today + timedelta(days=i),
            predicted_expiry=predicted,
            lower_bound=lower,
            upper_bound=upper,
            confidence=confidence,
            estimated_value=_money(value_per_unit * predicted),
        )
        for i in range(1, days_ahead + 1)
    ]

    total_predicted = predicted * days_ahead
    risk = risk_level_for(total_predicted)
    return Prediction(
        prediction_date=today,
        days_ahead=days_ahead,
        algorithm=ALGORITHM_MOVING_AVERAGE,
        overall_confidence=confidence,
        risk_level=risk,
        estimated_loss=_money(value_per_unit * total_predicted),
        data_points_used=len(history),
        points=points,
        recommendations=list(_RECOMMENDATIONS[risk]),
    )


# =============================================================================
# SUMMARY, INSIGHTS, COMPARISON
# =============================================================================

def summarize(snapshots: Iterable) -> SummaryStatistics:
    ordered = _sorted(snapshots)
    if not ordered:
        return SummaryStatistics(
            total_expired=0,
            total_expiring=0,
            total_value_lost=ZERO,
            total_value_at_risk=ZERO,
            average_expiry_rate=0.0,
            overall_trend="NO_DATA",
            trend_strength=0.0,
            data_points=0,
        )

    expired = [_count(s, "expired_count") for s in ordered]
    overall = TrendDirection.STABLE.value
    strength = 50.0
    if len(ordered) >= 2:
        change = percentage_change(expired[0], expired[-1])
        if change > SUMMARY_TREND_PERCENT:
            overall = TrendDirection.WORSENING.value
            strength = min(100.0, 50.0 + change)
        elif change < -SUMMARY_TREND_PERCENT:
            overall = TrendDirection.IMPROVING.value
            strength = max(0.0, 50.0 - abs(change))

    return SummaryStatistics(
        total_expired=sum(expired),
        total_expiring=sum(_count(s, "expiring_30_days") for s in ordered),
        total_value_lost=sum((_value(s, "expired_value") for s in ordered), ZERO),
        total_value_at_risk=sum((_value(s, "expiring_30_days_value") for s in ordered), ZERO),
        average_expiry_rate=_mean(expired),
        overall_trend=overall,
        trend_strength=strength,
        data_points=len(ordered),
    )


def generate_insights(summary: SummaryStatistics) -> List[TrendInsight]:
    if summary.data_points == 0:
        return [TrendInsight(
            type="INFO",
            title="No Data Available",
            description="No trend data available for analysis",
            recommendation="Wait for snapshots to accumulate or select a different date range",
            severity=0.0,
        )]

    insights: List[TrendInsight] = []
    if summary.overall_trend == TrendDirection.WORSENING.value:
        insights.append(TrendInsight(
            type="WARNING",
            title="Increasing Expiry Rate Detected",
            description=f"The expiry rate has increased by {summary.trend_strength - 50:.1f}%",
            recommendation="Review inventory ordering patterns and implement stricter FIFO controls",
            severity=summary.trend_strength,
        ))

    if summary.total_value_at_risk > HIGH_VALUE_AT_RISK:
        insights.append(TrendInsight(
            type="WARNING",
            title="High Value at Risk",
            description=f"Stock worth {summary.total_value_at_risk:.2f} is expiring soon",
            recommendation="Consider promotional activities or redistribution to minimize losses",
            severity=75.0,
        ))

    if summary.overall_trend == TrendDirection.IMPROVING.value:
        insights.append(TrendInsight(
            type="SUCCESS",
            title="Expiry Rate Improving",
            description="The expiry rate has decreased, indicating better inventory management",
            recommendation="Continue current practices and document successful strategies",
            severity=25.0,
        ))

    if not insights:
        insights.append(TrendInsight(
            type="INFO",
            title="Stable Trend",
            description="Expiry rates are within normal parameters",
            recommendation="Continue monitoring for any changes",
            severity=50.0,
        ))
    return insights


def _period_stats(snapshots: List) -> Dict[str, Any]:
    expired = [_count(s, "expired_count") for s in snapshots]
    total_value = sum((_value(s, "expired_value") for s in snapshots), ZERO)
    return {
        "avg_expired": _mean(expired),
        "avg_value": _money(total_value / len(snapshots)),
        "data_points": len(snapshots),
    }


def compare_periods(period1: Iterable, period2: Iterable) -> Optional[Dict[str, Any]]:
    """Average expired count/value of two periods; None if either is empty."""
    p1 = _sorted(period1)
    p2 = _sorted(period2)
    if not p1 or not p2:
        return None

    s1 = _period_stats(p1)
    s2 = _period_stats(p2)
    return {
        "period1": s1,
        "period2": s2,
        "comparison": {
            "expired_change": s2["avg_expired"] - s1["avg_expired"],
            "expired_change_percent": percentage_change(s1["avg_expired"], s2["avg_expired"]),
            "value_change": s2["avg_value"] - s1["avg_value"],
            "value_change_percent": percentage_change(s1["avg_value"], s2["avg_value"]),
            "improvement": s2["avg_expired"] < s1["avg_expired"],
        },
    }


# =============================================================================
# CATEGORY ANALYSIS
# =============================================================================

def category_trend(expiry_dates: Iterable[date], start: date, end: date) -> str:
    """First half vs second half of [start, end) by expiry date."""
    mid = start + timedelta(days=(end - start).days // 2)
    dates = list(expiry_dates)
    first = sum(1 for d in dates if d < mid)
    second = sum(1 for d in dates if mid <= d < end)

    if second > first * CATEGORY_TREND_FACTOR:
        return TrendDirection.WORSENING.value
    if first > second * CATEGORY_TREND_FACTOR:
        return TrendDirection.IMPROVING.value
    return TrendDirection.STABLE.value


def analyze_categories(
    batches: Iterable[CategoryBatch],
    start: date,
    end: date,
    today: date,
    total_batches: int,
) -> Dict[str, CategoryAnalysis]:
    """
    Per-category expiry picture for batches expiring between start and
    end + 90 days.

    expiry_count counts batches already past expiry on `today`; value at
    risk and top products cover batches expiring before today + 30 days.
    Categories without batches in the window are left out.
    """
    horizon = end + timedelta(days=CATEGORY_LOOKAHEAD_DAYS)
    risk_cutoff = today + timedelta(days=VALUE_AT_RISK_DAYS)

    groups: Dict[str, List[CategoryBatch]] = {}
    in_window = sorted(
        (b for b in batches if start <= b.expiry_date <= horizon),
        key=lambda b: (b.category_name, b.expiry_date, b.product_name),
    )
    for batch in in_window:
        groups.setdefault(batch.category_name, []).append(batch)

    analysis: Dict[str, CategoryAnalysis] = {}
    for name, members in groups.items():
        at_risk = [b for b in members if b.expiry_date < risk_cutoff]
        top_products: List[str] = []
        for b in at_risk[:CATEGORY_TOP_PRODUCTS]:
            if b.product_name not in top_products:
                top_products.append(b.product_name)

        analysis[name] = CategoryAnalysis(
            category_name=name,
            expiry_count=sum(1 for b in members if b.expiry_date < today),
            value_at_risk=sum((b.value for b in at_risk), ZERO),
            percentage_of_total=len(members) * 100.0 / total_batches if total_batches else 0.0,
            trend=category_trend((b.expiry_date for b in members), start, end),
            top_products=top_products,
        )
    return analysis


def category_daily_points(
    batches: Iterable[CategoryBatch],
    start: date,
    today: date,
) -> Dict[str, List[CategoryTrendPoint]]:
    """
    Daily series per category from `start` through the 30-day look-ahead.

    Each day counts the batches whose expiry falls on it: expired when the
    day is before today, expiring when it is after today and inside the
    look-ahead.
    """
    end = today + timedelta(days=VALUE_AT_RISK_DAYS)
    by_category: Dict[str, Dict[date, List[CategoryBatch]]] = {}
    for batch in batches:
        if start <= batch.expiry_date <= end:
            days = by_category.setdefault(batch.category_name, {})
            days.setdefault(batch.expiry_date, []).append(batch)

    series: Dict[str, List[CategoryTrendPoint]] = {}
    for name in sorted(by_category):
        days = by_category[name]
        points: List[CategoryTrendPoint] = []
        day = start
        while day <= end:
            members = days.get(day, [])
            expired = len(members) if day < today else 0
            expiring = len(members) if today < day < end else 0

            direction, change = TrendDirection.STABLE.value, 0.0
            if points:
                previous = points[-1]
                change = percentage_change(
                    previous.expired_count + previous.expiring_count, expired + expiring
                )
                if change > CATEGORY_SWING_PERCENT:
                    direction = TrendDirection.WORSENING.value
                elif change < -CATEGORY_SWING_PERCENT:
                    direction = TrendDirection.IMPROVING.value

            points.append(CategoryTrendPoint(
                point_date=day,
                label=day.isoformat(),
                expired_count=expired,
                expiring_count=expiring,
                value=sum((b.value for b in members), ZERO),
                trend_direction=direction,
                percentage_change=change,
            ))
            day += timedelta(days=1)
        series[name] = points
    return series


def category_insight(category_name: str) -> TrendInsight:
    return TrendInsight(
        type="INFO",
        title=f"Category Analysis: {category_name}",
        description=f"This analysis is filtered for the {category_name} category only",
        recommendation="Focus on category-specific inventory management strategies",
        severity=50.0,
    )


# =============================================================================
# EXPORT
# =============================================================================

EXPORT_COLUMNS = [
    "date",
    "total_products",
    "expired",
    "expiring_7_days",
    "expiring_30_days",
    "expired_value",
    "value_at_risk",
    "trend_direction",
    "trend_percentage",
    "critical_category",
]


def to_export_rows(snapshots: Iterable) -> List[Dict[str, Any]]:
    """Flatten snapshots into ordered rows keyed by EXPORT_COLUMNS."""
    rows = []
    for s in _sorted(snapshots):
        rows.append({
            "date": s.snapshot_date.isoformat(),
            "total_products": _count(s, "total_products"),
            "expired": _count(s, "expired_count"),
            "expiring_7_days": _count(s, "expiring_7_days"),
            "expiring_30_days": _count(s, "expiring_30_days"),
            "expired_value": f"{_value(s, 'expired_value'):.2f}",
            "value_at_risk": f"{_value(s, 'expiring_30_days_value'):.2f}",
            "trend_direction": s.trend_direction or TrendDirection.STABLE.value,
            "trend_percentage": f"{float(s.trend_percentage or 0.0):.2f}",
            "critical_category": s.critical_category_name or "",
        })
    return rows
