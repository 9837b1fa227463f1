"""Daily expiry trend snapshot model (one row per calendar date)."""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Date, Float
from sqlalchemy.orm import Mapped, mapped_column

from pharmabatch.database import Base
from pharmabatch.db_types import UUIDType, MoneyType


class TrendDirection(str, Enum):
    """Direction of expiry risk relative to recent history."""
    IMPROVING = "IMPROVING"
    STABLE = "STABLE"
    WORSENING = "WORSENING"


class ExpiryTrendSnapshot(Base):
    """
    Point-in-time aggregate of expiry risk.

    Append-only; the unique constraint on snapshot_date makes concurrent
    captures for the same day collapse into one row.
    """
    __tablename__ = "expiry_trend_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, primary_key=True, default=uuid.uuid4
    )
    snapshot_date: Mapped[date] = mapped_column(Date, unique=True, nullable=False, index=True)

    # Active batch count at capture time
    total_products: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Counts
    expired_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expiring_7_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expiring_30_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expiring_60_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expiring_90_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Values
    expired_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    expiring_7_days_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    expiring_30_days_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    expiring_60_days_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    expiring_90_days_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))

    avg_days_to_expiry: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Category with the most batches expiring within 30 days
    critical_category_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType)
    critical_category_name: Mapped[Optional[str]] = mapped_column(String(100))
    critical_category_count: Mapped[Optional[int]] = mapped_column(Integer)

    trend_direction: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TrendDirection.STABLE.value
    )
    trend_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
