"""
Batch Models - batch-level inventory with expiry tracking.

Models:
- ProductBatch: one manufactured lot of one product
- BatchMovement: immutable audit row for every quantity/status change
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, DateTime, Date, ForeignKey, Index, Text,
    Numeric, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from pharmabatch.database import Base
from pharmabatch.db_types import UUIDType


# ============================================================================
# ENUMS
# ============================================================================

class BatchStatus(str, Enum):
    """Status of a batch."""
    ACTIVE = "ACTIVE"            # Available for use
    DEPLETED = "DEPLETED"        # Quantity is 0
    EXPIRED = "EXPIRED"          # Past expiry date or disposed
    QUARANTINED = "QUARANTINED"  # On hand but unsellable, awaiting disposition


class AdjustmentType(str, Enum):
    """Manual adjustment operations on a single batch."""
    ADD = "ADD"
    CONSUME = "CONSUME"
    ADJUST = "ADJUST"
    QUARANTINE = "QUARANTINE"


class MovementType(str, Enum):
    """Kind of change recorded in the batch movement ledger."""
    RECEIPT = "RECEIPT"
    CONSUME = "CONSUME"
    ADD = "ADD"
    ADJUST = "ADJUST"
    QUARANTINE = "QUARANTINE"
    DISPOSE = "DISPOSE"
    RETURN = "RETURN"
    RELEASE = "RELEASE"
    EXPIRE = "EXPIRE"


# ============================================================================
# MODELS
# ============================================================================

class ProductBatch(Base):
    """
    Master batch record.

    Product and batch are separate aggregates joined by `product_id`;
    there is no ORM relationship, lookups go through the services.
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        UniqueConstraint("product_id", "batch_number", name="uq_batch_product_number"),
        CheckConstraint("quantity >= 0", name="ck_batch_quantity_non_negative"),
        CheckConstraint("initial_quantity > 0", name="ck_batch_initial_quantity_positive"),
        Index("idx_batch_product_status_expiry", "product_id", "status", "expiry_date"),
        Index("idx_batch_expiry", "expiry_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, primary_key=True, default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("products.id"), nullable=False
    )
    batch_number: Mapped[str] = mapped_column(String(50), nullable=False)

    # Quantity Tracking
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    initial_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Dates
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    manufacture_date: Mapped[Optional[date]] = mapped_column(Date)

    # Origin / Cost
    supplier_reference: Mapped[Optional[str]] = mapped_column(String(100))
    cost_per_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BatchStatus.ACTIVE.value
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def stock_value(self) -> Decimal:
        """quantity x cost_per_unit, a missing cost counts as zero."""
        if self.cost_per_unit is None:
            return Decimal("0")
        return self.cost_per_unit * self.quantity

    def days_until_expiry(self, today: date) -> int:
        return (self.expiry_date - today).days


class BatchMovement(Base):
    """Append-only ledger of batch quantity changes."""
    __tablename__ = "batch_movements"
    __table_args__ = (
        Index("idx_bm_batch", "batch_id", "created_at"),
        Index("idx_bm_product", "product_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, primary_key=True, default=uuid.uuid4
    )
    batch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("product_batches.id"), nullable=False
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("products.id"), nullable=False
    )

    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)  # Signed
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    status_after: Mapped[str] = mapped_column(String(20), nullable=False)

    reason: Mapped[Optional[str]] = mapped_column(String(255))
    performed_by: Mapped[str] = mapped_column(String(50), nullable=False, default="SYSTEM")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
