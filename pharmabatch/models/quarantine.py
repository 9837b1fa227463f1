"""
Quarantine Models.

A quarantine record is one episode of a batch being held back from sale
pending a disposition decision. Every transition is appended to
QuarantineActionLog.
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, DateTime, Date, ForeignKey, Index, Text, text
)
from sqlalchemy.orm import Mapped, mapped_column

from pharmabatch.database import Base
from pharmabatch.db_types import UUIDType, MoneyType


class QuarantineStatus(str, Enum):
    """Status of a quarantine record."""
    PENDING_REVIEW = "PENDING_REVIEW"
    DISPOSED = "DISPOSED"
    RETURNED = "RETURNED"
    RELEASED = "RELEASED"


class QuarantineAction(str, Enum):
    """Disposition actions that close a quarantine record."""
    DISPOSE = "DISPOSE"
    RETURN = "RETURN"
    RELEASE = "RELEASE"


class QuarantineRecord(Base):
    """One quarantine episode tied to exactly one batch."""
    __tablename__ = "quarantine_records"
    __table_args__ = (
        # At most one open record per batch
        Index(
            "uq_quarantine_open_batch",
            "batch_id",
            unique=True,
            postgresql_where=text("status = 'PENDING_REVIEW'"),
            sqlite_where=text("status = 'PENDING_REVIEW'"),
        ),
        Index("idx_qr_status", "status"),
        Index("idx_qr_product", "product_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, primary_key=True, default=uuid.uuid4
    )
    batch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("product_batches.id"), nullable=False
    )
    # Denormalized for reporting
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("products.id"), nullable=False
    )

    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity_quarantined: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_loss: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))

    quarantine_date: Mapped[date] = mapped_column(Date, nullable=False)
    quarantined_by: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=QuarantineStatus.PENDING_REVIEW.value
    )

    # Closure
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    closed_by: Mapped[Optional[str]] = mapped_column(String(50))
    disposal_method: Mapped[Optional[str]] = mapped_column(String(100))
    disposal_certificate: Mapped[Optional[str]] = mapped_column(String(255))
    return_reference: Mapped[Optional[str]] = mapped_column(String(100))

    notes: Mapped[Optional[str]] = mapped_column(Text)

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


class QuarantineActionLog(Base):
    """Immutable audit trail of quarantine actions (who, when, what)."""
    __tablename__ = "quarantine_action_logs"
    __table_args__ = (
        Index("idx_qal_record", "quarantine_record_id", "performed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, primary_key=True, default=uuid.uuid4
    )
    quarantine_record_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("quarantine_records.id"), nullable=False
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(50), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    previous_status: Mapped[Optional[str]] = mapped_column(String(30))
    new_status: Mapped[Optional[str]] = mapped_column(String(30))
    comments: Mapped[Optional[str]] = mapped_column(Text)
