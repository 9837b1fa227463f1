"""
Batch Schemas.

Pydantic schemas for batch creation, stock movements and batch views.
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# BATCH SCHEMAS
# ============================================================================

class BatchBase(BaseModel):
    """Base schema for a batch."""
    batch_number: str = Field(..., min_length=1, max_length=50)
    expiry_date: date
    manufacture_date: Optional[date] = None
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    supplier_reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class BatchCreate(BatchBase):
    """Manual entry or goods-receipt hand-off."""
    product_id: UUID
    quantity: int


class BatchResponse(BatchBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    quantity: int
    initial_quantity: int
    status: str
    created_at: datetime
    updated_at: datetime


class BatchListResponse(BaseModel):
    items: List[BatchResponse]
    total: int


# ============================================================================
# STOCK MOVEMENT SCHEMAS
# ============================================================================

class ConsumeRequest(BaseModel):
    """FIFO consumption across a product's active batches."""
    product_id: UUID
    quantity: int
    reason: str = Field(..., max_length=255)


class BatchConsumption(BaseModel):
    """One line of a FIFO consumption ledger."""
    batch_id: UUID
    batch_number: str
    consumed: int
    remaining: int


class ConsumeResponse(BaseModel):
    product_id: UUID
    requested: int
    total_consumed: int
    product_quantity: int
    consumptions: List[BatchConsumption]


class AdjustRequest(BaseModel):
    """Single-batch adjustment; accepts INCREASE/DECREASE/SET aliases."""
    adjustment_type: str = Field(..., max_length=20)
    quantity: int = 0
    reason: str = Field(..., max_length=255)


class AdjustResponse(BaseModel):
    batch: BatchResponse
    adjustment_type: str
    quantity_before: int
    quantity_after: int
    product_quantity: int
    quarantine_record_id: Optional[UUID] = None


class BatchMovementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    batch_id: UUID
    product_id: UUID
    movement_type: str
    quantity_change: int
    quantity_after: int
    status_after: str
    reason: Optional[str]
    performed_by: str
    created_at: datetime


# ============================================================================
# EXPIRING BATCH VIEW
# ============================================================================

class ExpiringBatch(BaseModel):
    batch_id: UUID
    batch_number: str
    product_id: UUID
    product_name: Optional[str] = None
    quantity: int
    expiry_date: date
    days_until_expiry: int
    stock_value: Decimal
