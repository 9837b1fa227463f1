"""
Quarantine Schemas.

Pydantic schemas for quarantine records, actions and the sweep report.
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from pharmabatch.models.quarantine import QuarantineAction


class QuarantineCreate(BaseModel):
    batch_id: UUID
    reason: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = None


class QuarantineActionRequest(BaseModel):
    """Close an open record."""
    action: QuarantineAction
    notes: Optional[str] = None
    disposal_method: Optional[str] = Field(None, max_length=100)
    disposal_certificate: Optional[str] = Field(None, max_length=255)
    return_reference: Optional[str] = Field(None, max_length=100)


class QuarantineRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    batch_id: UUID
    product_id: UUID
    reason: str
    quantity_quarantined: int
    estimated_loss: Decimal
    quarantine_date: date
    quarantined_by: str
    status: str
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    disposal_method: Optional[str] = None
    disposal_certificate: Optional[str] = None
    return_reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class QuarantineListResponse(BaseModel):
    items: List[QuarantineRecordResponse]
    total: int


class QuarantineActionLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quarantine_record_id: UUID
    action: str
    performed_by: str
    performed_at: datetime
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    comments: Optional[str] = None


class QuarantineSummary(BaseModel):
    total_records: int
    by_status: Dict[str, int]
    pending_review: int
    total_quantity: int
    total_estimated_loss: Decimal
    pending_quantity: int
    pending_estimated_loss: Decimal


class SweepReportResponse(BaseModel):
    run_date: date
    examined: int
    quarantined: int
    skipped: int
    failed: int
    record_ids: List[UUID]
