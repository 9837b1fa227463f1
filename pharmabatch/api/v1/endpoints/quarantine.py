"""
Quarantine API Endpoints.

Opening and closing quarantine records, the audit trail, and a manual
trigger for the expired-batch sweep.
"""
from datetime import date
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.database import get_db
from pharmabatch.api.deps import unwrap, get_actor, get_publisher
from pharmabatch.models.quarantine import QuarantineStatus
from pharmabatch.schemas.quarantine import (
    QuarantineCreate, QuarantineActionRequest,
    QuarantineRecordResponse, QuarantineListResponse,
    QuarantineActionLogResponse, QuarantineSummary, SweepReportResponse,
)
from pharmabatch.services.batch_events import BatchEventPublisher
from pharmabatch.services.quarantine_service import QuarantineService

router = APIRouter()


# ============================================================================
# RECORDS
# ============================================================================

@router.post(
    "",
    response_model=QuarantineRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Quarantine Batch"
)
async def quarantine_batch(
    data: QuarantineCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    publisher: BatchEventPublisher = Depends(get_publisher),
):
    """Open a quarantine record; the batch leaves sellable stock."""
    service = QuarantineService(db, publisher)
    record = unwrap(await service.quarantine_batch(
        data.batch_id, data.reason, actor=actor, notes=data.notes
    ))
    await db.flush()
    await db.refresh(record)
    return record


@router.get(
    "",
    response_model=QuarantineListResponse,
    summary="List Quarantine Records"
)
async def list_records(
    record_status: Optional[QuarantineStatus] = Query(None, alias="status"),
    batch_id: Optional[UUID] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    service = QuarantineService(db)
    items, total = await service.list_records(
        status=record_status.value if record_status else None,
        batch_id=batch_id,
        skip=skip,
        limit=limit,
    )
    return QuarantineListResponse(items=items, total=total)


@router.get(
    "/pending",
    response_model=List[QuarantineRecordResponse],
    summary="Records Pending Review"
)
async def get_pending_review(
    db: AsyncSession = Depends(get_db),
):
    """Open records, oldest first."""
    service = QuarantineService(db)
    return await service.get_pending_review()


@router.get(
    "/summary",
    response_model=QuarantineSummary,
    summary="Quarantine Summary"
)
async def get_quarantine_summary(
    db: AsyncSession = Depends(get_db),
):
    service = QuarantineService(db)
    return await service.get_quarantine_summary()


@router.get(
    "/{quarantine_id}",
    response_model=QuarantineRecordResponse,
    summary="Get Quarantine Record"
)
async def get_record(
    quarantine_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    service = QuarantineService(db)
    return unwrap(await service.get_record(quarantine_id))


@router.get(
    "/{quarantine_id}/history",
    response_model=List[QuarantineActionLogResponse],
    summary="Quarantine Action History"
)
async def get_action_history(
    quarantine_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    service = QuarantineService(db)
    return unwrap(await service.get_action_history(quarantine_id))


# ============================================================================
# ACTIONS
# ============================================================================

@router.post(
    "/{quarantine_id}/action",
    response_model=QuarantineRecordResponse,
    summary="Process Quarantine Action"
)
async def process_action(
    quarantine_id: UUID,
    data: QuarantineActionRequest,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    publisher: BatchEventPublisher = Depends(get_publisher),
):
    """
    Close an open record.

    DISPOSE and RETURN write the batch off; RELEASE puts it back into
    sellable stock.
    """
    service = QuarantineService(db, publisher)
    record = unwrap(await service.process_action(
        quarantine_id,
        data.action.value,
        actor=actor,
        notes=data.notes,
        disposal_method=data.disposal_method,
        disposal_certificate=data.disposal_certificate,
        return_reference=data.return_reference,
    ))
    await db.flush()
    await db.refresh(record)
    return record


@router.post(
    "/auto-sweep",
    response_model=SweepReportResponse,
    summary="Run Expired Batch Sweep"
)
async def run_auto_sweep(
    run_date: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    publisher: BatchEventPublisher = Depends(get_publisher),
):
    """Expire and quarantine every ACTIVE batch past its expiry date."""
    service = QuarantineService(db, publisher)
    report = await service.auto_quarantine_expired_batches(today=run_date, actor=actor)
    return report.to_dict()
