"""
Batch API Endpoints.

Batch entry, goods receipt, FIFO consumption, single-batch adjustments
and the expiring-soon view.
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.database import get_db
from pharmabatch.api.deps import unwrap, get_actor, get_publisher
from pharmabatch.models.batch import BatchStatus
from pharmabatch.schemas.batch import (
    BatchCreate, BatchResponse, BatchListResponse,
    ConsumeRequest, ConsumeResponse, BatchConsumption,
    AdjustRequest, AdjustResponse,
    BatchMovementResponse, ExpiringBatch,
)
from pharmabatch.services.batch_events import BatchEventPublisher
from pharmabatch.services.batch_service import BatchService
from pharmabatch.services.expiry_summary_service import ExpirySummaryService

router = APIRouter()


# ============================================================================
# BATCH ENTRY
# ============================================================================

@router.post(
    "",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Batch"
)
async def create_batch(
    data: BatchCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    publisher: BatchEventPublisher = Depends(get_publisher),
):
    """Manual batch entry. A duplicate batch number for the product is rejected."""
    service = BatchService(db, publisher)
    batch = unwrap(await service.create_batch(data, performed_by=actor))
    await db.flush()
    await db.refresh(batch)
    return batch


@router.post(
    "/receipts",
    response_model=BatchResponse,
    summary="Receive Goods Into Batch"
)
async def receive_batch(
    data: BatchCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    publisher: BatchEventPublisher = Depends(get_publisher),
):
    """
    Goods-receipt hand-off.

    Tops up an existing batch with the same number or creates a new one.
    """
    service = BatchService(db, publisher)
    batch = unwrap(await service.create_or_update_batch(data, performed_by=actor))
    await db.flush()
    await db.refresh(batch)
    return batch


@router.get(
    "",
    response_model=BatchListResponse,
    summary="List Batches"
)
async def list_batches(
    product_id: Optional[UUID] = None,
    batch_status: Optional[BatchStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    service = BatchService(db)
    items, total = await service.list_batches(
        product_id=product_id,
        status=batch_status.value if batch_status else None,
        skip=skip,
        limit=limit,
    )
    return BatchListResponse(items=items, total=total)


@router.get(
    "/expiring",
    response_model=List[ExpiringBatch],
    summary="Batches Expiring Soon"
)
async def get_expiring_batches(
    days_ahead: int = Query(30, ge=0, le=365),
    db: AsyncSession = Depends(get_db),
):
    """ACTIVE batches expiring within the next `days_ahead` days, soonest first."""
    service = ExpirySummaryService(db)
    return unwrap(await service.get_expiring_batches(days_ahead=days_ahead))


@router.get(
    "/{batch_id}",
    response_model=BatchResponse,
    summary="Get Batch"
)
async def get_batch(
    batch_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    service = BatchService(db)
    return unwrap(await service.get_batch(batch_id))


@router.get(
    "/{batch_id}/movements",
    response_model=List[BatchMovementResponse],
    summary="Batch Movement History"
)
async def get_batch_movements(
    batch_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    service = BatchService(db)
    unwrap(await service.get_batch(batch_id))
    return await service.get_movements(batch_id)


# ============================================================================
# STOCK MOVEMENTS
# ============================================================================

@router.post(
    "/consume",
    response_model=ConsumeResponse,
    summary="Consume Stock (FIFO)"
)
async def consume_stock(
    data: ConsumeRequest,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    publisher: BatchEventPublisher = Depends(get_publisher),
):
    """
    Consume a product's stock across its ACTIVE batches, earliest expiry first.

    All-or-nothing: a shortfall returns 409 with the available quantity and
    leaves every batch untouched.
    """
    service = BatchService(db, publisher)
    result = unwrap(await service.consume_stock(
        data.product_id, data.quantity, data.reason, performed_by=actor
    ))
    return ConsumeResponse(
        product_id=result.product_id,
        requested=result.requested,
        total_consumed=result.total_consumed,
        product_quantity=result.product_quantity,
        consumptions=[
            BatchConsumption(
                batch_id=line.batch_id,
                batch_number=line.batch_number,
                consumed=line.consumed,
                remaining=line.remaining,
            )
            for line in result.consumptions
        ],
    )


@router.post(
    "/{batch_id}/adjust",
    response_model=AdjustResponse,
    summary="Adjust Batch Stock"
)
async def adjust_batch(
    batch_id: UUID,
    data: AdjustRequest,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    publisher: BatchEventPublisher = Depends(get_publisher),
):
    """ADD, CONSUME, ADJUST (set) or QUARANTINE a single batch."""
    service = BatchService(db, publisher)
    result = unwrap(await service.adjust_batch_stock(
        batch_id, data.adjustment_type, data.quantity, data.reason, performed_by=actor
    ))
    await db.flush()
    await db.refresh(result.batch)
    return AdjustResponse(
        batch=BatchResponse.model_validate(result.batch),
        adjustment_type=result.adjustment_type,
        quantity_before=result.quantity_before,
        quantity_after=result.quantity_after,
        product_quantity=result.product_quantity,
        quarantine_record_id=result.quarantine_record_id,
    )
