"""
Batch Service - batch store, FIFO consumption and stock adjustments.

All mutating operations run inside the caller's transaction (the request
session or a job session). Rows about to be read-then-written are locked
with SELECT ... FOR UPDATE so two concurrent consumers of the same product
cannot both act on a stale quantity.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, List, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.config import settings
from pharmabatch.core.result import (
    Ok, Err, Result,
    insufficient_stock, invalid_transition, not_found, validation_error,
)
from pharmabatch.database import apply_lock_timeout
from pharmabatch.models.batch import (
    ProductBatch, BatchMovement, BatchStatus, AdjustmentType, MovementType,
)
from pharmabatch.models.product import Product
from pharmabatch.schemas.batch import BatchCreate
from pharmabatch.services import batch_state_machine as sm
from pharmabatch.services.batch_events import (
    BatchEventPublisher, BatchEventType, default_publisher,
)


logger = logging.getLogger(__name__)


@dataclass
class BatchConsumptionLine:
    """Quantity taken from one batch during FIFO consumption."""
    batch_id: uuid.UUID
    batch_number: str
    consumed: int
    remaining: int


@dataclass
class ConsumptionResult:
    product_id: uuid.UUID
    requested: int
    product_quantity: int
    consumptions: List[BatchConsumptionLine] = field(default_factory=list)

    @property
    def total_consumed(self) -> int:
        return sum(line.consumed for line in self.consumptions)


@dataclass
class AdjustmentResult:
    batch: ProductBatch
    adjustment_type: str
    quantity_before: int
    quantity_after: int
    product_quantity: int
    quarantine_record_id: Optional[uuid.UUID] = None


class BatchService:
    """Service for batch-level stock operations."""

    def __init__(self, db: AsyncSession, publisher: Optional[BatchEventPublisher] = None):
        self.db = db
        self.publisher = publisher or default_publisher

    # ==================== LOOKUPS ====================

    async def get_product(self, product_id: uuid.UUID) -> Optional[Product]:
        result = await self.db.execute(select(Product).where(Product.id == product_id))
        return result.scalar_one_or_none()

    async def get_batch(self, batch_id: uuid.UUID) -> Result[ProductBatch]:
        batch = await self._load_batch(batch_id)
        if batch is None:
            return not_found("Batch", batch_id)
        return Ok(batch)

    async def get_batch_by_number(
        self, product_id: uuid.UUID, batch_number: str
    ) -> Optional[ProductBatch]:
        result = await self.db.execute(
            select(ProductBatch).where(
                and_(
                    ProductBatch.product_id == product_id,
                    ProductBatch.batch_number == batch_number,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_batches(
        self,
        product_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[ProductBatch], int]:
        """Get paginated batches, soonest expiry first."""
        query = select(ProductBatch)

        conditions = []
        if product_id:
            conditions.append(ProductBatch.product_id == product_id)
        if status:
            conditions.append(ProductBatch.status == status)
        if conditions:
            query = query.where(and_(*conditions))

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(ProductBatch.expiry_date, ProductBatch.id).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def get_active_batches_fifo(
        self, product_id: uuid.UUID, lock: bool = False
    ) -> List[ProductBatch]:
        """ACTIVE batches of a product, earliest expiry first, ties by id."""
        query = (
            select(ProductBatch)
            .where(
                and_(
                    ProductBatch.product_id == product_id,
                    ProductBatch.status == BatchStatus.ACTIVE.value,
                )
            )
            .order_by(ProductBatch.expiry_date.asc(), ProductBatch.id.asc())
        )
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_movements(self, batch_id: uuid.UUID) -> List[BatchMovement]:
        result = await self.db.execute(
            select(BatchMovement)
            .where(BatchMovement.batch_id == batch_id)
            .order_by(BatchMovement.created_at, BatchMovement.id)
        )
        return list(result.scalars().all())

    # ==================== CREATION ====================

    async def create_batch(
        self, data: BatchCreate, performed_by: str = "SYSTEM"
    ) -> Result[ProductBatch]:
        """Manual batch entry; a duplicate batch number for the product is rejected."""
        product, error = await self._validate_new_batch(data)
        if error:
            return error

        existing = await self.get_batch_by_number(data.product_id, data.batch_number)
        if existing:
            return validation_error(
                f"Batch {data.batch_number} already exists for this product",
                batch_number=data.batch_number,
                batch_id=existing.id,
            )

        return await self._insert_batch(product, data, performed_by)

    async def create_or_update_batch(
        self, data: BatchCreate, performed_by: str = "SYSTEM"
    ) -> Result[ProductBatch]:
        """
        Goods-receipt hand-off.

        Adds the received quantity to an existing batch with the same number
        (raising initial_quantity by the same amount), otherwise creates a
        new batch.
        """
        product, error = await self._validate_new_batch(data)
        if error:
            return error

        await apply_lock_timeout(self.db)
        result = await self.db.execute(
            select(ProductBatch)
            .where(
                and_(
                    ProductBatch.product_id == data.product_id,
                    ProductBatch.batch_number == data.batch_number,
                )
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        batch = result.scalar_one_or_none()
        if batch is None:
            return await self._insert_batch(product, data, performed_by)

        if not sm.can_adjust(batch.status):
            return invalid_transition(batch.status, MovementType.RECEIPT.value, batch_id=batch.id)

        batch.quantity += data.quantity
        batch.initial_quantity += data.quantity
        batch.status = BatchStatus.ACTIVE.value
        self.record_movement(
            batch, MovementType.RECEIPT, data.quantity, "Goods receipt", performed_by
        )
        await self.db.flush()
        await self.recompute_product_quantity(batch.product_id)

        logger.info(
            f"Goods receipt added {data.quantity} to batch {batch.batch_number} "
            f"(now {batch.quantity})"
        )
        return Ok(batch)

    async def _validate_new_batch(
        self, data: BatchCreate
    ) -> Tuple[Optional[Product], Optional[Err]]:
        if data.quantity <= 0:
            return None, validation_error("Quantity must be positive", quantity=data.quantity)
        if data.manufacture_date and data.manufacture_date > data.expiry_date:
            return None, validation_error(
                "Manufacture date cannot be after expiry date",
                manufacture_date=data.manufacture_date,
                expiry_date=data.expiry_date,
            )
        product = await self.get_product(data.product_id)
        if product is None:
            return None, not_found("Product", data.product_id)
        return product, None

    async def _insert_batch(
        self, product: Product, data: BatchCreate, performed_by: str
    ) -> Result[ProductBatch]:
        batch = ProductBatch(
            id=uuid.uuid4(),
            product_id=product.id,
            batch_number=data.batch_number,
            quantity=data.quantity,
            initial_quantity=data.quantity,
            expiry_date=data.expiry_date,
            manufacture_date=data.manufacture_date,
            cost_per_unit=data.cost_per_unit,
            supplier_reference=data.supplier_reference,
            notes=data.notes,
            status=BatchStatus.ACTIVE.value,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(batch)
                await self.db.flush()
        except IntegrityError:
            # A concurrent entry committed the same number first
            logger.warning(
                f"Batch {data.batch_number} for product {product.code} was created concurrently"
            )
            return validation_error(
                f"Batch {data.batch_number} already exists for this product",
                batch_number=data.batch_number,
            )

        self.record_movement(
            batch, MovementType.RECEIPT, data.quantity, "Batch created", performed_by
        )
        await self.db.flush()
        await self.recompute_product_quantity(product.id)

        logger.info(f"Created batch {batch.batch_number} for product {product.code}: {batch.quantity} units")

        days_left = batch.days_until_expiry(date.today())
        self.publisher.emit(
            BatchEventType.BATCH_CREATED,
            action_data={"batch_id": str(batch.id), "product_id": str(product.id)},
            product_name=product.name,
            batch_number=batch.batch_number,
            quantity=batch.quantity,
            days_until_expiry=days_left,
        )
        if days_left <= settings.EXPIRY_CRITICAL_DAYS:
            self.publisher.emit(
                BatchEventType.BATCH_EXPIRED if days_left < 0 else BatchEventType.EXPIRY_IMMINENT,
                action_data={"batch_id": str(batch.id), "product_id": str(product.id)},
                product_name=product.name,
                batch_number=batch.batch_number,
                quantity=batch.quantity,
                days_until_expiry=days_left,
            )
        return Ok(batch)

    # ==================== FIFO CONSUMPTION ====================

    async def consume_stock(
        self,
        product_id: uuid.UUID,
        quantity: int,
        reason: str,
        performed_by: str = "SYSTEM",
    ) -> Result[ConsumptionResult]:
        """
        Consume stock across a product's ACTIVE batches, earliest expiry first.

        Either the full quantity is consumed or nothing is mutated.
        """
        if quantity <= 0:
            return validation_error("Quantity must be positive", quantity=quantity)

        product = await self.get_product(product_id)
        if product is None:
            return not_found("Product", product_id)

        await apply_lock_timeout(self.db)
        batches = await self.get_active_batches_fifo(product_id, lock=True)

        total_available = sum(b.quantity for b in batches)
        if total_available < quantity:
            logger.info(
                f"Insufficient stock for {product.code}: requested {quantity}, "
                f"available {total_available}"
            )
            return insufficient_stock(quantity, total_available, product_id=product_id)

        quantity_before = product.quantity
        remaining = quantity
        lines: List[BatchConsumptionLine] = []
        depleted: List[ProductBatch] = []

        for batch in batches:
            if remaining == 0:
                break
            take = min(batch.quantity, remaining)
            if take == 0:
                continue
            batch.quantity -= take
            remaining -= take
            if batch.quantity == 0:
                batch.status = BatchStatus.DEPLETED.value
                depleted.append(batch)
            self.record_movement(batch, MovementType.CONSUME, -take, reason, performed_by)
            lines.append(
                BatchConsumptionLine(
                    batch_id=batch.id,
                    batch_number=batch.batch_number,
                    consumed=take,
                    remaining=batch.quantity,
                )
            )

        await self.db.flush()
        product_quantity = await self.recompute_product_quantity(product_id)

        logger.info(
            f"Consumed {quantity} of {product.code} across {len(lines)} batches ({reason})"
        )

        for batch in depleted:
            self._emit_for_batch(BatchEventType.BATCH_DEPLETED, product, batch, reason)
        self._check_low_stock(product, quantity_before, product_quantity)

        return Ok(
            ConsumptionResult(
                product_id=product_id,
                requested=quantity,
                product_quantity=product_quantity,
                consumptions=lines,
            )
        )

    # ==================== ADJUSTMENTS ====================

    async def adjust_batch_stock(
        self,
        batch_id: uuid.UUID,
        adjustment_type: str,
        quantity: int,
        reason: str,
        performed_by: str = "SYSTEM",
    ) -> Result[AdjustmentResult]:
        """Apply ADD / CONSUME / ADJUST / QUARANTINE to a single batch."""
        adj_type = sm.normalize_adjustment_type(adjustment_type)
        if adj_type is None:
            return validation_error(
                f"Unknown adjustment type '{adjustment_type}'",
                adjustment_type=adjustment_type,
            )

        if adj_type == AdjustmentType.QUARANTINE.value:
            return await self._quarantine_via_adjustment(batch_id, reason, performed_by)

        if adj_type == AdjustmentType.ADJUST.value:
            if quantity < 0:
                return validation_error("Quantity cannot be negative", quantity=quantity)
        elif quantity <= 0:
            return validation_error("Quantity must be positive", quantity=quantity)

        await apply_lock_timeout(self.db)
        batch = await self._load_batch(batch_id, lock=True)
        if batch is None:
            return not_found("Batch", batch_id)

        if not sm.can_adjust(batch.status):
            return invalid_transition(batch.status, adj_type, batch_id=batch_id)

        quantity_before = batch.quantity

        if adj_type == AdjustmentType.ADD.value:
            new_quantity = batch.quantity + quantity
            new_status = BatchStatus.ACTIVE.value
            movement = MovementType.ADD
        elif adj_type == AdjustmentType.CONSUME.value:
            if quantity > batch.quantity:
                return insufficient_stock(quantity, batch.quantity, batch_id=batch_id)
            new_quantity = batch.quantity - quantity
            new_status = sm.status_for_quantity(new_quantity)
            movement = MovementType.CONSUME
        else:
            new_quantity = quantity
            new_status = sm.status_for_quantity(new_quantity)
            movement = MovementType.ADJUST

        error = sm.check_transition(batch.status, new_status, adj_type)
        if error:
            return error

        product = await self.get_product(batch.product_id)
        product_before = product.quantity if product else 0

        batch.quantity = new_quantity
        if new_quantity > batch.initial_quantity:
            batch.initial_quantity = new_quantity
        batch.status = new_status
        self.record_movement(
            batch, movement, new_quantity - quantity_before, reason, performed_by
        )

        await self.db.flush()
        product_quantity = await self.recompute_product_quantity(batch.product_id)

        logger.info(
            f"Adjusted batch {batch.batch_number} ({adj_type}): "
            f"{quantity_before} -> {new_quantity}, status {new_status}"
        )

        if product is not None:
            if new_status == BatchStatus.DEPLETED.value and quantity_before > 0:
                self._emit_for_batch(BatchEventType.BATCH_DEPLETED, product, batch, reason)
            self._check_low_stock(product, product_before, product_quantity)

        return Ok(
            AdjustmentResult(
                batch=batch,
                adjustment_type=adj_type,
                quantity_before=quantity_before,
                quantity_after=new_quantity,
                product_quantity=product_quantity,
            )
        )

    async def _quarantine_via_adjustment(
        self, batch_id: uuid.UUID, reason: str, performed_by: str
    ) -> Result[AdjustmentResult]:
        from pharmabatch.services.quarantine_service import QuarantineService

        quarantine_service = QuarantineService(self.db, publisher=self.publisher)
        result = await quarantine_service.quarantine_batch(batch_id, reason, performed_by)
        if not result.ok:
            return result

        record = result.value
        batch = await self._load_batch(batch_id)
        product = await self.get_product(batch.product_id)
        return Ok(
            AdjustmentResult(
                batch=batch,
                adjustment_type=AdjustmentType.QUARANTINE.value,
                quantity_before=batch.quantity,
                quantity_after=batch.quantity,
                product_quantity=product.quantity if product else 0,
                quarantine_record_id=record.id,
            )
        )

    # ==================== BOOKKEEPING ====================

    async def recompute_product_quantity(self, product_id: uuid.UUID) -> int:
        """Persist Σ quantity of ACTIVE + QUARANTINED batches on the product."""
        total = await self.db.scalar(
            select(func.coalesce(func.sum(ProductBatch.quantity), 0)).where(
                and_(
                    ProductBatch.product_id == product_id,
                    ProductBatch.status.in_(sm.ON_HAND_STATUSES),
                )
            )
        )
        total = int(total or 0)
        product = await self.get_product(product_id)
        if product is not None:
            product.quantity = total
            await self.db.flush()
        return total

    def record_movement(
        self,
        batch: ProductBatch,
        movement_type: MovementType,
        quantity_change: int,
        reason: Optional[str],
        performed_by: str,
    ) -> BatchMovement:
        movement = BatchMovement(
            id=uuid.uuid4(),
            batch_id=batch.id,
            product_id=batch.product_id,
            movement_type=movement_type.value,
            quantity_change=quantity_change,
            quantity_after=batch.quantity,
            status_after=batch.status,
            reason=reason,
            performed_by=performed_by,
        )
        self.db.add(movement)
        return movement

    async def _load_batch(self, batch_id: uuid.UUID, lock: bool = False) -> Optional[ProductBatch]:
        query = select(ProductBatch).where(ProductBatch.id == batch_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    def _emit_for_batch(
        self,
        event_type: BatchEventType,
        product: Product,
        batch: ProductBatch,
        reason: Optional[str] = None,
    ) -> None:
        self.publisher.emit(
            event_type,
            action_data={"batch_id": str(batch.id), "product_id": str(product.id)},
            product_name=product.name,
            batch_number=batch.batch_number,
            quantity=batch.quantity,
            days_until_expiry=batch.days_until_expiry(date.today()),
            reason=reason,
        )

    def _check_low_stock(self, product: Product, before: int, after: int) -> None:
        """Emit STOCK_LOW when the aggregate crosses the threshold downwards."""
        threshold = settings.LOW_STOCK_THRESHOLD
        if after <= threshold < before:
            logger.warning(f"Stock low for {product.code}: {after} units (threshold {threshold})")
            self.publisher.emit(
                BatchEventType.STOCK_LOW,
                action_data={"product_id": str(product.id)},
                product_name=product.name,
                quantity=after,
                reason=f"Stock at or below {threshold}",
            )
