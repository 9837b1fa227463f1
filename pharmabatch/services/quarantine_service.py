"""
Quarantine Service

Workflow:
1. quarantine_batch()   - flag a batch, open a PENDING_REVIEW record
2. process_action()     - DISPOSE / RETURN / RELEASE closes the record
3. auto_quarantine_expired_batches() - daily sweep of expired ACTIVE batches

Quarantine never owns quantity bookkeeping; batch quantities and the
product aggregate are written through BatchService helpers.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.core.result import (
    Ok, Result, already_quarantined, invalid_transition, not_found, validation_error,
)
from pharmabatch.database import apply_lock_timeout
from pharmabatch.models.batch import ProductBatch, BatchStatus, AdjustmentType, MovementType
from pharmabatch.models.quarantine import (
    QuarantineRecord, QuarantineActionLog, QuarantineStatus, QuarantineAction,
)
from pharmabatch.services import batch_state_machine as sm
from pharmabatch.services.batch_events import (
    BatchEventPublisher, BatchEventType, default_publisher,
)
from pharmabatch.services.batch_service import BatchService


logger = logging.getLogger(__name__)

AUTO_EXPIRE_REASON = "Automatic: expired"

_ACTION_MOVEMENTS = {
    QuarantineAction.DISPOSE.value: MovementType.DISPOSE,
    QuarantineAction.RETURN.value: MovementType.RETURN,
    QuarantineAction.RELEASE.value: MovementType.RELEASE,
}


@dataclass
class SweepReport:
    """Outcome of one auto-quarantine sweep."""
    run_date: date
    examined: int = 0
    quarantined: int = 0
    skipped: int = 0
    failed: int = 0
    record_ids: List[uuid.UUID] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_date": self.run_date.isoformat(),
            "examined": self.examined,
            "quarantined": self.quarantined,
            "skipped": self.skipped,
            "failed": self.failed,
            "record_ids": [str(r) for r in self.record_ids],
        }


class QuarantineService:
    """Service for the batch quarantine workflow."""

    def __init__(self, db: AsyncSession, publisher: Optional[BatchEventPublisher] = None):
        self.db = db
        self.publisher = publisher or default_publisher
        self.batches = BatchService(db, publisher=self.publisher)

    # ==================== QUARANTINE ====================

    async def quarantine_batch(
        self,
        batch_id: uuid.UUID,
        reason: str,
        actor: str = "SYSTEM",
        notes: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Result[QuarantineRecord]:
        """Open a quarantine record and move the batch to QUARANTINED."""
        if not reason or not reason.strip():
            return validation_error("Quarantine reason is required")

        await apply_lock_timeout(self.db)
        batch = await self._lock_batch(batch_id)
        if batch is None:
            return not_found("Batch", batch_id)

        # Check under the batch row lock
        open_record = await self.get_open_record_for_batch(batch_id)
        if open_record is not None or batch.status == BatchStatus.QUARANTINED.value:
            return already_quarantined(batch_id, current_status=batch.status)

        if not sm.can_quarantine(batch.status):
            return invalid_transition(
                batch.status, AdjustmentType.QUARANTINE.value, batch_id=batch_id
            )

        record = await self._open_record(batch, reason, actor, today or date.today(), notes)
        batch.status = BatchStatus.QUARANTINED.value
        self.batches.record_movement(batch, MovementType.QUARANTINE, 0, reason, actor)

        await self.db.flush()
        await self.batches.recompute_product_quantity(batch.product_id)

        logger.info(f"Batch {batch.batch_number} quarantined by {actor}: {reason}")
        await self._emit(BatchEventType.QUARANTINE_CREATED, batch, record, reason)
        return Ok(record)

    async def _open_record(
        self,
        batch: ProductBatch,
        reason: str,
        actor: str,
        quarantine_date: date,
        notes: Optional[str] = None,
    ) -> QuarantineRecord:
        record = QuarantineRecord(
            id=uuid.uuid4(),
            batch_id=batch.id,
            product_id=batch.product_id,
            reason=reason,
            quantity_quarantined=batch.quantity,
            estimated_loss=batch.stock_value,
            quarantine_date=quarantine_date,
            quarantined_by=actor,
            status=QuarantineStatus.PENDING_REVIEW.value,
            notes=notes,
        )
        self.db.add(record)
        await self.db.flush()
        self._log_action(
            record, "QUARANTINE", actor,
            previous_status=None,
            new_status=QuarantineStatus.PENDING_REVIEW.value,
            comments=reason,
        )
        return record

    # ==================== ACTIONS ====================

    async def process_action(
        self,
        quarantine_id: uuid.UUID,
        action: str,
        actor: str = "SYSTEM",
        notes: Optional[str] = None,
        disposal_method: Optional[str] = None,
        disposal_certificate: Optional[str] = None,
        return_reference: Optional[str] = None,
    ) -> Result[QuarantineRecord]:
        """Close an open record with DISPOSE, RETURN or RELEASE."""
        action = (action or "").strip().upper()
        outcome = sm.quarantine_outcome(action)
        if outcome is None:
            return validation_error(f"Unknown quarantine action '{action}'", action=action)
        new_record_status, writes_off = outcome

        await apply_lock_timeout(self.db)
        result = await self.db.execute(
            select(QuarantineRecord)
            .where(QuarantineRecord.id == quarantine_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            return not_found("QuarantineRecord", quarantine_id)

        if not sm.can_process_action(record.status):
            return invalid_transition(record.status, action, quarantine_id=quarantine_id)

        batch = await self._lock_batch(record.batch_id)
        if batch is None:
            return not_found("Batch", record.batch_id)

        new_batch_status = sm.batch_status_after_action(
            action, 0 if writes_off else batch.quantity
        )
        error = sm.check_transition(batch.status, new_batch_status, action)
        if error:
            return error

        quantity_before = batch.quantity
        if writes_off:
            batch.quantity = 0
        batch.status = new_batch_status
        self.batches.record_movement(
            batch, _ACTION_MOVEMENTS[action], batch.quantity - quantity_before, notes, actor
        )

        previous_status = record.status
        record.status = new_record_status
        record.closed_at = datetime.now(timezone.utc)
        record.closed_by = actor
        if notes:
            record.notes = f"{record.notes}\n{notes}" if record.notes else notes
        if action == QuarantineAction.DISPOSE.value:
            record.disposal_method = disposal_method
            record.disposal_certificate = disposal_certificate
        elif action == QuarantineAction.RETURN.value:
            record.return_reference = return_reference

        self._log_action(
            record, action, actor,
            previous_status=previous_status,
            new_status=new_record_status,
            comments=notes,
        )

        await self.db.flush()
        await self.batches.recompute_product_quantity(batch.product_id)

        logger.info(
            f"Quarantine {record.id} closed with {action} by {actor}; "
            f"batch {batch.batch_number} now {batch.status} ({batch.quantity} units)"
        )
        await self._emit(BatchEventType.QUARANTINE_CLOSED, batch, record, notes or action)
        return Ok(record)

    # ==================== AUTO SWEEP ====================

    async def auto_quarantine_expired_batches(
        self, today: Optional[date] = None, actor: str = "SYSTEM"
    ) -> SweepReport:
        """
        Mark ACTIVE batches past expiry as EXPIRED and open a record for each.

        Safe to re-run: expired or already-quarantined batches are no longer
        candidates. A failure on one batch is logged and the sweep moves on.
        """
        today = today or date.today()
        report = SweepReport(run_date=today)

        await apply_lock_timeout(self.db)
        result = await self.db.execute(
            select(ProductBatch)
            .where(
                and_(
                    ProductBatch.status == BatchStatus.ACTIVE.value,
                    ProductBatch.expiry_date < today,
                )
            )
            .order_by(ProductBatch.expiry_date, ProductBatch.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        candidates = list(result.scalars().all())
        report.examined = len(candidates)

        touched_products = set()
        for batch in candidates:
            # Read before the savepoint; rolling it back expires the batch
            batch_id, batch_number = batch.id, batch.batch_number
            try:
                async with self.db.begin_nested():
                    record = await self._expire_batch(batch, today, actor)
            except Exception as e:
                report.failed += 1
                logger.exception(f"Auto-quarantine failed for batch {batch_number} ({batch_id}): {e}")
                continue

            if record is None:
                report.skipped += 1
                continue
            report.quarantined += 1
            report.record_ids.append(record.id)
            touched_products.add(batch.product_id)

            await self._emit(BatchEventType.BATCH_EXPIRED, batch, record, AUTO_EXPIRE_REASON)
            await self._emit(BatchEventType.QUARANTINE_CREATED, batch, record, AUTO_EXPIRE_REASON)

        for product_id in touched_products:
            await self.batches.recompute_product_quantity(product_id)

        logger.info(
            f"Auto-quarantine sweep {today}: examined={report.examined} "
            f"quarantined={report.quarantined} skipped={report.skipped} failed={report.failed}"
        )
        return report

    async def _expire_batch(
        self, batch: ProductBatch, today: date, actor: str
    ) -> Optional[QuarantineRecord]:
        if not sm.can_auto_expire(batch.status):
            return None
        if await self.get_open_record_for_batch(batch.id) is not None:
            return None

        record = await self._open_record(batch, AUTO_EXPIRE_REASON, actor, today)
        batch.status = BatchStatus.EXPIRED.value
        self.batches.record_movement(batch, MovementType.EXPIRE, 0, AUTO_EXPIRE_REASON, actor)
        await self.db.flush()
        return record

    # ==================== QUERIES ====================

    async def get_record(self, quarantine_id: uuid.UUID) -> Result[QuarantineRecord]:
        record = await self.db.get(QuarantineRecord, quarantine_id)
        if record is None:
            return not_found("QuarantineRecord", quarantine_id)
        return Ok(record)

    async def get_open_record_for_batch(self, batch_id: uuid.UUID) -> Optional[QuarantineRecord]:
        result = await self.db.execute(
            select(QuarantineRecord).where(
                and_(
                    QuarantineRecord.batch_id == batch_id,
                    QuarantineRecord.status == QuarantineStatus.PENDING_REVIEW.value,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_records(
        self,
        status: Optional[str] = None,
        batch_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[QuarantineRecord], int]:
        query = select(QuarantineRecord)
        conditions = []
        if status:
            conditions.append(QuarantineRecord.status == status)
        if batch_id:
            conditions.append(QuarantineRecord.batch_id == batch_id)
        if conditions:
            query = query.where(and_(*conditions))

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(
            QuarantineRecord.quarantine_date.desc(), QuarantineRecord.created_at.desc()
        ).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def get_pending_review(self) -> List[QuarantineRecord]:
        result = await self.db.execute(
            select(QuarantineRecord)
            .where(QuarantineRecord.status == QuarantineStatus.PENDING_REVIEW.value)
            .order_by(QuarantineRecord.quarantine_date, QuarantineRecord.created_at)
        )
        return list(result.scalars().all())

    async def get_action_history(
        self, quarantine_id: uuid.UUID
    ) -> Result[List[QuarantineActionLog]]:
        if await self.db.get(QuarantineRecord, quarantine_id) is None:
            return not_found("QuarantineRecord", quarantine_id)
        result = await self.db.execute(
            select(QuarantineActionLog)
            .where(QuarantineActionLog.quarantine_record_id == quarantine_id)
            .order_by(QuarantineActionLog.performed_at, QuarantineActionLog.id)
        )
        return Ok(list(result.scalars().all()))

    async def get_quarantine_summary(self) -> Dict[str, Any]:
        """Counts by status plus totals for records still pending review."""
        result = await self.db.execute(
            select(
                QuarantineRecord.status,
                func.count(QuarantineRecord.id),
                func.coalesce(func.sum(QuarantineRecord.quantity_quarantined), 0),
                func.coalesce(func.sum(QuarantineRecord.estimated_loss), 0),
            ).group_by(QuarantineRecord.status)
        )

        by_status = {s.value: 0 for s in QuarantineStatus}
        total_quantity = 0
        total_loss = Decimal("0")
        pending_quantity = 0
        pending_loss = Decimal("0")
        for status, count, qty, loss in result.all():
            by_status[status] = count
            total_quantity += int(qty)
            total_loss += Decimal(str(loss))
            if status == QuarantineStatus.PENDING_REVIEW.value:
                pending_quantity = int(qty)
                pending_loss = Decimal(str(loss))

        return {
            "total_records": sum(by_status.values()),
            "by_status": by_status,
            "pending_review": by_status[QuarantineStatus.PENDING_REVIEW.value],
            "total_quantity": total_quantity,
            "total_estimated_loss": total_loss,
            "pending_quantity": pending_quantity,
            "pending_estimated_loss": pending_loss,
        }

    # ==================== HELPERS ====================

    async def _lock_batch(self, batch_id: uuid.UUID) -> Optional[ProductBatch]:
        result = await self.db.execute(
            select(ProductBatch)
            .where(ProductBatch.id == batch_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _log_action(
        self,
        record: QuarantineRecord,
        action: str,
        actor: str,
        previous_status: Optional[str],
        new_status: Optional[str],
        comments: Optional[str] = None,
    ) -> QuarantineActionLog:
        entry = QuarantineActionLog(
            id=uuid.uuid4(),
            quarantine_record_id=record.id,
            action=action,
            performed_by=actor,
            previous_status=previous_status,
            new_status=new_status,
            comments=comments,
        )
        self.db.add(entry)
        return entry

    async def _emit(
        self,
        event_type: BatchEventType,
        batch: ProductBatch,
        record: QuarantineRecord,
        reason: Optional[str],
    ) -> None:
        product = await self.batches.get_product(batch.product_id)
        self.publisher.emit(
            event_type,
            action_data={
                "batch_id": str(batch.id),
                "product_id": str(batch.product_id),
                "quarantine_id": str(record.id),
                "status": record.status,
            },
            product_name=product.name if product else None,
            batch_number=batch.batch_number,
            quantity=record.quantity_quarantined,
            days_until_expiry=batch.days_until_expiry(date.today()),
            reason=reason,
        )
