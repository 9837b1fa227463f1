"""Single-batch adjustments, goods receipt and batch creation rules."""
from datetime import date
from decimal import Decimal

import pytest

from pharmabatch.core.result import ErrorKind
from pharmabatch.models.batch import BatchStatus, MovementType
from pharmabatch.models.quarantine import QuarantineStatus
from pharmabatch.schemas.batch import BatchCreate
from pharmabatch.services import batch_state_machine as sm
from pharmabatch.services.batch_events import BatchEventType
from pharmabatch.services.batch_service import BatchService
from pharmabatch.services.quarantine_service import QuarantineService


EXPIRY = date(2027, 6, 30)


# ============================================================================
# STATE MACHINE
# ============================================================================

@pytest.mark.parametrize("raw, expected", [
    ("add", "ADD"),
    ("INCREASE", "ADD"),
    ("decrease", "CONSUME"),
    ("SET", "ADJUST"),
    (" quarantine ", "QUARANTINE"),
    ("TRANSFER", None),
    ("", None),
])
def test_normalize_adjustment_type(raw, expected):
    assert sm.normalize_adjustment_type(raw) == expected


def test_quarantined_batch_cannot_be_quarantined_again():
    assert sm.can_quarantine(BatchStatus.ACTIVE.value)
    assert sm.can_quarantine(BatchStatus.DEPLETED.value)
    assert not sm.can_quarantine(BatchStatus.QUARANTINED.value)
    assert not sm.can_quarantine(BatchStatus.EXPIRED.value)


def test_release_status_follows_quantity():
    assert sm.batch_status_after_action("RELEASE", 12) == BatchStatus.ACTIVE.value
    assert sm.batch_status_after_action("RELEASE", 0) == BatchStatus.DEPLETED.value
    assert sm.batch_status_after_action("DISPOSE", 12) == BatchStatus.EXPIRED.value
    assert sm.batch_status_after_action("RETURN", 12) == BatchStatus.EXPIRED.value


def test_allowed_transitions():
    assert BatchStatus.QUARANTINED.value in sm.get_allowed_transitions(BatchStatus.ACTIVE.value)
    assert BatchStatus.QUARANTINED.value not in sm.get_allowed_transitions(BatchStatus.EXPIRED.value)
    assert sm.get_allowed_transitions("ARCHIVED") == []


# ============================================================================
# ADJUSTMENTS
# ============================================================================

async def test_add_increases_quantity_and_initial(db, catalog, make_batch, publisher):
    batch = await make_batch(catalog.amoxicillin, "AMX-1", EXPIRY, 10)
    service = BatchService(db, publisher)

    result = await service.adjust_batch_stock(batch.id, "INCREASE", 5, "found in stock-take")

    assert result.ok
    assert result.value.adjustment_type == "ADD"
    assert (result.value.quantity_before, result.value.quantity_after) == (10, 15)
    assert batch.quantity == 15
    assert batch.initial_quantity == 15
    assert catalog.amoxicillin.quantity == 15


async def test_consume_to_zero_depletes_and_add_reactivates(db, catalog, make_batch, publisher, recorder):
    batch = await make_batch(catalog.amoxicillin, "AMX-1", EXPIRY, 8)
    service = BatchService(db, publisher)

    assert (await service.adjust_batch_stock(batch.id, "CONSUME", 8, "breakage")).ok
    assert batch.status == BatchStatus.DEPLETED.value
    assert len(recorder.of_type(BatchEventType.BATCH_DEPLETED)) == 1

    assert (await service.adjust_batch_stock(batch.id, "ADD", 3, "recount")).ok
    assert batch.status == BatchStatus.ACTIVE.value
    assert batch.quantity == 3


async def test_consume_more_than_batch_holds(db, catalog, make_batch):
    batch = await make_batch(catalog.amoxicillin, "AMX-1", EXPIRY, 4)
    result = await BatchService(db).adjust_batch_stock(batch.id, "DECREASE", 5, "breakage")

    assert not result.ok
    assert result.kind == ErrorKind.INSUFFICIENT_STOCK
    assert result.context["available"] == 4
    assert batch.quantity == 4


async def test_set_quantity(db, catalog, make_batch):
    batch = await make_batch(catalog.flu_vaccine, "FLU-1", EXPIRY, 20)
    service = BatchService(db)

    result = await service.adjust_batch_stock(batch.id, "SET", 0, "stock-take")
    assert result.ok
    assert batch.status == BatchStatus.DEPLETED.value
    assert catalog.flu_vaccine.quantity == 0

    result = await service.adjust_batch_stock(batch.id, "ADJUST", 30, "stock-take")
    assert result.ok
    assert batch.quantity == 30
    assert batch.initial_quantity == 30

    movements = await service.get_movements(batch.id)
    adjusts = [m for m in movements if m.movement_type == MovementType.ADJUST.value]
    assert sorted(m.quantity_change for m in adjusts) == [-20, 30]


@pytest.mark.parametrize("adjustment_type, quantity", [
    ("ADD", 0),
    ("CONSUME", 0),
    ("ADJUST", -1),
])
async def test_invalid_quantities_rejected(db, catalog, make_batch, adjustment_type, quantity):
    batch = await make_batch(catalog.saline, "SAL-1", EXPIRY, 10)
    result = await BatchService(db).adjust_batch_stock(batch.id, adjustment_type, quantity, "x")
    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION
    assert batch.quantity == 10


async def test_unknown_adjustment_type(db, catalog, make_batch):
    batch = await make_batch(catalog.saline, "SAL-1", EXPIRY, 10)
    result = await BatchService(db).adjust_batch_stock(batch.id, "TRANSFER", 1, "x")
    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION


async def test_adjustments_blocked_while_quarantined(db, catalog, make_batch, publisher):
    batch = await make_batch(catalog.saline, "SAL-1", EXPIRY, 10)
    assert (await QuarantineService(db, publisher).quarantine_batch(batch.id, "leaking seal")).ok

    result = await BatchService(db, publisher).adjust_batch_stock(batch.id, "ADD", 5, "restock")
    assert not result.ok
    assert result.kind == ErrorKind.INVALID_TRANSITION
    assert result.context["current_status"] == BatchStatus.QUARANTINED.value
    assert batch.quantity == 10


async def test_quarantine_adjustment_opens_record(db, catalog, make_batch, publisher):
    batch = await make_batch(catalog.flu_vaccine, "FLU-1", EXPIRY, 12, cost_per_unit="4.00")
    service = BatchService(db, publisher)

    result = await service.adjust_batch_stock(batch.id, "QUARANTINE", 0, "cold chain break")

    assert result.ok
    assert result.value.quarantine_record_id is not None
    assert batch.status == BatchStatus.QUARANTINED.value
    assert batch.quantity == 12
    assert catalog.flu_vaccine.quantity == 12

    record = (await QuarantineService(db).get_record(result.value.quarantine_record_id)).value
    assert record.status == QuarantineStatus.PENDING_REVIEW.value
    assert record.estimated_loss == Decimal("48.00")


async def test_adjust_missing_batch(db, catalog):
    import uuid

    result = await BatchService(db).adjust_batch_stock(uuid.uuid4(), "ADD", 1, "x")
    assert not result.ok
    assert result.kind == ErrorKind.NOT_FOUND


# ============================================================================
# CREATION & GOODS RECEIPT
# ============================================================================

async def test_duplicate_batch_number_rejected(db, catalog, make_batch):
    await make_batch(catalog.amoxicillin, "AMX-1", EXPIRY, 10)
    result = await BatchService(db).create_batch(
        BatchCreate(product_id=catalog.amoxicillin.id, batch_number="AMX-1", expiry_date=EXPIRY, quantity=5)
    )
    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION


async def test_concurrent_duplicate_batch_number_rejected(db, catalog, make_batch):
    first = await make_batch(catalog.amoxicillin, "AMX-1", EXPIRY, 10)
    service = BatchService(db)

    async def not_yet_visible(product_id, batch_number):
        return None

    service.get_batch_by_number = not_yet_visible
    result = await service.create_batch(
        BatchCreate(product_id=catalog.amoxicillin.id, batch_number="AMX-1", expiry_date=EXPIRY, quantity=5)
    )
    assert result.kind == ErrorKind.VALIDATION

    # Only the failed insert was rolled back
    other = await service.create_batch(
        BatchCreate(product_id=catalog.amoxicillin.id, batch_number="AMX-2", expiry_date=EXPIRY, quantity=3)
    )
    assert other.ok
    await db.refresh(first)
    assert first.quantity == 10
    await db.refresh(catalog.amoxicillin)
    assert catalog.amoxicillin.quantity == 13


async def test_same_batch_number_allowed_for_other_product(db, catalog, make_batch):
    await make_batch(catalog.amoxicillin, "LOT-1", EXPIRY, 10)
    other = await make_batch(catalog.saline, "LOT-1", EXPIRY, 4)
    assert other.quantity == 4


@pytest.mark.parametrize("changes", [
    {"quantity": 0},
    {"manufacture_date": date(2028, 1, 1)},
])
async def test_create_batch_validation(db, catalog, changes):
    data = {
        "product_id": catalog.amoxicillin.id,
        "batch_number": "AMX-X",
        "expiry_date": EXPIRY,
        "quantity": 10,
        **changes,
    }
    result = await BatchService(db).create_batch(BatchCreate(**data))
    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION


async def test_goods_receipt_tops_up_existing_batch(db, catalog, make_batch):
    batch = await make_batch(catalog.amoxicillin, "AMX-1", EXPIRY, 10)
    service = BatchService(db)

    result = await service.create_or_update_batch(
        BatchCreate(product_id=catalog.amoxicillin.id, batch_number="AMX-1", expiry_date=EXPIRY, quantity=6)
    )

    assert result.ok
    assert result.value.id == batch.id
    assert batch.quantity == 16
    assert batch.initial_quantity == 16
    assert catalog.amoxicillin.quantity == 16

    batches, total = await service.list_batches(product_id=catalog.amoxicillin.id)
    assert total == 1


async def test_goods_receipt_creates_new_batch(db, catalog):
    service = BatchService(db)
    result = await service.create_or_update_batch(
        BatchCreate(product_id=catalog.saline.id, batch_number="SAL-NEW", expiry_date=EXPIRY, quantity=7)
    )
    assert result.ok
    assert result.value.status == BatchStatus.ACTIVE.value
    assert catalog.saline.quantity == 7


async def test_create_near_expiry_batch_emits_warning(db, catalog, publisher, recorder):
    from datetime import timedelta

    service = BatchService(db, publisher)
    result = await service.create_batch(
        BatchCreate(
            product_id=catalog.saline.id,
            batch_number="SAL-SOON",
            expiry_date=date.today() + timedelta(days=3),
            quantity=5,
        )
    )
    assert result.ok
    assert len(recorder.of_type(BatchEventType.BATCH_CREATED)) == 1
    imminent = recorder.of_type(BatchEventType.EXPIRY_IMMINENT)
    assert len(imminent) == 1
    assert imminent[0].params["days_until_expiry"] == 3
