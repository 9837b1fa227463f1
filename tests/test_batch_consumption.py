"""FIFO consumption across a product's batches."""
import random
from datetime import date, timedelta

import pytest

from pharmabatch.core.result import ErrorKind
from pharmabatch.models.batch import BatchStatus, MovementType
from pharmabatch.services.batch_events import BatchEventType
from pharmabatch.services.batch_service import BatchService
from pharmabatch.services.quarantine_service import QuarantineService


async def test_consume_spans_batches_in_expiry_order(db, catalog, make_batch, publisher, recorder):
    product = catalog.amoxicillin
    later = await make_batch(product, "AMX-B", date(2025, 1, 10), 20)
    earlier = await make_batch(product, "AMX-A", date(2025, 1, 5), 30)

    service = BatchService(db, publisher)
    result = await service.consume_stock(product.id, 35, "sale", performed_by="pharmacist")

    assert result.ok
    consumption = result.value
    assert consumption.total_consumed == 35
    assert [(line.batch_number, line.consumed, line.remaining) for line in consumption.consumptions] == [
        ("AMX-A", 30, 0),
        ("AMX-B", 5, 15),
    ]
    assert earlier.quantity == 0
    assert earlier.status == BatchStatus.DEPLETED.value
    assert later.quantity == 15
    assert later.status == BatchStatus.ACTIVE.value
    assert consumption.product_quantity == 15
    assert product.quantity == 15

    depleted = recorder.of_type(BatchEventType.BATCH_DEPLETED)
    assert [e.params["batch_number"] for e in depleted] == ["AMX-A"]


async def test_insufficient_stock_leaves_batches_untouched(db, catalog, make_batch, publisher, recorder):
    product = catalog.amoxicillin
    first = await make_batch(product, "AMX-A", date(2025, 1, 5), 30)
    second = await make_batch(product, "AMX-B", date(2025, 1, 10), 20)

    service = BatchService(db, publisher)
    result = await service.consume_stock(product.id, 60, "sale")

    assert not result.ok
    assert result.kind == ErrorKind.INSUFFICIENT_STOCK
    assert result.context["requested"] == 60
    assert result.context["available"] == 50
    assert (first.quantity, second.quantity) == (30, 20)
    assert first.status == second.status == BatchStatus.ACTIVE.value
    assert product.quantity == 50
    assert recorder.events == []

    movements = await service.get_movements(first.id)
    assert [m.movement_type for m in movements] == [MovementType.RECEIPT.value]


async def test_consume_skips_quarantined_batches(db, catalog, make_batch, publisher):
    product = catalog.amoxicillin
    soonest = await make_batch(product, "AMX-Q", date(2026, 3, 1), 40)
    usable = await make_batch(product, "AMX-OK", date(2026, 6, 1), 10)

    quarantine = QuarantineService(db, publisher)
    assert (await quarantine.quarantine_batch(soonest.id, "temperature excursion")).ok
    # Quarantined stock is still on hand but cannot be sold
    assert product.quantity == 50

    service = BatchService(db, publisher)
    short = await service.consume_stock(product.id, 11, "sale")
    assert not short.ok
    assert short.context["available"] == 10

    result = await service.consume_stock(product.id, 10, "sale")
    assert result.ok
    assert [line.batch_id for line in result.value.consumptions] == [usable.id]
    assert soonest.quantity == 40
    assert product.quantity == 40


async def test_consume_records_movements(db, catalog, make_batch, publisher):
    product = catalog.flu_vaccine
    batch = await make_batch(product, "FLU-1", date(2026, 12, 31), 25)

    service = BatchService(db, publisher)
    assert (await service.consume_stock(product.id, 10, "clinic order", performed_by="nurse")).ok

    movements = await service.get_movements(batch.id)
    consumes = [m for m in movements if m.movement_type == MovementType.CONSUME.value]
    assert len(consumes) == 1
    assert consumes[0].quantity_change == -10
    assert consumes[0].quantity_after == 15
    assert consumes[0].reason == "clinic order"
    assert consumes[0].performed_by == "nurse"


@pytest.mark.parametrize("quantity", [0, -5])
async def test_consume_rejects_non_positive_quantity(db, catalog, make_batch, quantity):
    await make_batch(catalog.saline, "SAL-1", date(2027, 1, 1), 5)
    result = await BatchService(db).consume_stock(catalog.saline.id, quantity, "sale")
    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION


async def test_consume_unknown_product(db, catalog):
    import uuid

    result = await BatchService(db).consume_stock(uuid.uuid4(), 1, "sale")
    assert not result.ok
    assert result.kind == ErrorKind.NOT_FOUND


async def test_stock_low_emitted_once_when_crossing_threshold(db, catalog, make_batch, publisher, recorder):
    product = catalog.saline
    await make_batch(product, "SAL-1", date(2027, 1, 1), 20)
    service = BatchService(db, publisher)

    assert (await service.consume_stock(product.id, 15, "sale")).ok
    assert (await service.consume_stock(product.id, 2, "sale")).ok

    low = recorder.of_type(BatchEventType.STOCK_LOW)
    assert len(low) == 1
    assert low[0].params["quantity"] == 5


@pytest.mark.parametrize("seed", [3, 17, 42, 99, 2024])
async def test_fifo_properties_hold_for_random_batches(db, catalog, make_batch, seed):
    rng = random.Random(seed)
    product = catalog.amoxicillin
    base = date(2026, 1, 1)

    batches = []
    for i in range(rng.randint(2, 8)):
        expiry = base + timedelta(days=rng.randint(0, 20))
        batches.append(await make_batch(product, f"R{seed}-{i}", expiry, rng.randint(1, 50)))

    total = sum(b.quantity for b in batches)
    requested = rng.randint(1, total)
    before = {b.id: b.quantity for b in batches}

    result = await BatchService(db).consume_stock(product.id, requested, "sale")
    assert result.ok
    assert result.value.total_consumed == requested
    assert product.quantity == total - requested

    ordered = sorted(batches, key=lambda b: (b.expiry_date, b.id))
    touched = [line.batch_id for line in result.value.consumptions]
    assert touched == [b.id for b in ordered[:len(touched)]]

    # Every touched batch except the last is emptied; untouched ones keep their stock
    for b in ordered[:len(touched) - 1]:
        assert b.quantity == 0
        assert b.status == BatchStatus.DEPLETED.value
    for b in ordered[len(touched):]:
        assert b.quantity == before[b.id]
    assert all(b.quantity >= 0 for b in batches)
