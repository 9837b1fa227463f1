"""Dashboard summary, critical items and the batch expiry report."""
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from pharmabatch.core.result import ErrorKind
from pharmabatch.services.expiry_summary_service import ExpirySummaryService, severity_for
from pharmabatch.services.quarantine_service import QuarantineService


TODAY = date(2026, 5, 1)


@pytest_asyncio.fixture
async def stocked(catalog, make_batch):
    amox, flu, saline = catalog.amoxicillin, catalog.flu_vaccine, catalog.saline
    return {
        "expired": await make_batch(amox, "A-PAST", date(2026, 4, 20), 10, cost_per_unit="1.00"),
        "today": await make_batch(amox, "A-TODAY", TODAY, 2, cost_per_unit="5.00"),
        "week": await make_batch(flu, "F-WEEK", date(2026, 5, 5), 3, cost_per_unit="10.00"),
        "month": await make_batch(flu, "F-MONTH", date(2026, 5, 25), 1, cost_per_unit="10.00"),
        "later": await make_batch(saline, "S-LATER", date(2026, 7, 1), 5),
    }


@pytest.mark.parametrize("days, severity", [
    (-3, "EXPIRED"), (0, "EXPIRED"), (1, "CRITICAL"), (7, "CRITICAL"),
    (8, "HIGH"), (15, "HIGH"), (16, "MEDIUM"), (30, "MEDIUM"), (31, "LOW"),
])
def test_severity_bands(days, severity):
    assert severity_for(days) == severity


async def test_expiry_summary(db, stocked):
    summary = await ExpirySummaryService(db).get_expiry_summary(TODAY)

    assert summary["expired_count"] == 1
    assert summary["expiring_today_count"] == 1
    assert summary["expiring_this_week_count"] == 2
    assert summary["expiring_this_month_count"] == 3
    assert summary["category_breakdown"] == {"Antibiotics": 1, "Vaccines": 2}
    assert summary["total_value_at_risk"] == Decimal("50.00")
    assert summary["expired_value"] == Decimal("10.00")
    assert summary["quarantined_items_count"] == 0
    assert [c["batch_number"] for c in summary["critical_items"]] == ["A-PAST", "A-TODAY", "F-WEEK"]
    assert summary["expired_trend"]["direction"] == "STABLE"
    assert summary["expired_trend"]["message"] == "No change 0.0% from last week"


async def test_summary_counts_quarantine_records(db, stocked):
    service = QuarantineService(db)
    await service.quarantine_batch(stocked["later"].id, "damaged packaging")

    summary = await ExpirySummaryService(db).get_expiry_summary(TODAY)
    assert summary["quarantined_items_count"] == 1
    assert summary["pending_review_count"] == 1


async def test_critical_items_severity(db, stocked):
    items = await ExpirySummaryService(db).get_critical_items(limit=10, today=TODAY)

    assert [(i["batch_number"], i["days_until_expiry"], i["severity"]) for i in items] == [
        ("A-PAST", -11, "EXPIRED"),
        ("A-TODAY", 0, "EXPIRED"),
        ("F-WEEK", 4, "CRITICAL"),
    ]
    assert items[2]["category"] == "Vaccines"
    assert items[2]["value"] == Decimal("30.00")


async def test_expiring_batches(db, stocked):
    service = ExpirySummaryService(db)

    result = await service.get_expiring_batches(days_ahead=7, today=TODAY)
    assert result.ok
    assert [b["batch_number"] for b in result.value] == ["A-TODAY", "F-WEEK"]

    invalid = await service.get_expiring_batches(days_ahead=-1, today=TODAY)
    assert invalid.kind == ErrorKind.VALIDATION


async def test_batch_expiry_report(db, stocked):
    report = await ExpirySummaryService(db).generate_batch_expiry_report(TODAY)

    assert report["total_batches"] == 5
    assert report["active_batches"] == 5
    assert report["expiring_batches"] == 2
    assert report["expired_batches"] == 1
    assert report["total_inventory_value"] == Decimal("60.00")
    assert report["expiring_inventory_value"] == Decimal("40.00")

    ranges = report["ranges"]
    assert ranges["0-7 days"]["batch_count"] == 2
    assert ranges["8-30 days"]["batch_count"] == 1
    assert ranges["31-60 days"]["batch_count"] == 0
    assert ranges["61-90 days"]["batch_count"] == 1
    assert ranges["Expired"]["batch_count"] == 1
    assert ranges["Expired"]["total_quantity"] == 10
