"""HTTP flows through the FastAPI app against an in-memory database."""
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest_asyncio

from pharmabatch.models.product import Category, Product


TODAY = date.today()


@pytest_asyncio.fixture
async def products(session_factory):
    async with session_factory() as session:
        category = Category(id=uuid.uuid4(), name="Antibiotics")
        session.add(category)
        await session.flush()
        amox = Product(
            id=uuid.uuid4(), name="Amoxicillin 500mg", code="AMX-500",
            category_id=category.id, unit_price=Decimal("12.50"),
        )
        session.add(amox)
        await session.commit()
        return {"amoxicillin": str(amox.id), "antibiotics": str(category.id)}


async def _create(client, product_id, number, expiry, quantity, cost="2.00", **headers):
    response = await client.post(
        "/api/v1/batches",
        json={
            "product_id": product_id,
            "batch_number": number,
            "expiry_date": expiry.isoformat(),
            "quantity": quantity,
            "cost_per_unit": cost,
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


# ==================== BATCHES ====================

async def test_create_list_and_get_batch(client, products):
    batch = await _create(client, products["amoxicillin"], "AMX-1", TODAY + timedelta(days=90), 30)
    assert batch["status"] == "ACTIVE"
    assert batch["quantity"] == 30
    assert batch["initial_quantity"] == 30
    assert Decimal(batch["cost_per_unit"]) == Decimal("2.00")

    listing = await client.get("/api/v1/batches", params={"product_id": products["amoxicillin"]})
    assert listing.status_code == 200
    assert listing.json()["total"] == 1

    fetched = await client.get(f"/api/v1/batches/{batch['id']}")
    assert fetched.json()["batch_number"] == "AMX-1"

    missing = await client.get(f"/api/v1/batches/{uuid.uuid4()}")
    assert missing.status_code == 404
    assert missing.json()["detail"]["kind"] == "NOT_FOUND"


async def test_duplicate_batch_number_rejected(client, products):
    await _create(client, products["amoxicillin"], "AMX-1", TODAY + timedelta(days=90), 5)
    response = await client.post(
        "/api/v1/batches",
        json={
            "product_id": products["amoxicillin"],
            "batch_number": "AMX-1",
            "expiry_date": (TODAY + timedelta(days=120)).isoformat(),
            "quantity": 5,
        },
    )
    assert response.status_code == 422
    assert response.json()["detail"]["kind"] == "VALIDATION"


async def test_consume_fifo_and_shortfall(client, products):
    product_id = products["amoxicillin"]
    later = await _create(client, product_id, "AMX-B", TODAY + timedelta(days=60), 20)
    earlier = await _create(client, product_id, "AMX-A", TODAY + timedelta(days=30), 30)

    response = await client.post(
        "/api/v1/batches/consume",
        json={"product_id": product_id, "quantity": 35, "reason": "dispensed"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total_consumed"] == 35
    assert body["product_quantity"] == 15
    assert [(c["batch_id"], c["consumed"]) for c in body["consumptions"]] == [
        (earlier["id"], 30), (later["id"], 5),
    ]

    shortfall = await client.post(
        "/api/v1/batches/consume",
        json={"product_id": product_id, "quantity": 100, "reason": "dispensed"},
    )
    assert shortfall.status_code == 409
    detail = shortfall.json()["detail"]
    assert detail["kind"] == "INSUFFICIENT_STOCK"
    assert detail["context"]["available"] == 15

    untouched = await client.get(f"/api/v1/batches/{later['id']}")
    assert untouched.json()["quantity"] == 15


async def test_adjust_and_movements(client, products):
    batch = await _create(client, products["amoxicillin"], "AMX-1", TODAY + timedelta(days=90), 10)

    response = await client.post(
        f"/api/v1/batches/{batch['id']}/adjust",
        json={"adjustment_type": "SET", "quantity": 4, "reason": "stock count"},
        headers={"X-Actor": "auditor"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["quantity_before"] == 10
    assert body["quantity_after"] == 4
    assert body["batch"]["quantity"] == 4

    movements = await client.get(f"/api/v1/batches/{batch['id']}/movements")
    assert movements.status_code == 200
    assert movements.json()[-1]["performed_by"] == "auditor"


async def test_expiring_batches_view(client, products):
    await _create(client, products["amoxicillin"], "AMX-SOON", TODAY + timedelta(days=3), 4)
    await _create(client, products["amoxicillin"], "AMX-LATE", TODAY + timedelta(days=200), 4)

    response = await client.get("/api/v1/batches/expiring", params={"days_ahead": 7})
    assert response.status_code == 200
    assert [b["batch_number"] for b in response.json()] == ["AMX-SOON"]


# ==================== QUARANTINE ====================

async def test_quarantine_release_flow(client, products):
    batch = await _create(client, products["amoxicillin"], "AMX-1", TODAY + timedelta(days=90), 8)

    opened = await client.post(
        "/api/v1/quarantine",
        json={"batch_id": batch["id"], "reason": "temperature excursion"},
        headers={"X-Actor": "qa.lead"},
    )
    assert opened.status_code == 201
    record = opened.json()
    assert record["status"] == "PENDING_REVIEW"
    assert record["quarantined_by"] == "qa.lead"
    assert Decimal(record["estimated_loss"]) == Decimal("16.00")

    again = await client.post(
        "/api/v1/quarantine",
        json={"batch_id": batch["id"], "reason": "second look"},
    )
    assert again.status_code == 409
    assert again.json()["detail"]["kind"] == "ALREADY_QUARANTINED"

    pending = await client.get("/api/v1/quarantine/pending")
    assert [r["id"] for r in pending.json()] == [record["id"]]

    released = await client.post(
        f"/api/v1/quarantine/{record['id']}/action",
        json={"action": "RELEASE", "notes": "within tolerance"},
    )
    assert released.status_code == 200
    assert released.json()["status"] == "RELEASED"

    closed_again = await client.post(
        f"/api/v1/quarantine/{record['id']}/action",
        json={"action": "DISPOSE"},
    )
    assert closed_again.status_code == 409

    history = await client.get(f"/api/v1/quarantine/{record['id']}/history")
    assert [h["new_status"] for h in history.json()] == ["PENDING_REVIEW", "RELEASED"]

    restored = await client.get(f"/api/v1/batches/{batch['id']}")
    assert restored.json()["status"] == "ACTIVE"


async def test_auto_sweep_endpoint(client, products):
    await _create(client, products["amoxicillin"], "AMX-OLD", TODAY - timedelta(days=2), 6)

    first = await client.post("/api/v1/quarantine/auto-sweep")
    assert first.status_code == 200
    assert first.json()["quarantined"] == 1

    second = await client.post("/api/v1/quarantine/auto-sweep")
    assert second.json()["examined"] == 0

    summary = await client.get("/api/v1/quarantine/summary")
    assert summary.json()["pending_review"] == 1


# ==================== EXPIRY TRENDS ====================

async def test_snapshot_capture_is_idempotent(client, products):
    await _create(client, products["amoxicillin"], "AMX-1", TODAY + timedelta(days=5), 3)
    snapshot_date = TODAY.isoformat()

    first = await client.post("/api/v1/expiry-trends/snapshots", params={"snapshot_date": snapshot_date})
    second = await client.post("/api/v1/expiry-trends/snapshots", params={"snapshot_date": snapshot_date})
    assert first.status_code == 201
    assert first.json()["id"] == second.json()["id"]
    assert first.json()["expiring_7_days"] == 1

    fetched = await client.get(f"/api/v1/expiry-trends/snapshots/{snapshot_date}")
    assert fetched.status_code == 200

    missing = await client.get("/api/v1/expiry-trends/snapshots/2001-01-01")
    assert missing.status_code == 404


async def test_analysis_predictions_and_export(client, products):
    await client.post("/api/v1/expiry-trends/snapshots", params={"snapshot_date": TODAY.isoformat()})
    window = {"start": (TODAY - timedelta(days=7)).isoformat(), "end": TODAY.isoformat()}

    analysis = await client.get(
        "/api/v1/expiry-trends/analysis", params={**window, "granularity": "DAILY"}
    )
    assert analysis.status_code == 200
    assert len(analysis.json()["points"]) == 1

    predictions = await client.get("/api/v1/expiry-trends/predictions", params={"days_ahead": 14})
    assert predictions.status_code == 200
    assert predictions.json()["algorithm"] == "INSUFFICIENT_DATA"
    assert predictions.json()["points"] == []

    out_of_range = await client.get("/api/v1/expiry-trends/predictions", params={"days_ahead": 0})
    assert out_of_range.status_code == 422

    export = await client.get("/api/v1/expiry-trends/export", params={**window, "format": "csv"})
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert export.text.splitlines()[0].startswith("date,")
    assert len(export.text.strip().splitlines()) == 2


async def test_category_trend_endpoints(client, products):
    await _create(client, products["amoxicillin"], "AMX-SOON", TODAY + timedelta(days=3), 5)
    window = {"start": (TODAY - timedelta(days=7)).isoformat(), "end": TODAY.isoformat()}

    analysis = await client.get("/api/v1/expiry-trends/analysis", params=window)
    assert analysis.json()["category_analysis"]["Antibiotics"]["value_at_risk"] == "10.00"

    by_category = await client.get("/api/v1/expiry-trends/by-category", params={"days_back": 7})
    assert by_category.status_code == 200
    points = by_category.json()["Antibiotics"]
    assert len(points) == 38
    assert sum(p["expiring_count"] for p in points) == 1

    single = await client.get(
        f"/api/v1/expiry-trends/analysis/categories/{products['antibiotics']}", params=window
    )
    assert single.status_code == 200
    assert single.json()["insights"][0]["title"] == "Category Analysis: Antibiotics"
    assert list(single.json()["category_analysis"]) == ["Antibiotics"]

    missing = await client.get(f"/api/v1/expiry-trends/analysis/categories/{uuid.uuid4()}", params=window)
    assert missing.status_code == 404


async def test_compare_without_data(client):
    response = await client.post(
        "/api/v1/expiry-trends/compare",
        json={
            "period1_start": "2025-01-01", "period1_end": "2025-01-31",
            "period2_start": "2025-02-01", "period2_end": "2025-02-28",
        },
    )
    assert response.status_code == 422
    assert response.json()["detail"]["kind"] == "VALIDATION"


# ==================== SUMMARY & JOBS ====================

async def test_summary_and_report(client, products):
    await _create(client, products["amoxicillin"], "AMX-SOON", TODAY + timedelta(days=2), 5)

    summary = await client.get("/api/v1/expiry-summary")
    assert summary.status_code == 200
    assert summary.json()["expiring_this_week_count"] == 1
    assert summary.json()["category_breakdown"] == {"Antibiotics": 1}

    critical = await client.get("/api/v1/expiry-summary/critical")
    assert critical.json()[0]["severity"] == "CRITICAL"

    report = await client.get("/api/v1/expiry-summary/report")
    assert report.json()["ranges"]["0-7 days"]["batch_count"] == 1


async def test_manual_job_run(client, products):
    await _create(client, products["amoxicillin"], "AMX-OLD", TODAY - timedelta(days=1), 2)

    response = await client.post("/api/v1/jobs/auto_quarantine_expired_batches/run")
    assert response.status_code == 200
    assert response.json()["result"]["quarantined"] == 1

    unknown = await client.post("/api/v1/jobs/rebuild_everything/run")
    assert unknown.status_code == 404

    status = await client.get("/api/v1/jobs/status")
    assert "capture_expiry_snapshot" in status.json()["registered"]


async def test_health_and_root(client):
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["checks"]["scheduler"] == "disabled"

    root = await client.get("/")
    assert root.json()["docs"] == "/docs"
