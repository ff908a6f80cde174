"""Tests for the admin HTTP endpoints."""
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.api.deps import get_payment_rail
from app.database import get_db
from app.main import app
from app.models.affiliate_earning import EarningStatus
from tests.factories import create_partner, create_offer, create_earning

BASE = "/api/v1/affiliates"


@pytest_asyncio.fixture
async def client(db, rail):
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_rail] = lambda: rail

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_run_commission_batch(client, db):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    await create_earning(db, partner, offer, "10.00", booking_value="100", status=EarningStatus.PENDING)

    response = await client.post(f"{BASE}/commission-batches", json={"batch_date": "2026-10-19"})

    assert response.status_code == 201
    body = response.json()
    assert body["processed_count"] == 1
    assert Decimal(body["total_commissions"]) == Decimal("10.00")

    listing = await client.get(f"{BASE}/commission-batches")
    assert listing.status_code == 200
    [batch] = listing.json()
    assert batch["id"] == body["batch_id"]
    assert batch["status"] == "COMPLETED"
    assert batch["batch_date"] == "2026-10-19"


@pytest.mark.asyncio
async def test_request_payout(client, db):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    await create_earning(db, partner, offer, "120.00")
    actor = uuid.uuid4()

    response = await client.post(
        f"{BASE}/partners/{partner.id}/payouts",
        json={"amount": "100", "currency": "USD", "payment_method": "bank_transfer"},
        headers={"X-Actor-Id": str(actor)},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["invoice_id"] is not None

    listing = await client.get(f"{BASE}/partners/{partner.id}/payouts")
    assert [p["id"] for p in listing.json()] == [body["id"]]


@pytest.mark.asyncio
async def test_request_payout_error_status_codes(client, db):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    await create_earning(db, partner, offer, "30.00")

    insufficient = await client.post(
        f"{BASE}/partners/{partner.id}/payouts",
        json={"amount": "100", "payment_method": "razorpay"},
    )
    below_minimum = await client.post(
        f"{BASE}/partners/{partner.id}/payouts",
        json={"amount": "25", "payment_method": "razorpay"},
    )
    missing = await client.post(
        f"{BASE}/partners/{uuid.uuid4()}/payouts",
        json={"amount": "25", "payment_method": "razorpay"},
    )

    assert insufficient.status_code == 402
    assert insufficient.json()["type"] == "InsufficientFunds"
    assert below_minimum.status_code == 402
    assert below_minimum.json()["error"] == "Minimum payout amount is 50 USD"
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_payout_audit_trail(client, db):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    await create_earning(db, partner, offer, "80.00")
    actor = uuid.uuid4()
    created = await client.post(
        f"{BASE}/partners/{partner.id}/payouts",
        json={"amount": "80", "payment_method": "razorpay"},
        headers={"X-Actor-Id": str(actor)},
    )
    payout_id = created.json()["id"]

    response = await client.get(f"{BASE}/payouts/{payout_id}/audit-trail")
    missing = await client.get(f"{BASE}/payouts/{uuid.uuid4()}/audit-trail")

    assert response.status_code == 200
    [entry] = response.json()
    assert entry["action_type"] == "PAYOUT_REQUESTED"
    assert entry["user_id"] == str(actor)
    assert entry["details"]["amount"] == "80.00"
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_conversion_report(client, db):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    await create_earning(db, partner, offer, "10.25", status=EarningStatus.PENDING)
    await create_earning(db, partner, offer, "20.50", status=EarningStatus.CONFIRMED)

    response = await client.get(f"{BASE}/partners/{partner.id}/conversion-report")
    filtered = await client.get(
        f"{BASE}/partners/{partner.id}/conversion-report", params={"status": "PENDING"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["conversion_count"] == 2
    assert body["totals"] == {"pending": 10.25, "confirmed": 20.5, "paid": 0.0, "cancelled": 0.0}
    assert filtered.json()["conversion_count"] == 1


@pytest.mark.asyncio
async def test_list_jobs(client):
    response = await client.get(f"{BASE}/jobs")

    assert response.status_code == 200
