from decimal import Decimal
from urllib.parse import urlencode

import httpx
import pytest
import pytest_asyncio

from application.dtos.payments import CheckoutSession
from application.services.webhook_reconciler import expected_signature
from domain.common.exceptions import GatewayUnavailableException
from domain.donation.entity import DonationStatus, PaymentSource


SERVER_KEY = "SECRET"
OPERATOR = {"X-Operator-Key": "operator-test-key"}


class StubGateway:
    provider = "stub"

    def __init__(self, error=None):
        self.error = error

    async def create_checkout_session(self, donation, program=None):
        if self.error is not None:
            raise self.error
        return CheckoutSession(session_token="tok-api", redirect_url="https://pay.example/tok-api", raw={"token": "tok-api"})

    async def aclose(self):
        return None


@pytest.fixture
def gateway():
    return StubGateway()


@pytest_asyncio.fixture
async def client(uow_factory, gateway):
    from api.dependencies import get_gateway, get_uow_factory
    from main import app

    async def _gateway():
        yield gateway

    app.dependency_overrides[get_uow_factory] = lambda: uow_factory
    app.dependency_overrides[get_gateway] = _gateway
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.clear()


def signed(order_id, transaction_status, gross_amount="50000.00", status_code="200"):
    return {
        "order_id": order_id,
        "transaction_status": transaction_status,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "signature_key": expected_signature(order_id, status_code, gross_amount, SERVER_KEY),
        "payment_type": "bank_transfer",
    }


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert "X-Request-ID" in resp.headers


# ---- webhook ----

@pytest.mark.asyncio
async def test_webhook_json_settlement(client, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id)

    resp = await client.post("/api/v1/payments/midtrans/webhook", json=signed(donation.gateway_order_id, "settlement"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 0
    assert body["data"]["outcome"] == "applied"
    assert (await load(program_id=program.id)).collected_amount == Decimal("50000")


@pytest.mark.asyncio
async def test_webhook_form_encoded(client, make_donation, load):
    donation = await make_donation()
    form = signed(donation.gateway_order_id, "expire")
    form["va_numbers"] = '[{"bank": "bca", "va_number": "12345"}]'

    resp = await client.post(
        "/api/v1/payments/midtrans/webhook",
        content=urlencode(form),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    assert resp.status_code == 200
    stored = await load(donation_id=donation.id)
    assert stored.status == DonationStatus.EXPIRED
    assert stored.gateway_va_numbers == [{"bank": "bca", "va_number": "12345"}]


@pytest.mark.asyncio
async def test_webhook_duplicate_is_acknowledged(client, make_donation):
    donation = await make_donation()
    payload = signed(donation.gateway_order_id, "settlement")
    await client.post("/api/v1/payments/midtrans/webhook", json=payload)
    resp = await client.post("/api/v1/payments/midtrans/webhook", json=payload)
    assert resp.status_code == 200
    assert resp.json()["data"]["outcome"] == "duplicate"


@pytest.mark.asyncio
async def test_webhook_bad_signature_is_forbidden(client, make_donation, load):
    donation = await make_donation()
    payload = signed(donation.gateway_order_id, "settlement")
    payload["signature_key"] = "0" * 128

    resp = await client.post("/api/v1/payments/midtrans/webhook", json=payload)

    assert resp.status_code == 403
    assert resp.json()["error"]["type"] == "InvalidSignature"
    assert (await load(donation_id=donation.id)).status == DonationStatus.PENDING


@pytest.mark.asyncio
async def test_webhook_unknown_order_is_not_found(client):
    resp = await client.post("/api/v1/payments/midtrans/webhook", json=signed("DPF-20250101123000-ZZZZZ", "settlement"))
    assert resp.status_code == 404
    assert resp.json()["error"]["type"] == "DonationNotFound"


@pytest.mark.asyncio
async def test_webhook_unmapped_status_is_acknowledged(client, make_donation):
    donation = await make_donation()
    resp = await client.post("/api/v1/payments/midtrans/webhook", json=signed(donation.gateway_order_id, "authorize"))
    assert resp.status_code == 200
    assert resp.json()["data"]["outcome"] == "unmapped"


@pytest.mark.asyncio
async def test_webhook_malformed_body(client):
    resp = await client.post(
        "/api/v1/payments/midtrans/webhook",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Malformed notification body"


@pytest.mark.asyncio
async def test_webhook_ip_allowlist(client, make_donation, monkeypatch):
    from core.settings import payment_settings

    donation = await make_donation()
    monkeypatch.setattr(payment_settings.webhook, "ip_allowlist", ["10.0.0.0/8"])
    resp = await client.post("/api/v1/payments/midtrans/webhook", json=signed(donation.gateway_order_id, "settlement"))
    assert resp.status_code == 403

    monkeypatch.setattr(payment_settings.webhook, "ip_allowlist", ["127.0.0.1"])
    resp = await client.post("/api/v1/payments/midtrans/webhook", json=signed(donation.gateway_order_id, "settlement"))
    assert resp.status_code == 200


# ---- donor endpoints ----

@pytest.mark.asyncio
async def test_create_donation(client, make_program):
    program = await make_program()
    resp = await client.post(
        "/api/v1/donations",
        json={"program_id": program.id, "donor_name": "Dewi", "donor_email": "dewi@example.com", "amount": "100000"},
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["session_token"] == "tok-api"
    assert data["donation"]["status"] == "pending"
    assert data["donation"]["payment_source"] == "gateway"


@pytest.mark.asyncio
async def test_create_donation_gateway_failure(client, gateway, uow_factory):
    from application.dtos.donations import DonationQuery
    from application.services.donation_service import DonationApplicationService

    gateway.error = GatewayUnavailableException("read timeout at snap", provider="midtrans")
    resp = await client.post("/api/v1/donations", json={"donor_name": "Dewi", "amount": "100000"})

    assert resp.status_code == 502
    body = resp.json()
    assert body["message"] == "Transaction could not be created"
    assert body["error"]["details"] is None
    _, total = await DonationApplicationService(uow_factory).list_donations(DonationQuery())
    assert total == 0


@pytest.mark.asyncio
async def test_create_donation_validation(client):
    resp = await client.post("/api/v1/donations", json={"donor_name": "Dewi", "amount": "-5"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_confirm_transfer(client):
    resp = await client.post(
        "/api/v1/donations/confirm",
        json={
            "donor_name": "Sari",
            "donor_phone": "0812",
            "amount": "75000",
            "bank_destination": "Mandiri 998877",
            "purpose": "Infaq",
        },
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["status"] == "pending"
    assert data["payment_source"] == "manual"
    assert data["notes"] == "Purpose: Infaq"


@pytest.mark.asyncio
async def test_summary(client, make_donation, uow_factory):
    from application.dtos.donations import UpdateDonationStatus
    from application.services.donation_service import DonationApplicationService

    d = await make_donation(program_id=None, amount="30000")
    await DonationApplicationService(uow_factory).update_status(d.id, UpdateDonationStatus(status="paid"))

    resp = await client.get("/api/v1/donations/summary")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["scope"] == "general"
    assert data["count"] == 1
    assert Decimal(str(data["amount"])) == Decimal("30000")


# ---- operator endpoints ----

@pytest.mark.asyncio
async def test_admin_requires_operator_key(client):
    assert (await client.get("/api/v1/admin/donations")).status_code == 403
    resp = await client.get("/api/v1/admin/donations", headers={"X-Operator-Key": "nope"})
    assert resp.status_code == 403
    assert resp.json()["message"] == "Operator credentials required"


@pytest.mark.asyncio
async def test_admin_list_and_detail(client, make_donation):
    a = await make_donation()
    await make_donation(source=PaymentSource.MANUAL)

    resp = await client.get("/api/v1/admin/donations", params={"payment_source": "manual"}, headers=OPERATOR)
    assert resp.status_code == 200
    page = resp.json()["data"]
    assert page["total"] == 1
    assert page["items"][0]["payment_source"] == "manual"

    resp = await client.get(f"/api/v1/admin/donations/{a.id}", headers=OPERATOR)
    assert resp.json()["data"]["donation_code"] == a.donation_code
    assert (await client.get("/api/v1/admin/donations/9999", headers=OPERATOR)).status_code == 404


@pytest.mark.asyncio
async def test_admin_status_update_and_conflict(client, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id, source=PaymentSource.MANUAL)
    url = f"/api/v1/admin/donations/{donation.id}/status"

    resp = await client.patch(url, json={"status": "paid"}, headers=OPERATOR)
    assert resp.status_code == 200
    assert (await load(program_id=program.id)).collected_amount == Decimal("50000")

    resp = await client.patch(url, json={"status": "expired"}, headers=OPERATOR)
    assert resp.status_code == 409
    assert resp.json()["error"]["type"] == "InvalidStatusTransition"


@pytest.mark.asyncio
async def test_admin_manual_donation_and_ledger(client, make_program):
    program = await make_program()
    resp = await client.post(
        "/api/v1/admin/donations/manual",
        json={"program_id": program.id, "donor_name": "Pak RT", "amount": "200000", "payment_method": "cash"},
        headers=OPERATOR,
    )
    assert resp.status_code == 201
    assert resp.json()["data"]["status"] == "paid"

    resp = await client.get(f"/api/v1/admin/programs/{program.id}/ledger", headers=OPERATOR)
    assert resp.status_code == 200
    audit = resp.json()["data"]
    assert Decimal(str(audit["drift"])) == 0
    assert audit["paid_count"] == 1


@pytest.mark.asyncio
async def test_admin_expire_stale(client, make_donation, load):
    from datetime import datetime, timedelta, timezone

    stale = await make_donation(created_at=datetime.now(timezone.utc) - timedelta(hours=3))
    resp = await client.post("/api/v1/admin/donations/expire-stale", params={"ttl_minutes": 60}, headers=OPERATOR)

    assert resp.status_code == 200
    assert resp.json()["data"]["expired"] == 1
    assert (await load(donation_id=stale.id)).status == DonationStatus.EXPIRED
