import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from application.dtos.donations import (
    CreateOnlineDonation,
    DonationQuery,
    ManualConfirmation,
    ManualDonation,
    UpdateDonationStatus,
)
from application.dtos.payments import CheckoutSession
from application.services.donation_service import DonationApplicationService
from core.settings import DonationSettings
from domain.common.exceptions import (
    DomainValidationException,
    DonationNotFoundException,
    GatewayRejectedException,
    GatewayUnavailableException,
    InvalidStatusTransitionException,
    ProgramNotFoundException,
)
from domain.donation.entity import DonationStatus, PaymentSource
from domain.donation.events import DonationCreated, DonationStatusChanged


class StubGateway:
    provider = "stub"

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def create_checkout_session(self, donation, program=None):
        self.calls.append((donation, program))
        if self.error is not None:
            raise self.error
        return CheckoutSession(
            session_token="snap-token-1",
            redirect_url="https://app.sandbox.midtrans.com/snap/v4/redirection/snap-token-1",
            raw={"token": "snap-token-1"},
        )

    async def aclose(self):
        return None


def online(program_id=None, amount="50000"):
    return CreateOnlineDonation(
        program_id=program_id,
        donor_name="Budi",
        donor_email="budi@example.com",
        amount=Decimal(amount),
    )


async def count_all(uow_factory):
    service = DonationApplicationService(uow_factory)
    _, total = await service.list_donations(DonationQuery())
    return total


@pytest.mark.asyncio
async def test_online_donation_opens_checkout(uow_factory, make_program, load, publisher):
    program = await make_program(title="Sumur untuk Desa")
    gateway = StubGateway()
    service = DonationApplicationService(uow_factory, gateway=gateway, publisher=publisher)

    checkout = await service.create_online_donation(online(program.id))

    assert checkout.session_token == "snap-token-1"
    assert checkout.donation.status == DonationStatus.PENDING
    assert checkout.donation.payment_source == PaymentSource.GATEWAY
    assert checkout.donation.payment_method == "snap"
    assert checkout.donation.gateway_order_id.startswith("DPF-")
    sent_donation, sent_program = gateway.calls[0]
    assert sent_program.title == "Sumur untuk Desa"
    assert sent_donation.gateway_order_id == checkout.donation.gateway_order_id
    stored = await load(donation_id=checkout.donation.id)
    assert stored.raw_gateway_payload == {"token": "snap-token-1"}
    assert [type(e) for e in publisher.events] == [DonationCreated]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        GatewayUnavailableException("timed out", provider="stub"),
        GatewayRejectedException("gross_amount too small", provider="stub", provider_code="400"),
    ],
)
async def test_gateway_failure_deletes_pending_donation(uow_factory, error, publisher):
    service = DonationApplicationService(uow_factory, gateway=StubGateway(error=error), publisher=publisher)

    with pytest.raises(type(error)):
        await service.create_online_donation(online())

    assert await count_all(uow_factory) == 0
    assert publisher.events == []


@pytest.mark.asyncio
async def test_online_donation_without_gateway_is_unavailable(uow_factory):
    service = DonationApplicationService(uow_factory)
    with pytest.raises(GatewayUnavailableException):
        await service.create_online_donation(online())


@pytest.mark.asyncio
async def test_online_donation_below_minimum_is_rejected(uow_factory):
    gateway = StubGateway()
    service = DonationApplicationService(uow_factory, gateway=gateway, settings=DonationSettings(min_amount=Decimal("10000")))
    with pytest.raises(DomainValidationException):
        await service.create_online_donation(online(amount="500"))
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_online_donation_for_unknown_program(uow_factory):
    service = DonationApplicationService(uow_factory, gateway=StubGateway())
    with pytest.raises(ProgramNotFoundException):
        await service.create_online_donation(online(program_id=4242))


@pytest.mark.asyncio
async def test_donation_codes_increase_per_day(uow_factory):
    service = DonationApplicationService(uow_factory, gateway=StubGateway())
    first = await service.create_online_donation(online())
    second = await service.create_online_donation(online())
    assert first.donation.donation_code.endswith("-0001")
    assert second.donation.donation_code.endswith("-0002")
    assert first.donation.gateway_order_id != second.donation.gateway_order_id


@pytest.mark.asyncio
async def test_manual_confirmation_stays_pending(uow_factory, make_program, load):
    program = await make_program()
    service = DonationApplicationService(uow_factory)

    dto = await service.create_manual_confirmation(ManualConfirmation(
        program_id=program.id,
        donor_name="Sari",
        donor_phone="081234567890",
        amount=Decimal("75000"),
        bank_destination="BCA 123456",
        purpose="Zakat",
        notes="transfer pagi",
        proof_path="proofs/2025/01/sari.jpg",
    ))

    assert dto.status == DonationStatus.PENDING
    assert dto.payment_source == PaymentSource.MANUAL
    assert dto.gateway_order_id is None
    assert dto.payment_method == "transfer"
    assert dto.payment_channel == "BCA 123456"
    assert dto.notes == "Purpose: Zakat | transfer pagi"
    assert (await load(program_id=program.id)).collected_amount == Decimal("0")


@pytest.mark.asyncio
async def test_record_manual_paid_credits_program(uow_factory, make_program, load, publisher):
    program = await make_program()
    service = DonationApplicationService(uow_factory, publisher=publisher)

    dto = await service.record_manual_paid(ManualDonation(
        program_id=program.id,
        donor_name="Hamba Allah",
        amount=Decimal("250000"),
        is_anonymous=True,
        payment_method="cash",
    ))

    assert dto.status == DonationStatus.PAID
    assert dto.paid_at is not None
    assert (await load(program_id=program.id)).collected_amount == Decimal("250000")
    assert [type(e) for e in publisher.events] == [DonationCreated, DonationStatusChanged]
    assert publisher.events[1].source == "operator"


@pytest.mark.asyncio
async def test_operator_verifies_then_reverses(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id, source=PaymentSource.MANUAL)
    service = DonationApplicationService(uow_factory)

    paid = await service.update_status(donation.id, UpdateDonationStatus(status="paid", notes="mutasi cocok"))
    assert paid.status == DonationStatus.PAID
    assert paid.notes == "mutasi cocok"
    assert (await load(program_id=program.id)).collected_amount == Decimal("50000")

    cancelled = await service.update_status(donation.id, UpdateDonationStatus(status="cancelled"))
    assert cancelled.status == DonationStatus.FAILED
    assert (await load(program_id=program.id)).collected_amount == Decimal("0")


@pytest.mark.asyncio
async def test_operator_invalid_edge_is_rejected(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id)
    service = DonationApplicationService(uow_factory)
    await service.update_status(donation.id, UpdateDonationStatus(status="expired"))

    with pytest.raises(InvalidStatusTransitionException):
        await service.update_status(donation.id, UpdateDonationStatus(status="paid"))

    assert (await load(donation_id=donation.id)).status == DonationStatus.EXPIRED
    assert (await load(program_id=program.id)).collected_amount == Decimal("0")


@pytest.mark.asyncio
async def test_update_unknown_donation(uow_factory):
    service = DonationApplicationService(uow_factory)
    with pytest.raises(DonationNotFoundException):
        await service.update_status(999, UpdateDonationStatus(status="paid"))
    with pytest.raises(DonationNotFoundException):
        await service.get_donation(999)


@pytest.mark.asyncio
async def test_sweep_expires_only_stale_gateway_donations(uow_factory, make_donation, load):
    now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    old = now - timedelta(hours=30)
    stale = await make_donation(created_at=old)
    fresh = await make_donation(created_at=now - timedelta(minutes=10))
    manual = await make_donation(created_at=old, source=PaymentSource.MANUAL)
    service = DonationApplicationService(uow_factory, settings=DonationSettings(pending_ttl_minutes=24 * 60))

    result = await service.expire_stale_pending(now=now)

    assert result.scanned == 1
    assert result.expired == 1
    assert (await load(donation_id=stale.id)).status == DonationStatus.EXPIRED
    assert (await load(donation_id=fresh.id)).status == DonationStatus.PENDING
    assert (await load(donation_id=manual.id)).status == DonationStatus.PENDING


@pytest.mark.asyncio
async def test_sweep_can_include_manual_donations(uow_factory, make_donation, load):
    now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    manual = await make_donation(created_at=now - timedelta(days=3), source=PaymentSource.MANUAL)
    service = DonationApplicationService(uow_factory, settings=DonationSettings(include_manual_in_sweep=True))

    result = await service.expire_stale_pending(now=now)

    assert result.expired == 1
    assert (await load(donation_id=manual.id)).status == DonationStatus.EXPIRED


@pytest.mark.asyncio
async def test_sweep_reclaims_orphaned_checkout(uow_factory, make_donation, load):
    # a crash between checkout creation and compensation leaves a pending row behind
    now = datetime.now(timezone.utc)
    orphan = await make_donation(created_at=now - timedelta(minutes=90))
    service = DonationApplicationService(uow_factory)

    result = await service.expire_stale_pending(now=now, ttl_minutes=60)

    assert result.expired == 1
    assert (await load(donation_id=orphan.id)).status == DonationStatus.EXPIRED


@pytest.mark.asyncio
async def test_summary_separates_general_fund(uow_factory, make_program, make_donation):
    program = await make_program()
    service = DonationApplicationService(uow_factory)
    for program_id, amount in ((None, "10000"), (None, "20000"), (program.id, "40000")):
        d = await make_donation(program_id=program_id, amount=amount)
        await service.update_status(d.id, UpdateDonationStatus(status="paid"))
    await make_donation(program_id=None, amount="99999")

    general = await service.summary()
    scoped = await service.summary(program.id)

    assert (general.scope, general.count, general.amount) == ("general", 2, Decimal("30000"))
    assert (scoped.scope, scoped.count, scoped.amount) == ("program", 1, Decimal("40000"))


@pytest.mark.asyncio
async def test_list_filters_and_search(uow_factory, make_program, make_donation):
    program = await make_program()
    service = DonationApplicationService(uow_factory)
    a = await make_donation(program_id=program.id)
    await make_donation(program_id=None)
    await make_donation(program_id=program.id, source=PaymentSource.MANUAL)
    await service.update_status(a.id, UpdateDonationStatus(status="paid"))

    paid, paid_total = await service.list_donations(DonationQuery(status=DonationStatus.PAID))
    scoped, scoped_total = await service.list_donations(DonationQuery(program_id=program.id))
    manual, _ = await service.list_donations(DonationQuery(payment_source=PaymentSource.MANUAL))
    found, _ = await service.list_donations(DonationQuery(q=a.donation_code))
    page, total = await service.list_donations(DonationQuery(page=2, size=2))

    assert paid_total == 1 and paid[0].id == a.id
    assert scoped_total == 2
    assert len(manual) == 1 and manual[0].payment_source == PaymentSource.MANUAL
    assert [d.id for d in found] == [a.id]
    assert total == 3 and len(page) == 1


def test_online_amount_must_be_whole_rupiah():
    from pydantic import ValidationError

    with pytest.raises(ValidationError):
        online(amount="50000.50")
    assert online(amount="50000.00").amount == Decimal("50000")


@pytest.mark.asyncio
async def test_stored_amount_matches_gateway_charge(uow_factory, load):
    from core.settings import MidtransSettings
    from infrastructure.external.payments.midtrans_client import MidtransClient

    service = DonationApplicationService(uow_factory, gateway=StubGateway())
    checkout = await service.create_online_donation(online(amount="125000.00"))
    stored = await load(donation_id=checkout.donation.id)

    payload = MidtransClient(MidtransSettings(server_key="SB-Mid-server-abc")).build_payload(stored)
    assert payload["transaction_details"]["gross_amount"] == stored.amount
