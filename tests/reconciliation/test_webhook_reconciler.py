import asyncio
from decimal import Decimal

import pytest

from application.dtos.payments import MidtransNotification
from application.services.webhook_reconciler import WebhookReconciler, expected_signature
from domain.common.exceptions import (
    DonationNotFoundException,
    InvalidSignatureException,
    LedgerWriteConflictException,
)
from domain.donation.entity import DonationStatus
from domain.donation.events import DonationStatusChanged


SERVER_KEY = "SECRET"


def notify(order_id, transaction_status, gross_amount="50000.00", status_code="200", key=SERVER_KEY, **extra):
    body = {
        "order_id": order_id,
        "transaction_status": transaction_status,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "signature_key": expected_signature(order_id, status_code, gross_amount, key),
        "transaction_id": "tx-" + order_id[-5:],
        "payment_type": "bank_transfer",
    }
    body.update(extra)
    return MidtransNotification.model_validate(body)


def test_signature_matches_known_vector():
    import hashlib

    raw = "DPF-20250101123000-AB12X" + "200" + "50000" + "SECRET"
    assert expected_signature("DPF-20250101123000-AB12X", "200", "50000", "SECRET") == hashlib.sha512(raw.encode()).hexdigest()


@pytest.mark.asyncio
async def test_settlement_marks_paid_and_credits_program(uow_factory, make_program, make_donation, load, publisher):
    program = await make_program()
    donation = await make_donation(program_id=program.id)
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY, publisher=publisher)

    result = await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))

    assert result.outcome == "applied"
    assert result.previous_status == "pending"
    assert result.current_status == "paid"
    stored = await load(donation_id=donation.id)
    assert stored.status == DonationStatus.PAID
    assert stored.paid_at is not None
    assert stored.gateway_transaction_id == "tx-" + donation.gateway_order_id[-5:]
    assert "signature_key" not in stored.raw_gateway_payload
    assert (await load(program_id=program.id)).collected_amount == Decimal("50000")
    assert [type(e) for e in publisher.events] == [DonationStatusChanged]


@pytest.mark.asyncio
async def test_duplicate_settlement_counts_once(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id)
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)

    first = await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))
    second = await reconciler.reconcile(notify(donation.gateway_order_id, "capture"))

    assert first.outcome == "applied"
    assert second.outcome == "duplicate"
    assert (await load(program_id=program.id)).collected_amount == Decimal("50000")


@pytest.mark.asyncio
async def test_concurrent_duplicates_apply_once(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id)
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)

    results = await asyncio.gather(*[
        reconciler.reconcile(notify(donation.gateway_order_id, "settlement")) for _ in range(10)
    ])

    outcomes = sorted(r.outcome for r in results)
    assert outcomes.count("applied") == 1
    assert outcomes.count("duplicate") == 9
    assert (await load(program_id=program.id)).collected_amount == Decimal("50000")


@pytest.mark.asyncio
async def test_expire_after_settlement_is_ignored(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id)
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)

    await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))
    late = await reconciler.reconcile(notify(donation.gateway_order_id, "expire"))

    assert late.outcome == "ignored"
    assert (await load(donation_id=donation.id)).status == DonationStatus.PAID
    assert (await load(program_id=program.id)).collected_amount == Decimal("50000")


@pytest.mark.asyncio
async def test_late_settlement_after_expiry_is_ignored(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id)
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)

    await reconciler.reconcile(notify(donation.gateway_order_id, "expire"))
    late = await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))

    assert late.outcome == "ignored"
    assert (await load(donation_id=donation.id)).status == DonationStatus.EXPIRED
    assert (await load(program_id=program.id)).collected_amount == Decimal("0")


@pytest.mark.asyncio
async def test_refund_restores_program_total(uow_factory, make_program, make_donation, load):
    program = await make_program(collected="120000")
    donation = await make_donation(program_id=program.id)
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)

    await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))
    assert (await load(program_id=program.id)).collected_amount == Decimal("170000")

    refund = await reconciler.reconcile(notify(donation.gateway_order_id, "refund"))
    assert refund.outcome == "applied"
    assert Decimal(refund.ledger_delta) == Decimal("-50000")
    assert (await load(donation_id=donation.id)).status == DonationStatus.FAILED
    assert (await load(program_id=program.id)).collected_amount == Decimal("120000")


@pytest.mark.asyncio
async def test_unmapped_status_is_a_noop(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id)
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)

    result = await reconciler.reconcile(notify(donation.gateway_order_id, "authorize"))

    assert result.outcome == "unmapped"
    stored = await load(donation_id=donation.id)
    assert stored.status == DonationStatus.PENDING
    assert stored.raw_gateway_payload["transaction_status"] == "authorize"
    assert (await load(program_id=program.id)).collected_amount == Decimal("0")


@pytest.mark.asyncio
async def test_bad_signature_rejected_before_lookup(uow_factory, make_donation, load):
    donation = await make_donation()
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)

    with pytest.raises(InvalidSignatureException):
        await reconciler.reconcile(notify(donation.gateway_order_id, "settlement", key="WRONG"))

    assert (await load(donation_id=donation.id)).status == DonationStatus.PENDING


@pytest.mark.asyncio
async def test_signature_is_case_insensitive(uow_factory, make_donation):
    donation = await make_donation()
    n = notify(donation.gateway_order_id, "settlement")
    n.signature_key = n.signature_key.upper()
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)
    assert (await reconciler.reconcile(n)).outcome == "applied"


@pytest.mark.asyncio
async def test_missing_server_key_rejects_everything(uow_factory, make_donation):
    donation = await make_donation()
    reconciler = WebhookReconciler(uow_factory, server_key=None)
    with pytest.raises(InvalidSignatureException):
        await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))


@pytest.mark.asyncio
async def test_unknown_order_raises_not_found(uow_factory):
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)
    with pytest.raises(DonationNotFoundException) as exc:
        await reconciler.reconcile(notify("DPF-20250101123000-NOPE0", "settlement"))
    assert exc.value.details == {"order_id": "DPF-20250101123000-NOPE0"}


@pytest.mark.asyncio
async def test_skip_signature_only_outside_production(uow_factory, make_donation):
    donation = await make_donation()
    unsigned = notify(donation.gateway_order_id, "settlement", key="WRONG")

    prod = WebhookReconciler(uow_factory, server_key=SERVER_KEY, skip_signature=True, is_production=True)
    with pytest.raises(InvalidSignatureException):
        await prod.reconcile(unsigned)

    dev = WebhookReconciler(uow_factory, server_key=SERVER_KEY, skip_signature=True, is_production=False)
    assert (await dev.reconcile(unsigned)).outcome == "applied"


@pytest.mark.asyncio
async def test_amount_mismatch_still_reconciles(uow_factory, make_donation):
    donation = await make_donation(amount="50000")
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)
    result = await reconciler.reconcile(notify(donation.gateway_order_id, "settlement", gross_amount="49000.00"))
    assert result.outcome == "applied"


@pytest.mark.asyncio
async def test_contention_is_retried(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id)
    calls = {"n": 0}

    class Contended:
        async def __aenter__(self):
            raise LedgerWriteConflictException("database is locked")

        async def __aexit__(self, exc_type, exc, tb):
            return False

    def flaky_factory(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            return Contended()
        return uow_factory(*args, **kwargs)

    reconciler = WebhookReconciler(flaky_factory, server_key=SERVER_KEY, max_attempts=3)
    result = await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))

    assert result.outcome == "applied"
    assert calls["n"] == 2
    assert (await load(program_id=program.id)).collected_amount == Decimal("50000")


@pytest.mark.asyncio
async def test_contention_gives_up_after_max_attempts(uow_factory, make_donation):
    donation = await make_donation()

    class Contended:
        async def __aenter__(self):
            raise LedgerWriteConflictException("database is locked")

        async def __aexit__(self, exc_type, exc, tb):
            return False

    reconciler = WebhookReconciler(lambda *a, **k: Contended(), server_key=SERVER_KEY, max_attempts=2)
    with pytest.raises(LedgerWriteConflictException):
        await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))


@pytest.mark.asyncio
async def test_publisher_failure_keeps_committed_state(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=program.id)

    class BrokenPublisher:
        async def publish(self, event):
            raise ConnectionError("broker down")

    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY, publisher=BrokenPublisher())
    result = await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))

    assert result.outcome == "applied"
    assert (await load(donation_id=donation.id)).status == DonationStatus.PAID
    assert (await load(program_id=program.id)).collected_amount == Decimal("50000")


@pytest.mark.asyncio
async def test_general_fund_donation_leaves_programs_alone(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donation = await make_donation(program_id=None)
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY)

    result = await reconciler.reconcile(notify(donation.gateway_order_id, "settlement"))

    assert result.outcome == "applied"
    assert Decimal(result.ledger_delta) == 0
    assert (await load(program_id=program.id)).collected_amount == Decimal("0")


@pytest.mark.asyncio
async def test_concurrent_settlements_for_one_program_all_credit(uow_factory, make_program, make_donation, load):
    program = await make_program()
    donations = [await make_donation(program_id=program.id, amount=str(10000 * (i + 1))) for i in range(8)]
    reconciler = WebhookReconciler(uow_factory, server_key=SERVER_KEY, max_attempts=10)

    results = await asyncio.gather(
        *(reconciler.reconcile(notify(d.gateway_order_id, "settlement", gross_amount=f"{10000 * (i + 1)}.00"))
          for i, d in enumerate(donations))
    )

    assert {r.outcome for r in results} == {"applied"}
    assert (await load(program_id=program.id)).collected_amount == Decimal("360000")


@pytest.mark.asyncio
async def test_live_gateway_keys_refuse_signature_skip(uow_factory, make_donation, load, monkeypatch):
    from api.dependencies import get_webhook_reconciler
    from application.ports.events import NullEventPublisher
    from core.settings import payment_settings

    donation = await make_donation()
    monkeypatch.setattr(payment_settings.midtrans, "skip_signature", True)
    monkeypatch.setattr(payment_settings.midtrans, "is_production", True)
    reconciler = await get_webhook_reconciler(uow_factory=uow_factory, publisher=NullEventPublisher())

    with pytest.raises(InvalidSignatureException):
        await reconciler.reconcile(notify(donation.gateway_order_id, "settlement", key="WRONG"))
    assert (await load(donation_id=donation.id)).status == DonationStatus.PENDING


def test_malformed_va_numbers_are_dropped():
    parsed = notify("DPF-20250101123000-AB12X", "pending", va_numbers=["bca", {"bank": "bni", "va_number": "9"}])
    assert parsed.va_numbers == [{"bank": "bni", "va_number": "9"}]
    assert notify("DPF-20250101123000-AB12X", "pending", va_numbers=[1, 2]).va_numbers is None
