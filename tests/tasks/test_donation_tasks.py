import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.donation.entity import Donation, DonationStatus, PaymentSource
from domain.program.entity import Program
from infrastructure.database import create_engine_for, create_session_factory, create_tables
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def _run_with_uow(database_url, fn):
    async def _go():
        engine = create_engine_for(database_url)
        try:
            await create_tables(engine)
            async with SQLAlchemyUnitOfWork(create_session_factory(engine)) as uow:
                return await fn(uow)
        finally:
            await engine.dispose()

    return asyncio.run(_go())


@pytest.fixture
def celery_app():
    from infrastructure.tasks import celery_app

    return celery_app


def test_tasks_are_registered_and_routed(celery_app):
    import infrastructure.tasks.tasks  # noqa: F401

    assert "donations.expire_stale_pending" in celery_app.tasks
    assert "donations.audit_program_ledgers" in celery_app.tasks
    assert celery_app.conf.task_routes["donations.audit_program_ledgers"] == {"queue": "low"}
    assert set(celery_app.conf.beat_schedule) >= {"donations-expire-stale-pending", "donations-audit-program-ledgers"}


def test_expire_task_sweeps_stale_donations(celery_app, database_url):
    from infrastructure.tasks.tasks.donations import expire_stale_pending

    async def seed(uow):
        stale = await uow.donation_repository.create(Donation(
            id=None,
            donation_code="DPF-20250101-0001",
            program_id=None,
            amount=Decimal("50000"),
            status=DonationStatus.PENDING,
            payment_source=PaymentSource.GATEWAY,
            gateway_order_id="DPF-20250101000000-OLD01",
            created_at=datetime.now(timezone.utc) - timedelta(days=2),
        ))
        return stale.id

    stale_id = _run_with_uow(database_url, seed)

    result = expire_stale_pending.apply(kwargs={"ttl_minutes": 60, "database_url": database_url}).get()

    assert result["expired"] == 1
    assert result["scanned"] == 1

    async def read(uow):
        return await uow.donation_repository.get_by_id(stale_id)

    assert _run_with_uow(database_url, read).status == DonationStatus.EXPIRED


def test_audit_task_reports_only_drifted_programs(celery_app, database_url):
    from infrastructure.tasks.tasks.donations import audit_program_ledgers

    async def seed(uow):
        clean = await uow.program_repository.create(Program(id=None, title="Clean"))
        drifted = await uow.program_repository.create(Program(id=None, title="Drifted", collected_amount=Decimal("7000")))
        return clean.id, drifted.id

    _, drifted_id = _run_with_uow(database_url, seed)

    drifted = audit_program_ledgers.apply(kwargs={"database_url": database_url}).get()

    assert [d["program_id"] for d in drifted] == [drifted_id]
    assert Decimal(drifted[0]["drift"]) == Decimal("7000")
