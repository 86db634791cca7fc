"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings, then provide a
throwaway SQLite database per test.
"""
import itertools
import os
from decimal import Decimal
from functools import partial

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./.pytest-default.db")
os.environ.setdefault("MIDTRANS__SERVER_KEY", "SECRET")
os.environ.setdefault("OPERATOR_API_KEY", "operator-test-key")

import pytest
import pytest_asyncio

from domain.donation.entity import Donation, DonationStatus, PaymentSource
from domain.program.entity import Program
from infrastructure.database import create_engine_for, create_session_factory, create_tables
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


SERVER_KEY = "SECRET"
OPERATOR_KEY = "operator-test-key"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'donations.db'}"


@pytest_asyncio.fixture
async def db_engine(database_url):
    engine = create_engine_for(database_url)
    await create_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def uow_factory(db_engine):
    return partial(SQLAlchemyUnitOfWork, create_session_factory(db_engine))


@pytest.fixture
def make_program(uow_factory):
    async def _make(title: str = "Clean Water", collected: str = "0") -> Program:
        async with uow_factory() as uow:
            return await uow.program_repository.create(
                Program(id=None, title=title, target_amount=Decimal("10000000"), collected_amount=Decimal(collected))
            )

    return _make


@pytest.fixture
def make_donation(uow_factory):
    counter = itertools.count(1)

    async def _make(
        *,
        program_id=None,
        amount: str = "50000",
        source: PaymentSource = PaymentSource.GATEWAY,
        order_id=None,
        created_at=None,
    ) -> Donation:
        n = next(counter)
        if source == PaymentSource.GATEWAY and order_id is None:
            order_id = f"DPF-20250101123000-T{n:04d}"
        donation = Donation(
            id=None,
            donation_code=f"DPF-20250101-{n:04d}",
            program_id=program_id,
            amount=Decimal(amount),
            status=DonationStatus.PENDING,
            payment_source=source,
            donor_name="Test Donor",
            gateway_order_id=order_id if source == PaymentSource.GATEWAY else None,
            created_at=created_at,
        )
        async with uow_factory() as uow:
            return await uow.donation_repository.create(donation)

    return _make


@pytest.fixture
def load(uow_factory):
    """Read back a donation or program outside any writer transaction."""

    async def _load(*, donation_id=None, program_id=None):
        async with uow_factory(readonly=True) as uow:
            if donation_id is not None:
                return await uow.donation_repository.get_by_id(donation_id)
            return await uow.program_repository.get_by_id(program_id)

    return _load


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)


@pytest.fixture
def publisher():
    return RecordingPublisher()
