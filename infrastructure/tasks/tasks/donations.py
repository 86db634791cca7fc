"""Donation maintenance Celery tasks (expiry sweep, ledger audit)"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import partial
from typing import Any, AsyncIterator, Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from application.services.donation_service import DonationApplicationService
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.database import create_engine_for, create_session_factory
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)


@asynccontextmanager
async def _donation_service(database_url: Optional[str] = None) -> AsyncIterator[DonationApplicationService]:
    # Each asyncio.run() gets its own engine; pooled connections cannot cross event loops
    engine = create_engine_for(database_url or settings.database.url)
    try:
        uow_factory = partial(SQLAlchemyUnitOfWork, create_session_factory(engine))
        yield DonationApplicationService(uow_factory, settings=payment_settings.donation)
    finally:
        await engine.dispose()


async def _expire(database_url: Optional[str], ttl_minutes: Optional[int]) -> dict[str, Any]:
    async with _donation_service(database_url) as service:
        result = await service.expire_stale_pending(ttl_minutes=ttl_minutes)
    return result.model_dump(mode="json")


async def _audit(database_url: Optional[str]) -> list[dict[str, Any]]:
    async with _donation_service(database_url) as service:
        audits = await service.audit_all_programs()
    return [a.model_dump(mode="json") for a in audits if not a.consistent]


@shared_task(
    bind=True,
    base=BaseTask,
    name="donations.expire_stale_pending",
    autoretry_for=(ConnectionError, OSError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def expire_stale_pending(self, ttl_minutes: Optional[int] = None, database_url: Optional[str] = None) -> dict[str, Any]:
    """Move pending gateway donations past their TTL to expired."""
    result = asyncio.run(_expire(database_url, ttl_minutes))
    logger.info("expire_stale_pending_done", **result)
    return result


@shared_task(bind=True, base=BaseTask, name="donations.audit_program_ledgers")
def audit_program_ledgers(self, database_url: Optional[str] = None) -> list[dict[str, Any]]:
    """Report programs whose collected amount drifted from their paid donations.

    Read only; drift is surfaced to operators, never repaired automatically.
    """
    drifted = asyncio.run(_audit(database_url))
    if drifted:
        logger.error("program_ledger_audit_drift", programs=[d["program_id"] for d in drifted])
    else:
        logger.info("program_ledger_audit_clean")
    return drifted
