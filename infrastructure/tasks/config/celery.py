"""Celery application for the donation maintenance jobs (expiry sweep, ledger audit)"""
from __future__ import annotations

import os
from core.logging_config import get_logger
from celery import Celery
from kombu import Queue

from core.config import settings
from .beat import CELERY_BEAT_SCHEDULE


TASK_MODULES = ("infrastructure.tasks.tasks",)

# Environments where jobs run inline in the caller (no broker needed)
EAGER_ENVIRONMENTS = {"development", "dev", "test", "testing"}

logger = get_logger(__name__)

celery_app = Celery("donation_reconciler")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A sweep interrupted by a lost worker is simply re-run; every edge is idempotent
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # One sweep batch must finish well inside the beat interval
    task_soft_time_limit=5 * 60,
    task_time_limit=6 * 60,
    result_expires=24 * 3600,
    task_default_queue="default",
    task_queues=(
        Queue("default"),
        Queue("low"),
    ),
    task_routes={
        "donations.expire_stale_pending": {"queue": "default"},
        "donations.audit_program_ledgers": {"queue": "low"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=TASK_MODULES,
)

if (settings.ENVIRONMENT or "").lower() in EAGER_ENVIRONMENTS:
    celery_app.conf.task_always_eager = True
    celery_app.conf.task_eager_propagates = True

celery_app.autodiscover_tasks(packages=TASK_MODULES)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        eager=bool(sender.conf.task_always_eager),
        queues=[q.name for q in sender.conf.task_queues],
    )
