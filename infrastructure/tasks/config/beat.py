"""Celery beat schedule configuration.

Keeping the structure close to the Celery docs makes copying snippets
straightforward for new periodic jobs.
"""
from __future__ import annotations

from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    # Pending checkouts that never got a terminal notification
    "donations-expire-stale-pending": {
        "task": "donations.expire_stale_pending",
        "schedule": crontab(minute="*/15"),
    },
    "donations-audit-program-ledgers": {
        "task": "donations.audit_program_ledgers",
        "schedule": crontab(minute=5),
        "options": {"queue": "low"},
    },
}
