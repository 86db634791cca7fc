"""
Donation domain events.

Dataclass events record operator-visible lifecycle facts (new donations,
status transitions) for downstream handling such as realtime admin badges.
Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class DonationEvent:
    donation_id: int
    donation_code: str
    program_id: Optional[int]
    amount: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class DonationCreated(DonationEvent):
    status: str = "pending"
    payment_source: str = "gateway"


@dataclass
class DonationStatusChanged(DonationEvent):
    previous_status: str = ""
    current_status: str = ""
    ledger_delta: str = "0"
    source: str = "webhook"  # webhook / operator / sweep
