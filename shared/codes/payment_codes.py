"""
Payment and donation specific codes plus the gateway status vocabulary mapping.
"""
from __future__ import annotations

from enum import IntEnum
from typing import Optional


class PaymentCode(IntEnum):
    # Provider/Network errors (6000x)
    PROVIDER_ERROR = 60000  # gateway rejected the request
    PROVIDER_RECOVERABLE = 60001  # gateway unreachable / timed out
    SIGNATURE_ERROR = 60002

    # Donation lifecycle (6001x)
    DONATION_NOT_FOUND = 60010
    PROGRAM_NOT_FOUND = 60011
    UNMAPPED_STATUS = 60012
    INVALID_TRANSITION = 60013
    DUPLICATE_IDENTIFIER = 60014
    LEDGER_WRITE_CONFLICT = 60015


# Provider status -> internal donation status.
# Values missing from a provider table are "unmapped": they never move a donation.
PROVIDER_STATUS_TO_INTERNAL = {
    "midtrans": {
        # Per transaction_status
        "capture": "paid",
        "settlement": "paid",
        "pending": "paid",
        "deny": "failed",
        "cancel": "failed",
        "failure": "failed",
        "expire": "expired",
        # Reversals only apply from paid (paid -> failed edge)
        "refund": "failed",
        "chargeback": "failed",
    },
}


def map_provider_status(provider: str, provider_status: Optional[str]) -> Optional[str]:
    """Return the internal status for a provider status, or None when unmapped."""
    mapping = PROVIDER_STATUS_TO_INTERNAL.get((provider or "").lower(), {})
    return mapping.get((provider_status or "").strip().lower())
