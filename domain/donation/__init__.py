"""Donation domain exports."""
from .entity import Donation, DonationStatus, PaymentSource
from .repository import DonationRepository, DonationSequenceRepository, DonationFilter

__all__ = [
    "Donation",
    "DonationStatus",
    "PaymentSource",
    "DonationRepository",
    "DonationSequenceRepository",
    "DonationFilter",
]
