"""Infrastructure models package exports."""
from .base import Base, metadata
from .program import ProgramModel
from .donation import DonationModel, DonationSequenceModel

__all__ = [
    "Base",
    "metadata",
    "ProgramModel",
    "DonationModel",
    "DonationSequenceModel",
]
