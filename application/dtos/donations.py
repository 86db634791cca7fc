"""
Donation DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.types import condecimal

from domain.donation.entity import DonationStatus, PaymentSource


class CreateOnlineDonation(BaseModel):
    """Donor checkout through the hosted payment page."""

    program_id: Optional[int] = None
    donor_name: str = Field(min_length=1, max_length=255)
    donor_email: Optional[EmailStr] = None
    donor_phone: Optional[str] = Field(default=None, max_length=30)
    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    is_anonymous: bool = False
    notes: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def _whole_rupiah(cls, v: Decimal) -> Decimal:
        # The gateway charges whole IDR; the stored amount must match the charge
        if v != v.to_integral_value():
            raise ValueError("online donations must be a whole rupiah amount")
        return v.quantize(Decimal("1"))


class ManualConfirmation(BaseModel):
    """Donor reports an offline bank transfer; an operator verifies it later."""

    program_id: Optional[int] = None
    donor_name: str = Field(min_length=1, max_length=255)
    donor_phone: str = Field(min_length=1, max_length=30)
    donor_email: Optional[EmailStr] = None
    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    bank_destination: str = Field(min_length=1, max_length=255)
    purpose: str = Field(min_length=1, max_length=255)
    notes: Optional[str] = None
    proof_path: Optional[str] = Field(default=None, max_length=255)

    def combined_notes(self) -> str:
        purpose_note = f"Purpose: {self.purpose}"
        return f"{purpose_note} | {self.notes}" if self.notes else purpose_note


class ManualDonation(BaseModel):
    """Operator records an offline donation that has already been received."""

    program_id: Optional[int] = None
    donor_name: str = Field(min_length=1, max_length=255)
    donor_email: Optional[EmailStr] = None
    donor_phone: Optional[str] = Field(default=None, max_length=50)
    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    is_anonymous: bool = False
    payment_method: str = Field(min_length=1, max_length=100)
    payment_channel: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None
    manual_proof_path: Optional[str] = Field(default=None, max_length=255)


class UpdateDonationStatus(BaseModel):
    status: DonationStatus
    notes: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> Any:
        # "cancelled" is accepted by the admin UI and means failed
        if isinstance(v, str) and v.strip().lower() in {"cancelled", "canceled"}:
            return DonationStatus.FAILED
        return v


class DonationQuery(BaseModel):
    status: Optional[DonationStatus] = None
    program_id: Optional[int] = None
    payment_source: Optional[PaymentSource] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    q: Optional[str] = None
    page: int = Field(default=1, ge=1)
    size: int = Field(default=20, ge=1, le=100)


class DonationDTO(BaseModel):
    id: int
    donation_code: str
    program_id: Optional[int] = None
    amount: Decimal
    status: DonationStatus
    payment_source: PaymentSource
    donor_name: str
    donor_email: Optional[str] = None
    donor_phone: Optional[str] = None
    is_anonymous: bool = False
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    gateway_va_numbers: Optional[list[dict[str, Any]]] = None
    manual_proof_path: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CheckoutResponse(BaseModel):
    session_token: str
    redirect_url: Optional[str] = None
    donation: DonationDTO


class DonationSummary(BaseModel):
    scope: Literal["general", "program"] = "general"
    program_id: Optional[int] = None
    count: int
    amount: Decimal


class LedgerAudit(BaseModel):
    program_id: int
    collected_amount: Decimal
    expected_amount: Decimal
    paid_count: int
    drift: Decimal

    @property
    def consistent(self) -> bool:
        return self.drift == 0


class SweepResult(BaseModel):
    cutoff: datetime
    scanned: int
    expired: int
    skipped: int
