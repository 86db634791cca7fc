"""
Payment DTOs (Pydantic v2) used at application boundaries:
checkout sessions returned by the gateway and inbound gateway notifications.
"""
from __future__ import annotations

import json
from typing import Any, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class CheckoutSession(BaseModel):
    session_token: str
    redirect_url: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class MidtransNotification(BaseModel):
    """Inbound HTTP notification (JSON or form encoded).

    Signature inputs are kept as the exact strings the gateway sent; numeric
    JSON values are converted to str so the digest input matches.
    """

    order_id: str = ""
    transaction_status: str = ""
    status_code: str = ""
    gross_amount: str = ""
    signature_key: str = ""
    transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    fraud_status: Optional[str] = None
    va_numbers: Optional[list[dict[str, Any]]] = None

    model_config = ConfigDict(extra="allow")

    @field_validator("order_id", "transaction_status", "status_code", "gross_amount", "signature_key", mode="before")
    @classmethod
    def _coerce_str(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v)

    @field_validator("transaction_id", mode="before")
    @classmethod
    def _coerce_optional_str(cls, v: Any) -> Optional[str]:
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("va_numbers", mode="before")
    @classmethod
    def _parse_va_numbers(cls, v: Any) -> Any:
        # Form-encoded notifications carry nested values as JSON strings
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except ValueError:
                return None
        if isinstance(v, dict):
            return [v]
        if isinstance(v, list):
            # Malformed entries are dropped so a signed notification still reconciles
            return [item for item in v if isinstance(item, dict)] or None
        return None

    def raw_payload(self) -> dict[str, Any]:
        """Payload as stored on the donation (signature stripped)."""
        data = self.model_dump(mode="json", exclude_none=True)
        data.pop("signature_key", None)
        return data


class ReconcileResult(BaseModel):
    order_id: str
    outcome: Literal["applied", "duplicate", "ignored", "unmapped"]
    transaction_status: str
    donation_id: Optional[int] = None
    previous_status: Optional[str] = None
    current_status: Optional[str] = None
    ledger_delta: str = "0"
