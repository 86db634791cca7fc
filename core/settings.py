"""
Payment and donation settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway credentials live in one place,
e.g. ``MIDTRANS__SERVER_KEY`` or ``DONATION__PENDING_TTL_MINUTES``.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class MidtransSettings(BaseModel):
    server_key: Optional[str] = None
    client_key: Optional[str] = None
    is_production: bool = False
    # Ignored when either ENVIRONMENT or is_production marks a live deployment
    skip_signature: bool = False
    sandbox_snap_url: str = "https://app.sandbox.midtrans.com"
    production_snap_url: str = "https://app.midtrans.com"
    finish_url: str = "http://localhost:3000"

    @property
    def snap_base_url(self) -> str:
        return self.production_snap_url if self.is_production else self.sandbox_snap_url


class DonationSettings(BaseModel):
    code_prefix: str = "DPF"
    min_amount: Decimal = Decimal("1000")
    pending_ttl_minutes: int = 24 * 60
    sweep_batch_size: int = 200
    include_manual_in_sweep: bool = False
    reconcile_max_attempts: int = 3
    create_max_attempts: int = 3


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="midtrans", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    midtrans: MidtransSettings = Field(default_factory=MidtransSettings)
    donation: DonationSettings = Field(default_factory=DonationSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
