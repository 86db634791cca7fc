"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import CheckoutSession
from domain.donation.entity import Donation
from domain.program.entity import Program


@runtime_checkable
class PaymentGateway(Protocol):
    """Hosted-checkout gateway protocol.

    Implementations persist nothing. They raise GatewayUnavailableException
    for network/timeout/5xx failures (retryable) and GatewayRejectedException
    when the gateway refuses the payload (not retryable).
    """

    provider: str

    async def create_checkout_session(self, donation: Donation, program: Optional[Program] = None) -> CheckoutSession: ...

    async def aclose(self) -> None: ...
