"""
Midtrans Snap adapter (hosted checkout) over plain httpx.

Snap API notes (as of 2025):
- POST {snap_base_url}/snap/v1/transactions with HTTP basic auth
  (server key as username, empty password) returns ``{"token", "redirect_url"}``
  with status 201.
- ``gross_amount`` and item prices are integers (IDR has no minor unit).
- Errors come back as ``{"error_messages": [...]}`` with 4xx/5xx status codes.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import httpx

from application.dtos.payments import CheckoutSession
from core.logging_config import get_logger
from core.settings import MidtransSettings, payment_settings
from domain.common.exceptions import GatewayRejectedException, GatewayUnavailableException
from domain.donation.entity import Donation
from domain.program.entity import Program
from infrastructure.external.payments.base import BasePaymentClient


logger = get_logger(__name__)

GENERAL_ITEM_ID = "general"
GENERAL_ITEM_NAME = "General donation"


class MidtransClient(BasePaymentClient):
    provider = "midtrans"

    def __init__(
        self,
        config: Optional[MidtransSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        self.config = config or payment_settings.midtrans
        if not self.config.server_key:
            raise RuntimeError("MIDTRANS__SERVER_KEY not configured")

    @property
    def transactions_url(self) -> str:
        return f"{self.config.snap_base_url.rstrip('/')}/snap/v1/transactions"

    @staticmethod
    def _to_idr(amount: Decimal) -> int:
        return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def build_payload(self, donation: Donation, program: Optional[Program] = None) -> dict[str, Any]:
        gross = self._to_idr(donation.amount)
        finish_url = self.config.finish_url.rstrip("/")
        customer: dict[str, Any] = {"first_name": donation.donor_name}
        if donation.donor_email:
            customer["email"] = donation.donor_email
        if donation.donor_phone:
            customer["phone"] = donation.donor_phone
        return {
            "transaction_details": {
                "order_id": donation.gateway_order_id,
                "gross_amount": gross,
            },
            "customer_details": customer,
            "item_details": [
                {
                    "id": str(donation.program_id) if donation.program_id is not None else GENERAL_ITEM_ID,
                    "price": gross,
                    "quantity": 1,
                    # Snap rejects item names longer than 50 characters
                    "name": (program.title if program else GENERAL_ITEM_NAME)[:50],
                }
            ],
            "credit_card": {"secure": True},
            "callbacks": {
                "finish": finish_url,
                "pending": finish_url,
                "error": finish_url,
            },
        }

    async def create_checkout_session(self, donation: Donation, program: Optional[Program] = None) -> CheckoutSession:
        if not donation.gateway_order_id:
            raise GatewayRejectedException("Donation has no gateway order id", provider=self.provider)
        payload = self.build_payload(donation, program)

        async def _call() -> httpx.Response:
            return await self.client.post(
                self.transactions_url,
                json=payload,
                auth=(self.config.server_key or "", ""),
                headers={"Accept": "application/json"},
            )

        try:
            resp = await self._retry(_call)
        except httpx.TimeoutException as exc:
            raise GatewayUnavailableException(
                "Payment gateway timed out", provider=self.provider, details={"order_id": donation.gateway_order_id}
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayUnavailableException(
                str(exc) or "Payment gateway unreachable",
                provider=self.provider,
                details={"order_id": donation.gateway_order_id},
            ) from exc

        body = self._json(resp)
        if resp.status_code >= 500 or resp.status_code == 429:
            raise GatewayUnavailableException(
                "Payment gateway unavailable",
                provider=self.provider,
                details={"order_id": donation.gateway_order_id, "http_status": resp.status_code},
            )
        if resp.status_code >= 400:
            raise GatewayRejectedException(
                "; ".join(body.get("error_messages") or []) or "Payment gateway rejected the request",
                provider=self.provider,
                provider_code=str(resp.status_code),
                details={"order_id": donation.gateway_order_id},
            )
        token = body.get("token")
        if not token:
            raise GatewayRejectedException(
                "Payment gateway returned no session token",
                provider=self.provider,
                provider_code=str(resp.status_code),
                details={"order_id": donation.gateway_order_id},
            )

        self._log("checkout_session_opened", order_id=donation.gateway_order_id, http_status=resp.status_code)
        return CheckoutSession(
            session_token=str(token),
            redirect_url=body.get("redirect_url"),
            gateway_transaction_id=body.get("transaction_id"),
            raw=body,
        )

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            logger.warning("gateway_response_not_json", http_status=resp.status_code)
            return {}
        return data if isinstance(data, dict) else {}
