"""
Payments API routes.

Exposes the inbound gateway notification endpoint. Keep this thin: parsing
and transport concerns only; reconciliation lives in the application layer.
"""
from __future__ import annotations

import ipaddress
import json
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from api.dependencies import get_webhook_reconciler
from application.dtos.payments import MidtransNotification
from application.services.webhook_reconciler import WebhookReconciler
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _ip_permitted(remote_ip: str, allowlist: list[str]) -> bool:
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


async def _read_notification(request: Request) -> MidtransNotification:
    raw_body = await request.body()
    ct = (request.headers.get("content-type") or "").lower()
    try:
        if "application/x-www-form-urlencoded" in ct:
            data: Any = dict(parse_qsl(raw_body.decode("utf-8"), keep_blank_values=True))
        else:
            data = json.loads(raw_body or b"{}")
    except (UnicodeDecodeError, ValueError) as exc:
        logger.warning("webhook_body_unparseable", content_type=ct, error=str(exc))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed notification body") from exc
    if not isinstance(data, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed notification body")
    try:
        return MidtransNotification.model_validate(data)
    except ValidationError as exc:
        logger.warning("webhook_body_invalid", error=str(exc))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed notification body") from exc


@router.post("/midtrans/webhook", summary="Midtrans payment notification")
async def midtrans_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    # Optional IP allowlist
    allowlist = payment_settings.webhook.ip_allowlist or []
    if allowlist:
        remote_ip = request.client.host if request.client else ""
        if not _ip_permitted(remote_ip, allowlist):
            logger.warning("webhook_ip_not_allowed", remote_ip=remote_ip)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Source address not allowed")

    notification = await _read_notification(request)
    logger.info(
        "webhook_received",
        order_id=notification.order_id,
        transaction_status=notification.transaction_status,
    )
    result = await reconciler.reconcile(notification)

    # 200 acknowledges receipt, including no-op outcomes, so the gateway stops retrying
    return success_response(data=result.model_dump(mode="json"), message="Notification processed")
