"""
API依赖项 - 工作单元、网关、事件发布与运营鉴权
"""
import hmac
from typing import AsyncIterator, Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from application.ports.events import EventPublisher, NullEventPublisher
from application.ports.payment_gateway import PaymentGateway
from application.services.donation_service import DonationApplicationService
from application.services.webhook_reconciler import WebhookReconciler
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import GatewayUnavailableException
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


async def get_gateway() -> AsyncIterator[PaymentGateway]:
    """每个请求一个网关客户端，结束后关闭连接"""
    try:
        gateway = get_payment_gateway()
    except RuntimeError as exc:
        # 凭据缺失等配置问题，对捐赠者表现为网关不可用
        logger.error("payment_gateway_not_configured", error=str(exc))
        raise GatewayUnavailableException("Payment gateway not configured", provider=payment_settings.default_provider) from exc
    try:
        yield gateway
    finally:
        await gateway.aclose()


def get_event_publisher(request: Request) -> EventPublisher:
    return getattr(request.app.state, "event_publisher", None) or NullEventPublisher()


async def get_donation_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> DonationApplicationService:
    return DonationApplicationService(uow_factory, publisher=publisher, settings=payment_settings.donation)


async def get_checkout_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    publisher: EventPublisher = Depends(get_event_publisher),
    gateway: PaymentGateway = Depends(get_gateway),
) -> DonationApplicationService:
    return DonationApplicationService(
        uow_factory, gateway=gateway, publisher=publisher, settings=payment_settings.donation
    )


async def get_webhook_reconciler(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> WebhookReconciler:
    midtrans = payment_settings.midtrans
    return WebhookReconciler(
        uow_factory,
        server_key=midtrans.server_key,
        publisher=publisher,
        skip_signature=midtrans.skip_signature,
        is_production=settings.is_production or midtrans.is_production,
        max_attempts=payment_settings.donation.reconcile_max_attempts,
    )


async def require_operator(x_operator_key: Optional[str] = Header(default=None)) -> None:
    """运营接口鉴权：X-Operator-Key 必须与 OPERATOR_API_KEY 一致；未配置密钥时一律拒绝"""
    expected = settings.OPERATOR_API_KEY
    if not expected or not x_operator_key or not hmac.compare_digest(expected, x_operator_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator credentials required",
        )
