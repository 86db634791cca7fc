"""
Webhook reconciliation for hosted-checkout notifications.

Each notification is authenticated, resolved to exactly one donation and
applied through the donation state machine inside a single unit of work,
so duplicate or reordered deliveries never move the program ledger twice.
"""
from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.dtos.payments import MidtransNotification, ReconcileResult
from application.ports.events import EventPublisher, NullEventPublisher
from core.logging_config import get_logger
from domain.common.exceptions import (
    DonationNotFoundException,
    InvalidSignatureException,
    LedgerWriteConflictException,
    UnmappedGatewayStatusException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.donation.entity import DonationStatus
from domain.donation.service import DonationDomainService
from shared.codes.payment_codes import map_provider_status


logger = get_logger(__name__)

PROVIDER = "midtrans"


def expected_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """Hex sha512 over order_id + status_code + gross_amount + server_key."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def _same_amount(gross_amount: str, amount: Decimal) -> bool:
    try:
        return Decimal(gross_amount) == amount
    except (InvalidOperation, ValueError):
        return False


class WebhookReconciler:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        server_key: Optional[str],
        publisher: Optional[EventPublisher] = None,
        skip_signature: bool = False,
        is_production: bool = True,
        max_attempts: int = 3,
    ) -> None:
        self._uow_factory = uow_factory
        self._server_key = server_key or ""
        self._publisher = publisher or NullEventPublisher()
        # Production always verifies, whatever the flag says
        self._skip_signature = skip_signature and not is_production
        self._max_attempts = max(1, int(max_attempts))

    def verify_signature(self, notification: MidtransNotification) -> None:
        if self._skip_signature:
            logger.warning("webhook_signature_skipped", order_id=notification.order_id)
            return
        if not self._server_key:
            # Without a key no signature can be valid
            logger.error("webhook_server_key_missing", order_id=notification.order_id)
            raise InvalidSignatureException(notification.order_id, provider=PROVIDER)
        expected = expected_signature(
            notification.order_id,
            notification.status_code,
            notification.gross_amount,
            self._server_key,
        )
        if not hmac.compare_digest(expected, notification.signature_key.strip().lower()):
            logger.warning(
                "webhook_signature_invalid",
                order_id=notification.order_id,
                status_code=notification.status_code,
            )
            raise InvalidSignatureException(notification.order_id, provider=PROVIDER)

    async def reconcile(self, notification: MidtransNotification) -> ReconcileResult:
        """Authenticate and apply one notification; retried on storage contention."""
        self.verify_signature(notification)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=1.0),
            retry=retry_if_exception_type(LedgerWriteConflictException),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "donation_reconcile_retry",
                        order_id=notification.order_id,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._reconcile_once(notification)
        raise RuntimeError("unreachable")  # pragma: no cover

    async def _reconcile_once(self, notification: MidtransNotification) -> ReconcileResult:
        order_id = notification.order_id
        transaction_status = notification.transaction_status
        events: list = []

        async with self._uow_factory() as uow:
            donation = await uow.donation_repository.get_by_gateway_order_id(order_id, for_update=True)
            if donation is None:
                logger.error("webhook_donation_not_found", order_id=order_id, transaction_status=transaction_status)
                raise DonationNotFoundException(order_id=order_id)

            if not _same_amount(notification.gross_amount, donation.amount):
                logger.warning(
                    "webhook_amount_mismatch",
                    order_id=order_id,
                    gross_amount=notification.gross_amount,
                    donation_amount=str(donation.amount),
                )

            previous = donation.status
            donation.refresh_gateway_fields(
                payload=notification.raw_payload(),
                transaction_id=notification.transaction_id,
                va_numbers=notification.va_numbers,
            )

            try:
                target = self._map_status(notification)
            except UnmappedGatewayStatusException as exc:
                # Never defaults to paid; the payload is still kept for investigation
                logger.critical(
                    "gateway_status_unmapped",
                    order_id=order_id,
                    transaction_status=exc.transaction_status,
                    donation_id=donation.id,
                )
                await uow.donation_repository.update(donation)
                return ReconcileResult(
                    order_id=order_id,
                    outcome="unmapped",
                    transaction_status=transaction_status,
                    donation_id=donation.id,
                    previous_status=previous.value,
                    current_status=donation.status.value,
                )

            if target == previous:
                await uow.donation_repository.update(donation)
                outcome = "duplicate"
                delta = Decimal("0")
            elif not donation.can_transition_to(target):
                await uow.donation_repository.update(donation)
                logger.warning(
                    "donation_transition_ignored",
                    order_id=order_id,
                    donation_id=donation.id,
                    current=previous.value,
                    target=target.value,
                    transaction_status=transaction_status,
                )
                outcome = "ignored"
                delta = Decimal("0")
            else:
                domain_service = DonationDomainService(uow.donation_repository, uow.program_repository)
                result = await domain_service.apply_transition(donation, target, source="webhook")
                events = domain_service.clear_events()
                donation = result.donation
                outcome = "applied"
                delta = result.ledger_delta

            await uow.commit()

        logger.info(
            "donation_reconciled",
            order_id=order_id,
            donation_id=donation.id,
            outcome=outcome,
            transaction_status=transaction_status,
            previous_status=previous.value,
            current_status=donation.status.value,
            ledger_delta=str(delta),
        )
        await self._publish(events)
        return ReconcileResult(
            order_id=order_id,
            outcome=outcome,
            transaction_status=transaction_status,
            donation_id=donation.id,
            previous_status=previous.value,
            current_status=donation.status.value,
            ledger_delta=str(delta),
        )

    def _map_status(self, notification: MidtransNotification) -> DonationStatus:
        mapped = map_provider_status(PROVIDER, notification.transaction_status)
        if mapped is None:
            raise UnmappedGatewayStatusException(
                notification.transaction_status, order_id=notification.order_id, provider=PROVIDER
            )
        return DonationStatus(mapped)

    async def _publish(self, events: list) -> None:
        for event in events:
            try:
                await self._publisher.publish(event)
            except Exception as exc:  # committed state stays as is
                logger.error("donation_event_publish_failed", event_id=event.event_id, error=str(exc))
