"""
捐赠应用服务（application/services）- 编排捐赠创建、运营操作与超时清理

每个用例对应一个或多个工作单元；领域事件在提交后才发布。
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from application.dtos.donations import (
    CheckoutResponse,
    CreateOnlineDonation,
    DonationDTO,
    DonationQuery,
    DonationSummary,
    LedgerAudit,
    ManualConfirmation,
    ManualDonation,
    SweepResult,
    UpdateDonationStatus,
)
from application.ports.events import EventPublisher, NullEventPublisher
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import DonationSettings
from domain.common.exceptions import (
    DomainValidationException,
    DonationNotFoundException,
    DuplicateIdentifierException,
    GatewayRejectedException,
    GatewayUnavailableException,
    LedgerWriteConflictException,
    ProgramNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.donation.entity import Donation, DonationStatus, PaymentSource
from domain.donation.identifiers import DonationIdentifierGenerator
from domain.donation.repository import DonationFilter
from domain.donation.service import DonationDomainService
from domain.program.entity import Program


logger = get_logger(__name__)


class DonationApplicationService:
    """捐赠应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        gateway: Optional[PaymentGateway] = None,
        publisher: Optional[EventPublisher] = None,
        settings: Optional[DonationSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._publisher = publisher or NullEventPublisher()
        self._settings = settings or DonationSettings()

    # ---- 创建 ----

    async def create_online_donation(self, data: CreateOnlineDonation) -> CheckoutResponse:
        """在线捐赠：落库 pending 记录并向网关申请收银台会话

        网关失败时删除刚创建的记录（唯一允许删除捐赠的场景）。
        """
        if self._gateway is None:
            raise GatewayUnavailableException("No payment gateway configured", provider="none")
        self._check_amount(data.amount)

        donation, program, events = await self._create_with_retry(
            lambda generator: self._new_online_donation(data, generator)
        )

        try:
            session = await self._gateway.create_checkout_session(donation, program)
        except (GatewayUnavailableException, GatewayRejectedException) as exc:
            logger.warning(
                "checkout_session_failed",
                donation_id=donation.id,
                order_id=donation.gateway_order_id,
                error_type=exc.error_type,
                error=exc.message,
            )
            await self._discard(donation)
            raise

        async with self._uow_factory() as uow:
            stored = await uow.donation_repository.get_by_id(donation.id, for_update=True)
            if stored is None:
                raise DonationNotFoundException(donation.id)
            stored.refresh_gateway_fields(payload=session.raw, transaction_id=session.gateway_transaction_id)
            donation = await uow.donation_repository.update(stored)
            await uow.commit()

        logger.info(
            "checkout_session_created",
            donation_id=donation.id,
            donation_code=donation.donation_code,
            order_id=donation.gateway_order_id,
        )
        await self._publish(events)
        return CheckoutResponse(
            session_token=session.session_token,
            redirect_url=session.redirect_url,
            donation=DonationDTO.model_validate(donation),
        )

    async def create_manual_confirmation(self, data: ManualConfirmation) -> DonationDTO:
        """线下转账确认：保持 pending，等待运营核实"""
        self._check_amount(data.amount)

        def build(code: str) -> Donation:
            return Donation(
                id=None,
                donation_code=code,
                program_id=data.program_id,
                amount=data.amount,
                status=DonationStatus.PENDING,
                payment_source=PaymentSource.MANUAL,
                donor_name=data.donor_name,
                donor_email=data.donor_email,
                donor_phone=data.donor_phone,
                payment_method="transfer",
                payment_channel=data.bank_destination,
                manual_proof_path=data.proof_path,
                notes=data.combined_notes(),
            )

        donation, _, events = await self._create_with_retry(
            lambda generator: self._new_manual_donation(data.program_id, build, generator)
        )
        await self._publish(events)
        return DonationDTO.model_validate(donation)

    async def record_manual_paid(self, data: ManualDonation) -> DonationDTO:
        """运营录入已到账的线下捐赠：创建与 pending -> paid 在同一工作单元内完成"""
        self._check_amount(data.amount)

        def build(code: str) -> Donation:
            return Donation(
                id=None,
                donation_code=code,
                program_id=data.program_id,
                amount=data.amount,
                status=DonationStatus.PENDING,
                payment_source=PaymentSource.MANUAL,
                donor_name=data.donor_name,
                donor_email=data.donor_email,
                donor_phone=data.donor_phone,
                is_anonymous=data.is_anonymous,
                payment_method=data.payment_method,
                payment_channel=data.payment_channel,
                manual_proof_path=data.manual_proof_path,
                notes=data.notes,
            )

        async def create_and_pay(generator_factory):
            async with self._uow_factory() as uow:
                await self._load_program(uow, data.program_id)
                generator = generator_factory(uow)
                code = await generator.next_donation_code()
                domain_service = DonationDomainService(uow.donation_repository, uow.program_repository)
                created = await domain_service.record(build(code))
                outcome = await domain_service.apply_transition(
                    created, DonationStatus.PAID, source="operator", strict=True
                )
                await uow.commit()
                return outcome.donation, None, domain_service.clear_events()

        donation, _, events = await self._create_with_retry(create_and_pay)
        logger.info(
            "manual_donation_recorded",
            donation_id=donation.id,
            donation_code=donation.donation_code,
            program_id=donation.program_id,
            amount=str(donation.amount),
        )
        await self._publish(events)
        return DonationDTO.model_validate(donation)

    # ---- 运营操作 ----

    async def update_status(self, donation_id: int, data: UpdateDonationStatus) -> DonationDTO:
        """运营变更状态（核实线下转账、撤销等）；非法边返回 409"""
        async with self._uow_factory() as uow:
            donation = await uow.donation_repository.get_by_id(donation_id, for_update=True)
            if donation is None:
                raise DonationNotFoundException(donation_id)
            if data.notes:
                donation.notes = f"{donation.notes} | {data.notes}" if donation.notes else data.notes
            domain_service = DonationDomainService(uow.donation_repository, uow.program_repository)
            outcome = await domain_service.apply_transition(
                donation, data.status, source="operator", strict=True
            )
            await uow.commit()
            events = domain_service.clear_events()

        logger.info(
            "donation_status_updated",
            donation_id=donation_id,
            previous_status=outcome.previous_status.value,
            current_status=outcome.donation.status.value,
            ledger_delta=str(outcome.ledger_delta),
        )
        await self._publish(events)
        return DonationDTO.model_validate(outcome.donation)

    async def get_donation(self, donation_id: int) -> DonationDTO:
        async with self._uow_factory(readonly=True) as uow:
            donation = await uow.donation_repository.get_by_id(donation_id)
            if donation is None:
                raise DonationNotFoundException(donation_id)
            return DonationDTO.model_validate(donation)

    async def list_donations(self, query: DonationQuery) -> Tuple[List[DonationDTO], int]:
        filters = DonationFilter(
            status=query.status,
            program_id=query.program_id,
            payment_source=query.payment_source,
            date_from=query.date_from,
            date_to=query.date_to,
            search=query.q,
        )
        skip = (query.page - 1) * query.size
        async with self._uow_factory(readonly=True) as uow:
            items = await uow.donation_repository.list(filters, skip=skip, limit=query.size)
            total = await uow.donation_repository.count(filters)
        return [DonationDTO.model_validate(d) for d in items], total

    async def summary(self, program_id: Optional[int] = None) -> DonationSummary:
        """已入账捐赠统计；不指定项目时只统计普通基金"""
        async with self._uow_factory(readonly=True) as uow:
            if program_id is None:
                count, amount = await uow.donation_repository.summarize_paid(general_only=True)
                return DonationSummary(scope="general", count=count, amount=amount)
            count, amount = await uow.donation_repository.summarize_paid(program_id=program_id)
            return DonationSummary(scope="program", program_id=program_id, count=count, amount=amount)

    async def expire_stale_pending(
        self,
        *,
        now: Optional[datetime] = None,
        ttl_minutes: Optional[int] = None,
    ) -> SweepResult:
        """把超过 TTL 仍未支付的 pending 捐赠迁移到 expired

        每条记录独立工作单元，边校验与 webhook 相同；与 webhook 并发时以先加锁者为准。
        """
        now = now or datetime.now(timezone.utc)
        ttl = self._settings.pending_ttl_minutes if ttl_minutes is None else ttl_minutes
        cutoff = now - timedelta(minutes=ttl)
        source = None if self._settings.include_manual_in_sweep else PaymentSource.GATEWAY

        async with self._uow_factory(readonly=True) as uow:
            candidates = await uow.donation_repository.list_stale_pending(
                cutoff, payment_source=source, limit=self._settings.sweep_batch_size
            )

        expired = 0
        skipped = 0
        for candidate in candidates:
            try:
                applied = await self._expire_one(candidate.id, at=now)
            except LedgerWriteConflictException as exc:
                # 下一轮清理会再次处理
                logger.warning("donation_expire_conflict", donation_id=candidate.id, error=exc.message)
                applied = False
            if applied:
                expired += 1
            else:
                skipped += 1

        logger.info(
            "pending_donations_swept",
            cutoff=cutoff.isoformat(),
            scanned=len(candidates),
            expired=expired,
            skipped=skipped,
        )
        return SweepResult(cutoff=cutoff, scanned=len(candidates), expired=expired, skipped=skipped)

    async def audit_program_ledger(self, program_id: int) -> LedgerAudit:
        """对比 collected_amount 与已入账捐赠之和（只读，不修复）"""
        async with self._uow_factory(readonly=True) as uow:
            program = await uow.program_repository.get_by_id(program_id)
            if program is None:
                raise ProgramNotFoundException(program_id)
            count, expected = await uow.donation_repository.summarize_paid(program_id=program_id)

        drift = program.collected_amount - expected
        if drift != 0:
            logger.error(
                "program_ledger_drift",
                program_id=program_id,
                collected_amount=str(program.collected_amount),
                expected_amount=str(expected),
                drift=str(drift),
            )
        return LedgerAudit(
            program_id=program_id,
            collected_amount=program.collected_amount,
            expected_amount=expected,
            paid_count=count,
            drift=drift,
        )

    async def audit_all_programs(self) -> List[LedgerAudit]:
        async with self._uow_factory(readonly=True) as uow:
            program_ids = await uow.program_repository.list_ids()
        return [await self.audit_program_ledger(pid) for pid in program_ids]

    # ---- 内部 ----

    def _check_amount(self, amount: Decimal) -> None:
        if Decimal(str(amount)) < self._settings.min_amount:
            raise DomainValidationException(
                f"捐赠金额不能低于 {self._settings.min_amount}",
                field="amount",
                details={"min_amount": str(self._settings.min_amount)},
            )

    def _generator(self, uow: AbstractUnitOfWork) -> DonationIdentifierGenerator:
        return DonationIdentifierGenerator(uow.sequence_repository, prefix=self._settings.code_prefix)

    async def _create_with_retry(self, attempt_fn):
        """编号冲突（极少见，如网关订单号随机串碰撞）时整体重试"""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self._settings.create_max_attempts)),
            wait=wait_random(min=0, max=0.05),
            retry=retry_if_exception_type((DuplicateIdentifierException, LedgerWriteConflictException)),
            reraise=True,
        ):
            with attempt:
                return await attempt_fn(self._generator)
        raise RuntimeError("unreachable")  # pragma: no cover

    async def _load_program(self, uow: AbstractUnitOfWork, program_id: Optional[int]) -> Optional[Program]:
        if program_id is None:
            return None
        program = await uow.program_repository.get_by_id(program_id)
        if program is None:
            raise ProgramNotFoundException(program_id)
        return program

    async def _new_online_donation(self, data: CreateOnlineDonation, generator_factory):
        async with self._uow_factory() as uow:
            program = await self._load_program(uow, data.program_id)
            generator = generator_factory(uow)
            code = await generator.next_donation_code()
            donation = Donation(
                id=None,
                donation_code=code,
                program_id=data.program_id,
                amount=data.amount,
                status=DonationStatus.PENDING,
                payment_source=PaymentSource.GATEWAY,
                donor_name=data.donor_name,
                donor_email=data.donor_email,
                donor_phone=data.donor_phone,
                is_anonymous=data.is_anonymous,
                payment_method="snap",
                gateway_order_id=generator.next_gateway_order_id(),
                notes=data.notes,
            )
            domain_service = DonationDomainService(uow.donation_repository, uow.program_repository)
            created = await domain_service.record(donation)
            await uow.commit()
            return created, program, domain_service.clear_events()

    async def _new_manual_donation(self, program_id: Optional[int], build, generator_factory):
        async with self._uow_factory() as uow:
            program = await self._load_program(uow, program_id)
            generator = generator_factory(uow)
            code = await generator.next_donation_code()
            domain_service = DonationDomainService(uow.donation_repository, uow.program_repository)
            created = await domain_service.record(build(code))
            await uow.commit()
            return created, program, domain_service.clear_events()

    async def _discard(self, donation: Donation) -> None:
        async with self._uow_factory() as uow:
            deleted = await uow.donation_repository.delete(donation.id)
            await uow.commit()
        logger.info(
            "donation_discarded",
            donation_id=donation.id,
            order_id=donation.gateway_order_id,
            deleted=deleted,
        )

    async def _expire_one(self, donation_id: int, *, at: datetime) -> bool:
        async with self._uow_factory() as uow:
            donation = await uow.donation_repository.get_by_id(donation_id, for_update=True)
            if donation is None or donation.status != DonationStatus.PENDING:
                return False
            domain_service = DonationDomainService(uow.donation_repository, uow.program_repository)
            outcome = await domain_service.apply_transition(
                donation, DonationStatus.EXPIRED, source="sweep", at=at
            )
            await uow.commit()
            events = domain_service.clear_events()
        await self._publish(events)
        return outcome.applied

    async def _publish(self, events: list) -> None:
        for event in events:
            try:
                await self._publisher.publish(event)
            except Exception as exc:  # 已提交的状态不回滚
                logger.error("donation_event_publish_failed", event_id=event.event_id, error=str(exc))
