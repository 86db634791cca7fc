"""
捐赠领域服务 - 状态迁移与项目累计金额同步
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .entity import Donation, DonationStatus
from .events import DonationCreated, DonationStatusChanged
from .repository import DonationRepository
from domain.program.repository import ProgramRepository


@dataclass
class TransitionOutcome:
    donation: Donation
    applied: bool
    previous_status: DonationStatus
    ledger_delta: Decimal


class DonationDomainService:
    """
    捐赠领域服务

    职责：
    1. 在调用方的工作单元内执行一条状态机边
    2. 同一工作单元内把对应增量作用到项目累计金额
    3. 产生领域事件（提交后由应用层发布）
    """

    def __init__(
        self,
        donation_repository: DonationRepository,
        program_repository: ProgramRepository,
    ):
        self.donation_repository = donation_repository
        self.program_repository = program_repository
        self.events: List = []  # 领域事件收集

    async def record(self, donation: Donation) -> Donation:
        """持久化新捐赠并记录事件"""
        created = await self.donation_repository.create(donation)
        self.events.append(DonationCreated(
            donation_id=created.id,
            donation_code=created.donation_code,
            program_id=created.program_id,
            amount=str(created.amount),
            status=created.status.value,
            payment_source=created.payment_source.value,
        ))
        return created

    async def apply_transition(
        self,
        donation: Donation,
        target: DonationStatus,
        *,
        source: str,
        strict: bool = False,
        at: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """
        执行状态迁移

        非法边：strict=True 时抛 InvalidStatusTransitionException，
        否则视为无操作（幂等重放），不产生金额变化。
        """
        previous = donation.status
        if not strict and not donation.can_transition_to(target):
            return TransitionOutcome(donation, False, previous, Decimal("0"))

        delta = donation.transition_to(target, at=at)
        updated = await self.donation_repository.update(donation)
        if delta != 0 and updated.program_id is not None:
            await self.program_repository.apply_delta(updated.program_id, delta)

        self.events.append(DonationStatusChanged(
            donation_id=updated.id,
            donation_code=updated.donation_code,
            program_id=updated.program_id,
            amount=str(updated.amount),
            previous_status=previous.value,
            current_status=updated.status.value,
            ledger_delta=str(delta),
            source=source,
        ))
        return TransitionOutcome(updated, True, previous, delta)

    def clear_events(self) -> List:
        events = self.events.copy()
        self.events.clear()
        return events
