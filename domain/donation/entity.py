"""
捐赠领域实体 - 捐赠聚合根与状态机
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import (
    DomainValidationException,
    InvalidStatusTransitionException,
)


class DonationStatus(str, Enum):
    """捐赠状态枚举"""
    PENDING = "pending"    # 待支付 / 待核实
    PAID = "paid"          # 已入账
    FAILED = "failed"      # 失败或已撤销
    EXPIRED = "expired"    # 超时未支付


class PaymentSource(str, Enum):
    """资金来源"""
    MANUAL = "manual"      # 线下转账 / 运营录入
    GATEWAY = "gateway"    # 在线支付网关


# 状态机：允许的边。failed / expired 为终态；paid -> failed 表示撤销（退款/拒付）
ALLOWED_TRANSITIONS: dict[DonationStatus, frozenset[DonationStatus]] = {
    DonationStatus.PENDING: frozenset({DonationStatus.PAID, DonationStatus.FAILED, DonationStatus.EXPIRED}),
    DonationStatus.PAID: frozenset({DonationStatus.FAILED}),
    DonationStatus.FAILED: frozenset(),
    DonationStatus.EXPIRED: frozenset(),
}


def is_valid_transition(current: DonationStatus, target: DonationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ledger_delta_for(current: DonationStatus, target: DonationStatus, amount: Decimal) -> Decimal:
    """某条边对应的项目累计金额变化（带符号）"""
    if current == DonationStatus.PENDING and target == DonationStatus.PAID:
        return amount
    if current == DonationStatus.PAID and target == DonationStatus.FAILED:
        return -amount
    return Decimal("0")


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Donation:
    """
    捐赠聚合根

    业务规则：
    1. donation_code / gateway_order_id 全局唯一，创建后不可变
    2. 金额必须大于0，创建后不可变
    3. 状态只能沿 ALLOWED_TRANSITIONS 中的边移动
    4. paid_at 仅在首次进入 paid 时设置
    """

    id: Optional[int]
    donation_code: str
    program_id: Optional[int]
    amount: Decimal
    status: DonationStatus
    payment_source: PaymentSource

    donor_name: str = ""
    donor_email: Optional[str] = None
    donor_phone: Optional[str] = None
    is_anonymous: bool = False
    payment_method: Optional[str] = None  # snap, transfer, cash ...
    payment_channel: Optional[str] = None  # 银行 / 渠道名称

    # 网关字段（仅 gateway 来源）
    gateway_order_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    gateway_va_numbers: Optional[list[dict[str, Any]]] = None
    raw_gateway_payload: Optional[dict[str, Any]] = None

    manual_proof_path: Optional[str] = None
    notes: Optional[str] = None

    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """初始化后验证"""
        self.amount = Decimal(str(self.amount))
        if self.amount <= 0:
            raise DomainValidationException(
                f"捐赠金额必须大于0: {self.amount}",
                field="amount"
            )
        self.status = DonationStatus(self.status)
        self.payment_source = PaymentSource(self.payment_source)
        if self.payment_source == PaymentSource.MANUAL and self.gateway_order_id:
            raise DomainValidationException(
                "线下捐赠不能携带网关订单号",
                field="gateway_order_id"
            )
        self.paid_at = _ensure_utc(self.paid_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def can_transition_to(self, target: DonationStatus) -> bool:
        return is_valid_transition(self.status, DonationStatus(target))

    def transition_to(self, target: DonationStatus, *, at: Optional[datetime] = None) -> Decimal:
        """
        沿状态机移动，返回需要作用到项目累计金额上的增量

        无项目（普通基金）的捐赠增量恒为0。
        """
        target = DonationStatus(target)
        if not self.can_transition_to(target):
            raise InvalidStatusTransitionException(
                self.status.value, target.value, donation_id=self.id
            )
        now = _ensure_utc(at) or datetime.now(timezone.utc)
        delta = ledger_delta_for(self.status, target, self.amount)
        self.status = target
        if target == DonationStatus.PAID and self.paid_at is None:
            self.paid_at = now
        self.updated_at = now
        if self.program_id is None:
            return Decimal("0")
        return delta

    def refresh_gateway_fields(
        self,
        *,
        payload: Optional[dict[str, Any]] = None,
        transaction_id: Optional[str] = None,
        va_numbers: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        """更新非权威的网关字段（不影响状态与金额）"""
        if payload is not None:
            self.raw_gateway_payload = payload
        if transaction_id:
            self.gateway_transaction_id = transaction_id
        if va_numbers:
            self.gateway_va_numbers = va_numbers
        self.updated_at = datetime.now(timezone.utc)

    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]

    @property
    def is_general_fund(self) -> bool:
        return self.program_id is None
