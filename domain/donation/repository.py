"""
捐赠仓储接口 - 定义数据访问的抽象接口
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from .entity import Donation, DonationStatus, PaymentSource


@dataclass
class DonationFilter:
    """后台列表筛选条件"""
    status: Optional[DonationStatus] = None
    program_id: Optional[int] = None
    payment_source: Optional[PaymentSource] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None  # 匹配 donation_code / donor_name


class DonationRepository(ABC):
    """捐赠仓储抽象接口"""

    @abstractmethod
    async def create(self, donation: Donation) -> Donation:
        """创建捐赠（唯一键冲突抛 DuplicateIdentifierException）"""
        pass

    @abstractmethod
    async def get_by_id(self, donation_id: int, *, for_update: bool = False) -> Optional[Donation]:
        """根据ID获取捐赠"""
        pass

    @abstractmethod
    async def get_by_gateway_order_id(self, order_id: str, *, for_update: bool = False) -> Optional[Donation]:
        """根据网关订单号获取捐赠；for_update=True 时锁定该行直到事务结束"""
        pass

    @abstractmethod
    async def update(self, donation: Donation) -> Donation:
        """更新捐赠"""
        pass

    @abstractmethod
    async def delete(self, donation_id: int) -> bool:
        """删除捐赠（仅用于结账会话创建失败后的补偿）"""
        pass

    @abstractmethod
    async def list(self, filters: DonationFilter, *, skip: int = 0, limit: int = 20) -> List[Donation]:
        """按条件分页查询"""
        pass

    @abstractmethod
    async def count(self, filters: DonationFilter) -> int:
        """按条件统计数量"""
        pass

    @abstractmethod
    async def list_stale_pending(
        self,
        created_before: datetime,
        *,
        payment_source: Optional[PaymentSource] = PaymentSource.GATEWAY,
        limit: int = 100,
    ) -> List[Donation]:
        """获取创建时间早于 created_before 的待支付捐赠"""
        pass

    @abstractmethod
    async def summarize_paid(self, *, program_id: Optional[int] = None, general_only: bool = False) -> tuple[int, Decimal]:
        """统计已入账捐赠的数量与金额"""
        pass


class DonationSequenceRepository(ABC):
    """捐赠编号计数器"""

    @abstractmethod
    async def reserve_next(self, scope: str) -> int:
        """原子地把 scope 的计数器加一并返回新值（首次为1）"""
        pass
