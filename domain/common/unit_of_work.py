"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.donation.repository import DonationRepository, DonationSequenceRepository
from domain.program.repository import ProgramRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    一个工作单元对应一个数据库事务：捐赠状态、项目累计金额与编号计数器
    要么一起提交，要么一起回滚。
    """

    donation_repository: DonationRepository
    program_repository: ProgramRepository
    sequence_repository: DonationSequenceRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.donation_repository = None  # type: ignore[assignment]
        self.program_repository = None  # type: ignore[assignment]
        self.sequence_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
