"""
项目仓储接口（含累计金额账本操作）
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional

from .entity import Program


class ProgramRepository(ABC):
    """项目仓储抽象接口"""

    @abstractmethod
    async def create(self, program: Program) -> Program:
        """创建项目（项目管理由外部系统负责，此处供初始化与测试使用）"""
        pass

    @abstractmethod
    async def get_by_id(self, program_id: int) -> Optional[Program]:
        """根据ID获取项目"""
        pass

    @abstractmethod
    async def apply_delta(self, program_id: int, signed_amount: Decimal) -> bool:
        """
        以单条原子语句对 collected_amount 加上带符号的增量

        项目不存在时返回 False。
        """
        pass

    @abstractmethod
    async def list_ids(self) -> List[int]:
        """所有项目ID（用于账本核对）"""
        pass
