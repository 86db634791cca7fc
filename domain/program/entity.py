"""
项目（募捐活动）实体

本服务只读项目的基本信息，唯一会被修改的字段是 collected_amount，
且只能通过 ProgramRepository.apply_delta 原子地增减。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.donation.entity import _ensure_utc


@dataclass
class Program:
    id: Optional[int]
    title: str
    slug: Optional[str] = None
    target_amount: Optional[Decimal] = None
    collected_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    status: str = "active"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.collected_amount = Decimal(str(self.collected_amount or 0))
        if self.target_amount is not None:
            self.target_amount = Decimal(str(self.target_amount))
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def progress(self) -> Optional[Decimal]:
        """募集进度（0~1+），无目标金额时为 None"""
        if not self.target_amount:
            return None
        return self.collected_amount / self.target_amount
