"""
捐赠编号与网关订单号生成

- 捐赠编号：<PREFIX>-<YYYYMMDD>-<seq>，seq 为按天递增的计数器，至少4位补零
- 网关订单号：<PREFIX>-<YYYYMMDDHHMMSS>-<5位大写字母数字随机串>

计数器由 DonationSequenceRepository.reserve_next 原子地预留，
不能用“查询当天最大编号再加一”的方式实现。
"""
from __future__ import annotations

import secrets
import string
from datetime import date, datetime, timezone
from typing import Optional

from .repository import DonationSequenceRepository


ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
ORDER_SUFFIX_LENGTH = 5


class DonationIdentifierGenerator:
    def __init__(self, sequences: DonationSequenceRepository, prefix: str = "DPF") -> None:
        self.sequences = sequences
        self.prefix = prefix

    def scope_for(self, day: date) -> str:
        return f"{self.prefix}-{day:%Y%m%d}"

    async def next_donation_code(self, day: Optional[date] = None) -> str:
        day = day or datetime.now(timezone.utc).date()
        scope = self.scope_for(day)
        seq = await self.sequences.reserve_next(scope)
        # 超过9999时自然变宽，不回绕
        return f"{scope}-{seq:04d}"

    def next_gateway_order_id(self, moment: Optional[datetime] = None) -> str:
        moment = moment or datetime.now(timezone.utc)
        suffix = "".join(secrets.choice(ORDER_SUFFIX_ALPHABET) for _ in range(ORDER_SUFFIX_LENGTH))
        return f"{self.prefix}-{moment:%Y%m%d%H%M%S}-{suffix}"
