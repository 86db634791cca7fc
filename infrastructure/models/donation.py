"""
捐赠数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON, Boolean,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class DonationModel(Base):
    """
    捐赠数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.donation.entity.Donation 中
    """
    __tablename__ = "donations"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 编号（唯一约束是并发安全的最后一道防线）
    donation_code = Column(String(50), unique=True, index=True, nullable=False, comment="捐赠编号")
    program_id = Column(
        Integer,
        ForeignKey("programs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="项目ID，为空表示普通基金"
    )

    # 捐赠人
    donor_name = Column(String(255), nullable=False, comment="捐赠人姓名")
    donor_email = Column(String(255), nullable=True, comment="捐赠人邮箱")
    donor_phone = Column(String(50), nullable=True, comment="捐赠人电话")
    is_anonymous = Column(Boolean, nullable=False, default=False, comment="是否匿名")

    # 金额（IDR，使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="捐赠金额")

    # 状态与来源
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="状态: pending/paid/failed/expired"
    )
    payment_source = Column(String(20), nullable=False, index=True, comment="来源: manual/gateway")
    payment_method = Column(String(100), nullable=True, comment="支付方式: snap/transfer/cash")
    payment_channel = Column(String(255), nullable=True, comment="支付渠道/收款银行")

    # 网关信息
    gateway_order_id = Column(String(100), unique=True, index=True, nullable=True, comment="网关订单号")
    gateway_transaction_id = Column(String(100), nullable=True, index=True, comment="网关交易ID")
    gateway_va_numbers = Column(JSON, nullable=True, comment="虚拟账号")
    raw_gateway_payload = Column(JSON, nullable=True, comment="最近一次网关原始报文")

    # 线下凭证
    manual_proof_path = Column(String(255), nullable=True, comment="转账凭证路径")
    notes = Column(Text, nullable=True, comment="备注")

    # 时间戳
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="首次入账时间")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    program = relationship("ProgramModel", back_populates="donations", lazy="select")

    __table_args__ = (
        Index("ix_donations_program_status", "program_id", "status"),
        Index("ix_donations_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<DonationModel(id={self.id}, donation_code='{self.donation_code}', "
            f"amount={self.amount}, status='{self.status}')>"
        )


class DonationSequenceModel(Base):
    """
    捐赠编号计数器

    每个 scope（如 DPF-20250101）一行，last_value 通过原子更新递增
    """
    __tablename__ = "donation_sequences"

    id = Column(Integer, primary_key=True)
    scope = Column(String(50), unique=True, nullable=False, comment="计数范围（前缀+日期）")
    last_value = Column(Integer, nullable=False, default=0, comment="最近一次分配的序号")

    def __repr__(self):
        return f"<DonationSequenceModel(scope='{self.scope}', last_value={self.last_value})>"
