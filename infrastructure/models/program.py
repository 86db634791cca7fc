"""
项目数据库模型
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class ProgramModel(Base):
    """项目（募捐活动）表；collected_amount 只能通过原子增量语句修改"""
    __tablename__ = "programs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False, comment="项目名称")
    slug = Column(String(255), unique=True, nullable=True, comment="URL 标识")
    target_amount = Column(Numeric(precision=15, scale=2), nullable=True, comment="目标金额")
    collected_amount = Column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=0,
        comment="已募集金额（已入账捐赠之和）"
    )
    status = Column(String(20), nullable=False, default="active", comment="项目状态")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    donations = relationship("DonationModel", back_populates="program", lazy="select")

    def __repr__(self):
        return f"<ProgramModel(id={self.id}, title='{self.title}', collected_amount={self.collected_amount})>"
