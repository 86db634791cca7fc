"""
捐赠仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import DuplicateIdentifierException
from domain.donation.entity import Donation, DonationStatus, PaymentSource
from domain.donation.repository import DonationFilter, DonationRepository
from infrastructure.models.donation import DonationModel
from core.logging_config import get_logger


logger = get_logger(__name__)


def _start_of_day(day) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class SQLAlchemyDonationRepository(DonationRepository):
    """捐赠仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: DonationModel) -> Donation:
        """将数据库模型转换为领域实体"""
        return Donation(
            id=model.id,
            donation_code=model.donation_code,
            program_id=model.program_id,
            amount=Decimal(str(model.amount)),
            status=DonationStatus(model.status),
            payment_source=PaymentSource(model.payment_source),
            donor_name=model.donor_name,
            donor_email=model.donor_email,
            donor_phone=model.donor_phone,
            is_anonymous=bool(model.is_anonymous),
            payment_method=model.payment_method,
            payment_channel=model.payment_channel,
            gateway_order_id=model.gateway_order_id,
            gateway_transaction_id=model.gateway_transaction_id,
            gateway_va_numbers=model.gateway_va_numbers,
            raw_gateway_payload=model.raw_gateway_payload,
            manual_proof_path=model.manual_proof_path,
            notes=model.notes,
            paid_at=model.paid_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Donation) -> DonationModel:
        """将领域实体转换为数据库模型"""
        return DonationModel(
            id=entity.id,
            donation_code=entity.donation_code,
            program_id=entity.program_id,
            amount=entity.amount,
            status=entity.status.value,
            payment_source=entity.payment_source.value,
            donor_name=entity.donor_name,
            donor_email=entity.donor_email,
            donor_phone=entity.donor_phone,
            is_anonymous=entity.is_anonymous,
            payment_method=entity.payment_method,
            payment_channel=entity.payment_channel,
            gateway_order_id=entity.gateway_order_id,
            gateway_transaction_id=entity.gateway_transaction_id,
            gateway_va_numbers=entity.gateway_va_numbers,
            raw_gateway_payload=entity.raw_gateway_payload,
            manual_proof_path=entity.manual_proof_path,
            notes=entity.notes,
            paid_at=entity.paid_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, donation: Donation) -> Donation:
        """创建捐赠记录"""
        try:
            db_donation = self._to_model(donation)
            self.session.add(db_donation)
            await self.session.flush()
            await self.session.refresh(db_donation)
        except IntegrityError as e:
            await self.session.rollback()
            msg = str(e).lower()
            if "gateway_order_id" in msg:
                logger.warning("donation_create_conflict", gateway_order_id=donation.gateway_order_id)
                raise DuplicateIdentifierException("gateway_order_id", donation.gateway_order_id or "")
            if "donation_code" in msg:
                logger.warning("donation_create_conflict", donation_code=donation.donation_code)
                raise DuplicateIdentifierException("donation_code", donation.donation_code)
            raise
        logger.info(
            "donation_created",
            donation_id=db_donation.id,
            donation_code=db_donation.donation_code,
            payment_source=db_donation.payment_source,
            status=db_donation.status,
        )
        return self._to_entity(db_donation)

    async def get_by_id(self, donation_id: int, *, for_update: bool = False) -> Optional[Donation]:
        """根据ID获取捐赠"""
        query = select(DonationModel).where(DonationModel.id == donation_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_donation = result.scalar_one_or_none()
        return self._to_entity(db_donation) if db_donation else None

    async def get_by_gateway_order_id(self, order_id: str, *, for_update: bool = False) -> Optional[Donation]:
        """根据网关订单号获取捐赠"""
        query = select(DonationModel).where(DonationModel.gateway_order_id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_donation = result.scalar_one_or_none()
        return self._to_entity(db_donation) if db_donation else None

    async def update(self, donation: Donation) -> Donation:
        """更新捐赠记录（编号、金额、项目、来源不可变）"""
        result = await self.session.execute(
            select(DonationModel).where(DonationModel.id == donation.id)
        )
        db_donation = result.scalar_one_or_none()

        if not db_donation:
            raise ValueError(f"Donation with id {donation.id} not found")

        db_donation.status = donation.status.value
        db_donation.paid_at = donation.paid_at
        if db_donation.gateway_order_id is None and donation.gateway_order_id:
            db_donation.gateway_order_id = donation.gateway_order_id
        db_donation.gateway_transaction_id = donation.gateway_transaction_id
        db_donation.gateway_va_numbers = donation.gateway_va_numbers
        db_donation.raw_gateway_payload = donation.raw_gateway_payload
        db_donation.manual_proof_path = donation.manual_proof_path
        db_donation.notes = donation.notes
        db_donation.updated_at = donation.updated_at or datetime.now(timezone.utc)

        await self.session.flush()
        await self.session.refresh(db_donation)

        logger.info(
            "donation_updated",
            donation_id=db_donation.id,
            donation_code=db_donation.donation_code,
            status=db_donation.status,
        )
        return self._to_entity(db_donation)

    async def delete(self, donation_id: int) -> bool:
        """删除捐赠记录"""
        result = await self.session.execute(
            select(DonationModel).where(DonationModel.id == donation_id)
        )
        db_donation = result.scalar_one_or_none()

        if not db_donation:
            return False

        await self.session.delete(db_donation)
        await self.session.flush()

        logger.info("donation_deleted", donation_id=donation_id)
        return True

    def _apply_filters(self, query, filters: DonationFilter):
        if filters.status:
            query = query.where(DonationModel.status == DonationStatus(filters.status).value)
        if filters.program_id is not None:
            query = query.where(DonationModel.program_id == filters.program_id)
        if filters.payment_source:
            query = query.where(DonationModel.payment_source == PaymentSource(filters.payment_source).value)
        if filters.date_from:
            query = query.where(DonationModel.created_at >= _start_of_day(filters.date_from))
        if filters.date_to:
            query = query.where(DonationModel.created_at < _start_of_day(filters.date_to + timedelta(days=1)))
        search = (filters.search or "").strip()
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                DonationModel.donation_code.ilike(pattern),
                DonationModel.donor_name.ilike(pattern),
            ))
        return query

    async def list(self, filters: DonationFilter, *, skip: int = 0, limit: int = 20) -> List[Donation]:
        """按条件分页查询（按创建时间倒序）"""
        query = self._apply_filters(select(DonationModel), filters)
        query = query.order_by(DonationModel.created_at.desc(), DonationModel.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(d) for d in result.scalars().all()]

    async def count(self, filters: DonationFilter) -> int:
        """按条件统计数量"""
        query = self._apply_filters(select(func.count(DonationModel.id)), filters)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def list_stale_pending(
        self,
        created_before: datetime,
        *,
        payment_source: Optional[PaymentSource] = PaymentSource.GATEWAY,
        limit: int = 100,
    ) -> List[Donation]:
        """获取超时未支付的捐赠（最早的优先）"""
        query = select(DonationModel).where(
            DonationModel.status == DonationStatus.PENDING.value,
            DonationModel.created_at < created_before,
        )
        if payment_source is not None:
            query = query.where(DonationModel.payment_source == PaymentSource(payment_source).value)
        query = query.order_by(DonationModel.created_at.asc()).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(d) for d in result.scalars().all()]

    async def summarize_paid(self, *, program_id: Optional[int] = None, general_only: bool = False) -> tuple[int, Decimal]:
        """统计已入账捐赠的数量与金额"""
        query = select(
            func.count(DonationModel.id),
            func.coalesce(func.sum(DonationModel.amount), 0),
        ).where(DonationModel.status == DonationStatus.PAID.value)
        if general_only:
            query = query.where(DonationModel.program_id.is_(None))
        elif program_id is not None:
            query = query.where(DonationModel.program_id == program_id)
        result = await self.session.execute(query)
        count, total = result.one()
        return int(count or 0), Decimal(str(total or 0))
