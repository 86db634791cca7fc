"""
捐赠编号计数器仓储 - 单语句原子递增
"""
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.donation.repository import DonationSequenceRepository
from infrastructure.models.donation import DonationSequenceModel
from core.logging_config import get_logger


logger = get_logger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SQLAlchemyDonationSequenceRepository(DonationSequenceRepository):
    """
    计数器实现

    PostgreSQL / SQLite：INSERT ... ON CONFLICT DO UPDATE SET last_value = last_value + 1 RETURNING last_value，
    行锁持有到事务结束，同一 scope 的并发预留按顺序排队。
    其它方言：先 UPDATE 递增，未命中再插入（插入冲突时在 SAVEPOINT 内重试递增）。
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def reserve_next(self, scope: str) -> int:
        dialect = self.session.get_bind().dialect.name
        insert_factory = _UPSERT_DIALECTS.get(dialect)
        if insert_factory is not None:
            value = await self._reserve_with_upsert(insert_factory, scope)
        else:
            value = await self._reserve_with_update(scope)
        logger.debug("donation_sequence_reserved", scope=scope, value=value)
        return value

    async def _reserve_with_upsert(self, insert_factory, scope: str) -> int:
        stmt = insert_factory(DonationSequenceModel).values(scope=scope, last_value=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DonationSequenceModel.scope],
            set_={"last_value": DonationSequenceModel.last_value + 1},
        ).returning(DonationSequenceModel.last_value)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def _increment(self, scope: str) -> bool:
        result = await self.session.execute(
            update(DonationSequenceModel)
            .where(DonationSequenceModel.scope == scope)
            .values(last_value=DonationSequenceModel.last_value + 1)
        )
        return result.rowcount > 0

    async def _reserve_with_update(self, scope: str) -> int:
        if not await self._increment(scope):
            try:
                async with self.session.begin_nested():
                    self.session.add(DonationSequenceModel(scope=scope, last_value=1))
                    await self.session.flush()
                return 1
            except IntegrityError:
                # 另一事务抢先插入了首行
                await self._increment(scope)
        result = await self.session.execute(
            select(DonationSequenceModel.last_value).where(DonationSequenceModel.scope == scope)
        )
        return int(result.scalar_one())
