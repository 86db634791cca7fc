"""
项目仓储实现（含累计金额账本）
"""
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.program.entity import Program
from domain.program.repository import ProgramRepository
from infrastructure.models.program import ProgramModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyProgramRepository(ProgramRepository):
    """项目仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProgramModel) -> Program:
        return Program(
            id=model.id,
            title=model.title,
            slug=model.slug,
            target_amount=model.target_amount,
            collected_amount=model.collected_amount,
            status=model.status,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, program: Program) -> Program:
        db_program = ProgramModel(
            title=program.title,
            slug=program.slug,
            target_amount=program.target_amount,
            collected_amount=program.collected_amount,
            status=program.status,
        )
        self.session.add(db_program)
        await self.session.flush()
        await self.session.refresh(db_program)
        logger.info("program_created", program_id=db_program.id, title=db_program.title)
        return self._to_entity(db_program)

    async def get_by_id(self, program_id: int) -> Optional[Program]:
        result = await self.session.execute(
            select(ProgramModel).where(ProgramModel.id == program_id)
        )
        db_program = result.scalar_one_or_none()
        return self._to_entity(db_program) if db_program else None

    async def apply_delta(self, program_id: int, signed_amount: Decimal) -> bool:
        """
        UPDATE programs SET collected_amount = collected_amount + :delta WHERE id = :id

        数据库在单条语句内完成读-改-写，并发增量不会丢失。
        """
        result = await self.session.execute(
            update(ProgramModel)
            .where(ProgramModel.id == program_id)
            .values(collected_amount=ProgramModel.collected_amount + signed_amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # 项目可能已被外部系统删除，捐赠本身仍然有效
            logger.warning("program_ledger_missing", program_id=program_id, delta=str(signed_amount))
            return False
        logger.info("program_ledger_applied", program_id=program_id, delta=str(signed_amount))
        return True

    async def list_ids(self) -> List[int]:
        result = await self.session.execute(select(ProgramModel.id).order_by(ProgramModel.id))
        return [row for row in result.scalars().all()]
