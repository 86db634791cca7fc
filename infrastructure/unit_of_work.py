"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Optional, Callable
import inspect

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import LedgerWriteConflictException
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.donation_repository import SQLAlchemyDonationRepository
from infrastructure.repositories.donation_sequence_repository import SQLAlchemyDonationSequenceRepository
from infrastructure.repositories.program_repository import SQLAlchemyProgramRepository
from core.logging_config import get_logger


logger = get_logger(__name__)

# serialization_failure / deadlock_detected / lock_not_available
_CONTENTION_SQLSTATES = {"40001", "40P01", "55P03"}


def is_contention_error(exc: BaseException) -> bool:
    """判断是否为可重试的存储竞争错误（锁超时、死锁、序列化失败）"""
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        return code in _CONTENTION_SQLSTATES
    return False


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.donation_repository = SQLAlchemyDonationRepository(self.session)
        self.program_repository = SQLAlchemyProgramRepository(self.session)
        self.sequence_repository = SQLAlchemyDonationSequenceRepository(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            await self._close()
        if exc is not None and is_contention_error(exc):
            logger.warning("uow_storage_contention", error=str(exc))
            raise LedgerWriteConflictException(str(getattr(exc, "orig", exc))) from exc

    async def _close(self) -> None:
        # 事务在 commit/rollback 后通常会结束，这里仅在仍然活动时做安全关闭
        tx = getattr(self, "_transaction", None)
        if tx is not None and getattr(tx, "is_active", False):
            close = getattr(tx, "close", None)
            if callable(close):
                res = close()
                if inspect.isawaitable(res):
                    await res
        self._transaction = None
        if self._external_session is None and self.session is not None:
            await self.session.close()
            self.session = None
        self.donation_repository = None
        self.program_repository = None
        self.sequence_repository = None

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            try:
                await self.session.commit()
            except DBAPIError as exc:
                if is_contention_error(exc):
                    raise LedgerWriteConflictException(str(exc.orig)) from exc
                raise
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
