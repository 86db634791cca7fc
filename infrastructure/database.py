"""
数据库配置和连接管理
"""
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    return str(url.set(drivername=driver_map[drivername]))


def _install_sqlite_locking(engine: AsyncEngine) -> None:
    """
    SQLite 下每个事务以 BEGIN IMMEDIATE 开始

    pysqlite/aiosqlite 默认延迟开启事务，读后再写时会出现锁升级失败；
    立即获取写锁后并发写入按顺序排队（等待 busy timeout）。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # 关闭驱动自带的 BEGIN，由下面的 begin 事件接管
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """按 URL 创建异步引擎（SQLite 额外安装事务锁钩子）"""
    async_url = _build_async_url(database_url)
    url = make_url(async_url)
    if url.get_backend_name() == "sqlite":
        engine = create_async_engine(
            async_url,
            echo=echo,
            connect_args={"timeout": settings.database.sqlite_busy_timeout},
        )
        _install_sqlite_locking(engine)
        return engine
    return create_async_engine(
        async_url,
        echo=echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_pre_ping=True,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False)


engine = create_engine_for(settings.database.url, echo=settings.database.echo)

# 创建异步会话工厂
AsyncSessionLocal = create_session_factory(engine)


async def create_tables(bind: Optional[AsyncEngine] = None):
    """
    创建所有表

    根据models中定义的所有模型创建对应的数据库表
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(bind: Optional[AsyncEngine] = None):
    """
    删除所有表

    警告：仅用于测试环境，会删除所有数据！
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
