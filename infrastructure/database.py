"""
数据库引擎与会话工厂

Web 进程共享模块级引擎；Celery 任务与测试通过 build_session_factory 自建引擎。
"""
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """同步驱动名替换为对应的异步驱动；已指定驱动时原样返回"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    try:
        drivername = _ASYNC_DRIVERS[url.drivername]
    except KeyError:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}，请在 DATABASE__URL 中指定异步驱动") from None
    return url.set(drivername=drivername).render_as_string(hide_password=False)


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    async_url = _build_async_url(database_url)
    connect_args = {}
    if async_url.startswith("sqlite"):
        # 并发入账/抢占投递时等待写锁而不是立即报错
        connect_args["timeout"] = settings.database.sqlite_busy_timeout
    return create_async_engine(async_url, echo=echo, connect_args=connect_args)


def build_session_factory(database_url: str) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """返回独立的 (engine, session_factory)；调用方负责 ``await engine.dispose()``"""
    own_engine = build_engine(database_url)
    return own_engine, async_sessionmaker(bind=own_engine, expire_on_commit=False)


engine = build_engine(settings.database.url, echo=settings.DEBUG and settings.ENVIRONMENT != "test")

AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def create_tables(target: AsyncEngine | None = None) -> None:
    """按 ORM 模型建表（交易、账户、投递记录、已处理事件）"""
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(target: AsyncEngine | None = None) -> None:
    """删除全部表，仅供测试使用"""
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
