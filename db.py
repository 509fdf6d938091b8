# db.py
import logging
from contextlib import asynccontextmanager

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import DATABASE_URL

logger = logging.getLogger(__name__)

# 所有 ORM 模型共用的 Base
Base = declarative_base()

# 宣告全域引擎與 Session 工廠，預設為 None
_engine = None
_session_factory: async_sessionmaker | None = None


def get_engine(url: str = DATABASE_URL):
    """
    Lazy Loading: 第一次被呼叫時才建立引擎 (連線池由 SQLAlchemy 管理)。
    """
    global _engine, _session_factory

    if _engine is None:
        logger.info("Initializing database engine")
        _engine = create_async_engine(url, pool_pre_ping=True)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_session_factory() -> async_sessionmaker:
    get_engine()
    return _session_factory


async def dispose_engine():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def getDB():
    """
    FastAPI 的 Dependency (依賴項) 函式。

    每次請求借出一個 AsyncSession，請求結束後自動歸還。
    交易的 commit / rollback 由 service 層的 transaction() 負責。
    """
    factory = get_session_factory()
    if factory is None:
        raise HTTPException(status_code=500, detail="Database is not available.")

    async with factory() as session:
        yield session


@asynccontextmanager
async def transaction(session: AsyncSession):
    """
    包住一組必須「全部成功或全部失敗」的寫入。
    成功就 commit，任何例外都 rollback 後再往外拋。
    """
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
