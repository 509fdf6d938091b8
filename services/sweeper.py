# services/sweeper.py
# 每天 00:00 (UTC) 清掉超過 7 天沒人接的委託需求
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import ASSIGNMENT_EXPIRATION_DAYS
from db import transaction
from models import AssignmentRequest
from utils import utcnow

logger = logging.getLogger(__name__)


async def expire_stale_requests(session: AsyncSession, now: datetime | None = None) -> int:
    """刪除建立超過 7 天、仍是 open 的需求，回傳刪除筆數"""
    now = now or utcnow()
    cutoff = now - timedelta(days=ASSIGNMENT_EXPIRATION_DAYS)

    async with transaction(session):
        result = await session.execute(
            delete(AssignmentRequest)
            .where(AssignmentRequest.status == "open", AssignmentRequest.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )

    deleted = result.rowcount or 0
    logger.info("Expired assignment request cleanup removed %d request(s)", deleted)
    return deleted


def seconds_until_next_run(now: datetime, hour: int = 0) -> float:
    next_run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def run_sweep_once(session_factory: async_sessionmaker) -> int | None:
    """
    排程呼叫的入口。失敗只記錄下來，等下一次排程再試，
    不能讓背景工作因為一次資料庫錯誤就整個停掉。
    """
    try:
        async with session_factory() as session:
            return await expire_stale_requests(session)
    except Exception:
        logger.exception("Expired assignment request cleanup failed, will retry at the next run")
        return None


async def run_sweeper_forever(session_factory: async_sessionmaker, clock=utcnow, sleep=asyncio.sleep):
    logger.info("Expired assignment request cleanup scheduled daily at 00:00 UTC")
    while True:
        await sleep(seconds_until_next_run(clock()))
        await run_sweep_once(session_factory)
