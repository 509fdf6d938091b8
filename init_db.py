# init_db.py
import asyncio
import logging

from sqlalchemy import inspect, text

import models  # noqa: F401  匯入後所有資料表才會註冊到 Base.metadata
from db import Base, get_engine
from utils import generate_unique_id

logger = logging.getLogger(__name__)

# 開發過程中才新增的欄位：舊資料庫少了就補上 (資料表, 欄位, 型別)
ADDED_COLUMNS = [
    ("users", "university_stream", "VARCHAR(255)"),
    ("users", "whatsapp_number", "TEXT"),
    ("assignment_requests", "unique_id", "VARCHAR(6)"),
]


def _auto_migrate(sync_conn):
    """
    自動修復區域 (Auto-Migration)
    用於處理專案開發過程中新增的欄位，確保舊資料庫相容
    """
    inspector = inspect(sync_conn)

    for table, column, column_type in ADDED_COLUMNS:
        existing = {c["name"] for c in inspector.get_columns(table)}
        if column not in existing:
            logger.info("--> %s 表缺少 %s 欄位，正在新增...", table, column)
            sync_conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}"))

    # [修復 assignment_requests] 舊資料補上 6 位數編號
    missing = sync_conn.execute(
        text("SELECT id FROM assignment_requests WHERE unique_id IS NULL")
    ).scalars().all()
    for request_id in missing:
        sync_conn.execute(
            text("UPDATE assignment_requests SET unique_id = :unique_id WHERE id = :id"),
            {"unique_id": generate_unique_id(), "id": request_id},
        )
    if missing:
        logger.info("--> 已替 %d 筆舊需求補上 unique_id", len(missing))


async def init_database(engine=None):
    """
    執行資料庫初始化：
    1. 建立基礎表格。
    2. 自動檢查並修復舊表格的欄位缺失 (Migration)。
    """
    engine = engine or get_engine()
    logger.info("正在檢查並更新資料庫結構...")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            await conn.run_sync(_auto_migrate)
    except Exception:
        logger.exception("資料庫初始化失敗")
        raise
    logger.info("資料庫初始化/更新完成！")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_database())
