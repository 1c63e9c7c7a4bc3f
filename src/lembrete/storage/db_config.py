import os

import aiosqlite

from lembrete.logger import logger

__all__ = ["init_db", "close_db"]

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS reminders (
    reminder_id TEXT PRIMARY KEY,
    position INTEGER NOT NULL,
    owner_id TEXT NOT NULL,
    scheduled_at_utc TEXT NOT NULL,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reminders_owner_id ON reminders (owner_id);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """打开数据库并按 user_version 执行建表/升级"""
    db_dir = os.path.dirname(db_path)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir, exist_ok=True)
    conn = await aiosqlite.connect(db_path)

    async with conn.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
        user_version = row[0]

    if user_version == 0:
        await conn.executescript(_SCHEMA_V1)
        await conn.execute("PRAGMA user_version = 1")
        logger.info(f"数据库已初始化: {db_path}")

    # 数据库升级逻辑可以在这里继续添加
    await conn.commit()
    return conn


async def close_db(conn: aiosqlite.Connection | None) -> None:
    if conn is not None:
        await conn.close()
