"""提醒记录的持久化

整个提醒集合作为一个逻辑文档存储，每次写入都是整体替换。
所有的增删都必须经过 transaction()：它在同一把锁内完成 读取 -> 修改 -> 写回，
否则并发的两次创建会因为“后写者覆盖”而丢掉其中一条记录。
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from lembrete.datamodel import Reminder
from lembrete.logger import logger
from lembrete.storage.document import (
    DocumentCorruptError,
    quarantine_document,
    read_json_document,
    write_json_document,
)
from lembrete.utils import parse_iso_utc, to_iso_utc

__all__ = [
    "ReminderStore", "JsonReminderStore", "SqliteReminderStore",
    "reminder_to_dict", "reminder_from_dict",
]

DOCUMENT_VERSION = 1


def reminder_to_dict(reminder: Reminder) -> dict[str, Any]:
    return {
        "reminder_id": reminder.reminder_id,
        "owner_id": reminder.owner_id,
        "recipient_id": reminder.recipient_id,
        "content": reminder.content,
        "scheduled_at": to_iso_utc(reminder.scheduled_at),
        "timezone": reminder.timezone,
        "owner_alias": reminder.owner_alias,
        "recipient_alias": reminder.recipient_alias,
        "created_at": to_iso_utc(reminder.created_at),
    }


def reminder_from_dict(data: dict[str, Any]) -> Reminder:
    """反序列化单条记录，字段缺失或格式错误时抛出 ValueError"""
    if not isinstance(data, dict):
        raise ValueError(f"记录不是对象: {data!r}")
    try:
        owner_id = str(data["owner_id"])
        reminder = Reminder(
            reminder_id=str(data["reminder_id"]),
            owner_id=owner_id,
            recipient_id=str(data.get("recipient_id") or owner_id),
            content=str(data["content"]),
            scheduled_at=parse_iso_utc(data["scheduled_at"]),
            timezone=str(data["timezone"]),
            owner_alias=data.get("owner_alias"),
            recipient_alias=data.get("recipient_alias"),
        )
        # 旧记录没有 created_at 时取 scheduled_at
        created_at = data.get("created_at")
        reminder.created_at = parse_iso_utc(created_at) if created_at else reminder.scheduled_at
    except (KeyError, TypeError) as e:
        raise ValueError(f"记录字段缺失或类型错误: {e}") from e
    return reminder


def _parse_records(raw_records: list[Any], source: str) -> list[Reminder]:
    reminders: list[Reminder] = []
    seen: set[str] = set()
    for raw in raw_records:
        try:
            reminder = reminder_from_dict(raw)
        except ValueError as e:
            logger.warning(f"跳过无法解析的提醒记录 ({source}): {e}")
            continue
        if reminder.reminder_id in seen:
            logger.warning(f"跳过重复的提醒记录 ({source}): reminder_id={reminder.reminder_id}")
            continue
        seen.add(reminder.reminder_id)
        reminders.append(reminder)
    return reminders


class ReminderStore(ABC):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @abstractmethod
    async def load(self) -> list[Reminder]:
        """返回当前集合；数据缺失或损坏时返回空列表，不向调用方抛异常"""

    @abstractmethod
    async def save(self, reminders: list[Reminder]) -> None:
        """整体替换集合；写入失败时抛出异常"""

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[list[Reminder]]:
        """在互斥区内 读取 -> 修改 -> 写回，集合未变化时不写盘"""
        async with self._lock:
            reminders = await self.load()
            before = list(reminders)
            yield reminders
            if reminders != before:
                await self.save(reminders)

    async def snapshot(self) -> list[Reminder]:
        async with self._lock:
            return await self.load()


class JsonReminderStore(ReminderStore):
    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)

    def _read(self) -> list[Reminder]:
        try:
            data = read_json_document(self.path)
        except DocumentCorruptError as e:
            moved_to = quarantine_document(self.path)
            logger.error(f"提醒文档已损坏，按空集合处理(数据丢失): {e}, 原文件已移至 {moved_to}")
            return []
        except OSError as e:
            logger.error(f"读取提醒文档失败，按空集合处理: {self.path}: {e}")
            return []

        if data is None:
            logger.info(f"提醒文档不存在，将在首次写入时创建: {self.path}")
            return []

        if isinstance(data, list):  # 旧格式: 顶层即为记录数组
            raw_records = data
        elif isinstance(data, dict) and isinstance(data.get("reminders"), list):
            raw_records = data["reminders"]
        else:
            moved_to = quarantine_document(self.path)
            logger.error(f"提醒文档结构非法，按空集合处理(数据丢失), 原文件已移至 {moved_to}")
            return []

        return _parse_records(raw_records, str(self.path))

    def _write(self, reminders: list[Reminder]) -> None:
        write_json_document(
            self.path,
            {
                "version": DOCUMENT_VERSION,
                "reminders": [reminder_to_dict(r) for r in reminders],
            },
        )

    async def load(self) -> list[Reminder]:
        reminders = await asyncio.to_thread(self._read)
        logger.trace(f"读取提醒文档: {self.path}, count={len(reminders)}")
        return reminders

    async def save(self, reminders: list[Reminder]) -> None:
        await asyncio.to_thread(self._write, list(reminders))
        logger.trace(f"写入提醒文档: {self.path}, count={len(reminders)}")


class SqliteReminderStore(ReminderStore):
    """SQLite 后端，整体替换在单个事务内完成"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        super().__init__()
        self.conn = conn

    async def load(self) -> list[Reminder]:
        try:
            async with self.conn.execute("SELECT payload FROM reminders ORDER BY position ASC") as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"读取提醒表失败，按空集合处理: {e}")
            return []

        raw_records: list[Any] = []
        for row in rows:
            try:
                raw_records.append(json.loads(row[0]))
            except (json.JSONDecodeError, TypeError) as e:
                logger.warning(f"跳过无法解析的提醒行: {e}")
        return _parse_records(raw_records, "sqlite")

    async def save(self, reminders: list[Reminder]) -> None:
        rows = [
            (
                r.reminder_id,
                position,
                r.owner_id,
                to_iso_utc(r.scheduled_at),
                json.dumps(reminder_to_dict(r), ensure_ascii=False),
            )
            for position, r in enumerate(reminders)
        ]
        try:
            await self.conn.execute("DELETE FROM reminders")
            await self.conn.executemany(
                "INSERT INTO reminders (reminder_id, position, owner_id, scheduled_at_utc, payload) VALUES (?, ?, ?, ?, ?)",
                rows,
            )
            await self.conn.commit()
        except BaseException:
            await self.conn.rollback()
            raise
        logger.trace(f"写入提醒表: count={len(rows)}")
