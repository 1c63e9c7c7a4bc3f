"""联系人簿: 别名 -> 聊天 ID，用于把消息转发给第三方"""

from __future__ import annotations

import asyncio
from pathlib import Path

from lembrete.logger import logger
from lembrete.storage.document import DocumentCorruptError, read_json_document, write_json_document

__all__ = ["ContactBook", "sanitize_alias"]


def sanitize_alias(alias: str) -> str:
    return alias.strip().lower()


class ContactBook:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, str]:
        try:
            data = read_json_document(self.path, default={})
        except (DocumentCorruptError, OSError) as e:
            logger.warning(f"联系人文件无法读取，按空联系人簿处理: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"联系人文件结构非法，按空联系人簿处理: {self.path}")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    async def list(self) -> dict[str, str]:
        async with self._lock:
            return await asyncio.to_thread(self._read)

    async def get(self, alias: str) -> str | None:
        contacts = await self.list()
        return contacts.get(sanitize_alias(alias))

    async def set(self, alias: str, recipient_id: str) -> None:
        key = sanitize_alias(alias)
        if not key:
            raise ValueError("联系人别名不能为空")
        async with self._lock:
            contacts = await asyncio.to_thread(self._read)
            if contacts.get(key) == str(recipient_id):
                return
            contacts[key] = str(recipient_id)
            await asyncio.to_thread(write_json_document, self.path, contacts)
        logger.info(f"保存联系人: {key} -> {recipient_id}")

    async def remove(self, alias: str) -> bool:
        key = sanitize_alias(alias)
        async with self._lock:
            contacts = await asyncio.to_thread(self._read)
            if key not in contacts:
                return False
            del contacts[key]
            await asyncio.to_thread(write_json_document, self.path, contacts)
        logger.info(f"删除联系人: {key}")
        return True
