"""启动时的对账: 让存储中的记录与内存中的计时器重新对齐

只在进程启动时、开始接收用户指令之前运行一次。
过期记录直接清除，不会补发；其余记录原样重新装填计时器。
运行后存储中的记录集合恰好等于拥有存活计时器的记录集合。
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Callable

from lembrete.datamodel import Reminder, RestoreResult
from lembrete.logger import logger
from lembrete.storage.reminder import ReminderStore
from lembrete.utils import now_utc
from lembrete.world.timers import FireFn, TimerTable

__all__ = ["Restorer"]


class Restorer:
    def __init__(
        self,
        store: ReminderStore,
        timers: TimerTable,
        fire_fn: FireFn,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._store = store
        self._timers = timers
        self._fire_fn = fire_fn
        self._clock = clock

    async def run(self) -> RestoreResult:
        now = self._clock()
        future: list[Reminder] = []
        expired: list[Reminder] = []

        try:
            async with self._store.transaction() as reminders:
                for r in reminders:
                    (future if r.scheduled_at > now else expired).append(r)
                reminders[:] = future
        except (OSError, sqlite3.Error) as e:
            # 清理失败不影响恢复，过期记录会在下次启动时再次被清理
            logger.error(f"清理过期提醒失败，仍继续装填未来的提醒: {e}")

        for r in expired:
            logger.info(
                f"丢弃已过期的提醒: reminder_id={r.reminder_id}, owner={r.owner_id}, scheduled_at={r.scheduled_at.isoformat()}"
            )

        for r in future:
            self._timers.arm(r.reminder_id, r.scheduled_at, self._fire_fn)

        logger.info(f"提醒恢复完成: 重新装填 {len(future)} 条, 清除过期 {len(expired)} 条")
        return RestoreResult(rearmed=future, expired=expired)
