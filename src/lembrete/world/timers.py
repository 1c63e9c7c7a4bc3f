"""计时器表: reminder_id -> 可取消的延时任务

纯内存结构，每次进程启动时由 Restorer 根据存储重建。
一个 reminder_id 在任意时刻至多对应一个存活的计时器。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from lembrete.logger import logger
from lembrete.utils import now_utc

__all__ = ["TimerTable", "FireFn"]

FireFn = Callable[[str], Awaitable[None]]


@dataclass
class _TimerHandle:
    reminder_id: str
    deadline: datetime
    task: asyncio.Task | None = None
    firing: bool = field(default=False)


class TimerTable:
    def __init__(self, clock: Callable[[], datetime] = now_utc) -> None:
        self._clock = clock
        self._handles: dict[str, _TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, reminder_id: str) -> bool:
        return reminder_id in self._handles

    def is_armed(self, reminder_id: str) -> bool:
        handle = self._handles.get(reminder_id)
        return handle is not None and not handle.firing

    def armed_ids(self) -> list[str]:
        return [rid for rid, handle in self._handles.items() if not handle.firing]

    def arm(self, reminder_id: str, deadline: datetime, fire_fn: FireFn) -> None:
        """在 deadline 调用 fire_fn(reminder_id)；deadline 已过时在下一轮事件循环立即触发一次"""
        existing = self._handles.get(reminder_id)
        if existing is not None:
            if existing.firing:
                logger.warning(f"计时器正在触发，忽略重复装填: reminder_id={reminder_id}")
                return
            self.disarm(reminder_id)

        delay = max(0.0, (deadline - self._clock()).total_seconds())
        handle = _TimerHandle(reminder_id=reminder_id, deadline=deadline)
        handle.task = asyncio.create_task(
            self._run(handle, delay, fire_fn),
            name=f"reminder-timer-{reminder_id}",
        )
        self._handles[reminder_id] = handle
        logger.trace(f"装填计时器: reminder_id={reminder_id}, delay={delay:.3f}s")

    def disarm(self, reminder_id: str) -> bool:
        """取消尚未触发的计时器；不存在或已在触发中时什么也不做"""
        handle = self._handles.get(reminder_id)
        if handle is None or handle.firing:
            return False
        del self._handles[reminder_id]
        if handle.task is not None:
            handle.task.cancel()
        logger.trace(f"解除计时器: reminder_id={reminder_id}")
        return True

    async def _run(self, handle: _TimerHandle, delay: float, fire_fn: FireFn) -> None:
        await asyncio.sleep(delay)
        handle.firing = True
        try:
            await fire_fn(handle.reminder_id)
        except Exception:
            logger.exception(f"提醒触发回调异常: reminder_id={handle.reminder_id}")
        finally:
            if self._handles.get(handle.reminder_id) is handle:
                del self._handles[handle.reminder_id]

    async def close(self) -> None:
        """解除所有未触发的计时器，并等待正在触发的回调结束"""
        for reminder_id in list(self._handles):
            self.disarm(reminder_id)

        in_flight = [h.task for h in self._handles.values() if h.task is not None]
        if in_flight:
            logger.info(f"等待 {len(in_flight)} 个正在投递的提醒完成...")
            await asyncio.gather(*in_flight, return_exceptions=True)
