"""提醒调度器

对外提供 创建 / 取消单条 / 取消某人全部 / 列出某人有效提醒 四个操作，
并负责把存储(唯一的持久真相)与计时器表(可随时重建的缓存)串起来。

# 一条提醒的生命周期
1. create: 先写入存储，再装填计时器 -> SCHEDULED
2. 计时器到期: 在锁内重新读取存储，记录已不存在说明在装填后被取消，直接忽略
3. 投递(不持有锁) -> FIRING；成功且接收人不是发起人时再通知发起人
4. 无论投递成功与否，都从存储与计时器表中清除 -> DELIVERED / FAILED
取消时从存储删除并解除计时器 -> CANCELLED；重启时已过期的由 Restorer 清除 -> EXPIRED
"""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime
from typing import Callable

from pyee.asyncio import AsyncIOEventEmitter
from ulid import ULID

from lembrete.channels.base import Deliverer
from lembrete.datamodel import Reminder, ReminderState, RestoreResult, ScheduleRequest
from lembrete.events import E, bus as default_bus
from lembrete.logger import logger
from lembrete.storage.reminder import ReminderStore
from lembrete.utils import InvalidScheduleError, now_utc, resolve_scheduled_at
from lembrete.world.restorer import Restorer
from lembrete.world.timers import TimerTable

__all__ = ["Scheduler"]


class Scheduler:
    def __init__(
        self,
        store: ReminderStore,
        deliverer: Deliverer,
        timers: TimerTable | None = None,
        clock: Callable[[], datetime] = now_utc,
        bus: AsyncIOEventEmitter = default_bus,
        max_attempts: int = 1,
        retry_base_seconds: float = 2.0,
    ) -> None:
        self._store = store
        self._deliverer = deliverer
        self._clock = clock
        self._timers = timers if timers is not None else TimerTable(clock=clock)
        self._bus = bus
        self._max_attempts = max(1, max_attempts)
        self._retry_base_seconds = max(0.0, retry_base_seconds)
        self._states: dict[str, ReminderState] = {}

    @property
    def timers(self) -> TimerTable:
        return self._timers

    def get_state(self, reminder_id: str) -> ReminderState | None:
        """仅返回存活状态(SCHEDULED / FIRING)，终态不在内存中保留"""
        return self._states.get(reminder_id)

    def _set_state(self, reminder: Reminder, state: ReminderState) -> None:
        if state.is_live:
            self._states[reminder.reminder_id] = state
        else:
            self._states.pop(reminder.reminder_id, None)
        self._bus.emit(E.REMINDER_STATE_CHANGED, reminder=reminder, state=state)

    async def create(self, req: ScheduleRequest) -> Reminder:
        """创建提醒；请求非法时抛出 InvalidScheduleError，写入失败时异常直接上抛"""
        if not req.owner_id:
            raise InvalidScheduleError("缺少 owner_id")
        if not isinstance(req.content, str):
            raise InvalidScheduleError("content 必须是字符串")

        scheduled_at = resolve_scheduled_at(req.date, req.time, req.timezone)
        reminder = Reminder(
            reminder_id=str(ULID()),
            owner_id=req.owner_id,
            recipient_id=req.recipient_id or req.owner_id,
            content=req.content,
            scheduled_at=scheduled_at,
            timezone=req.timezone,
            owner_alias=req.owner_alias,
            recipient_alias=req.recipient_alias,
            created_at=self._clock(),
        )

        async with self._store.transaction() as reminders:
            existing_ids = {r.reminder_id for r in reminders}
            while reminder.reminder_id in existing_ids:
                reminder.reminder_id = str(ULID())
            reminders.append(reminder)

        self._timers.arm(reminder.reminder_id, reminder.scheduled_at, self._fire)
        self._set_state(reminder, ReminderState.SCHEDULED)

        if reminder.scheduled_at <= self._clock():
            logger.info(f"提醒时间已过，将立即投递一次: reminder_id={reminder.reminder_id}")
        logger.info(
            f"创建提醒: reminder_id={reminder.reminder_id}, owner={reminder.owner_id}, "
            f"recipient={reminder.recipient_id}, scheduled_at={reminder.scheduled_at.isoformat()}"
        )
        return reminder

    async def _find(self, reminder_id: str) -> Reminder | None:
        async with self._store.transaction() as reminders:
            return next((r for r in reminders if r.reminder_id == reminder_id), None)

    async def _fire(self, reminder_id: str) -> None:
        reminder = await self._find(reminder_id)
        if reminder is None:
            logger.info(f"提醒在触发前已被取消，跳过: reminder_id={reminder_id}")
            self._states.pop(reminder_id, None)
            return

        self._set_state(reminder, ReminderState.FIRING)
        outcome = await self._deliver_with_retry(reminder)

        if outcome == ReminderState.DELIVERED and reminder.is_forwarded:
            try:
                await self._deliverer.confirm_delivery(reminder.owner_id, reminder)
            except Exception:
                logger.exception(f"通知发起人送达结果失败: reminder_id={reminder_id}, owner={reminder.owner_id}")

        try:
            async with self._store.transaction() as reminders:
                reminders[:] = [r for r in reminders if r.reminder_id != reminder_id]
        except (OSError, sqlite3.Error) as e:
            # 记录留在存储里，但时间已过，下次启动时会被 Restorer 清除
            logger.error(f"投递后清除提醒失败: reminder_id={reminder_id}: {e}")

        # 重试等待期间被取消时，cancel_one 已经广播过 CANCELLED
        if outcome != ReminderState.CANCELLED:
            self._set_state(reminder, outcome)

    async def _deliver_with_retry(self, reminder: Reminder) -> ReminderState:
        for attempt in range(1, self._max_attempts + 1):
            try:
                delivered = await self._deliverer.deliver(reminder.recipient_id, reminder.content)
            except Exception:
                logger.exception(
                    f"投递提醒时发生异常: reminder_id={reminder.reminder_id}, attempt={attempt}/{self._max_attempts}"
                )
                delivered = False

            if delivered:
                logger.info(f"提醒已投递: reminder_id={reminder.reminder_id}, recipient={reminder.recipient_id}")
                return ReminderState.DELIVERED

            if attempt >= self._max_attempts:
                logger.error(
                    f"提醒投递失败，不再重试: reminder_id={reminder.reminder_id}, recipient={reminder.recipient_id}"
                )
                return ReminderState.FAILED

            delay_seconds = self._retry_base_seconds * 2 ** (attempt - 1)
            logger.warning(
                f"提醒投递失败，准备重试: reminder_id={reminder.reminder_id}, "
                f"attempt={attempt}/{self._max_attempts}, sleep={delay_seconds}s"
            )
            await asyncio.sleep(delay_seconds)
            if await self._find(reminder.reminder_id) is None:
                logger.info(f"提醒在重试等待期间被取消: reminder_id={reminder.reminder_id}")
                return ReminderState.CANCELLED

        return ReminderState.FAILED

    async def cancel_one(self, owner_id: str, reminder_id: str) -> bool:
        """仅当记录属于 owner_id 时删除；重复调用安全"""
        async with self._store.transaction() as reminders:
            target = next(
                (r for r in reminders if r.reminder_id == reminder_id and r.owner_id == owner_id),
                None,
            )
            if target is not None:
                reminders.remove(target)

        if target is None:
            logger.debug(f"取消提醒未命中: owner={owner_id}, reminder_id={reminder_id}")
            return False

        self._timers.disarm(reminder_id)
        self._set_state(target, ReminderState.CANCELLED)
        logger.info(f"取消提醒: owner={owner_id}, reminder_id={reminder_id}")
        return True

    async def cancel_all(self, owner_id: str) -> list[Reminder]:
        async with self._store.transaction() as reminders:
            removed = [r for r in reminders if r.owner_id == owner_id]
            reminders[:] = [r for r in reminders if r.owner_id != owner_id]

        for r in removed:
            self._timers.disarm(r.reminder_id)
            self._set_state(r, ReminderState.CANCELLED)
        if removed:
            logger.info(f"取消用户全部提醒: owner={owner_id}, count={len(removed)}")
        return removed

    async def list_active(self, owner_id: str) -> list[Reminder]:
        """owner 名下尚未到期的提醒，按时间升序；已到期但计时器还没跑的也会被过滤掉"""
        now = self._clock()
        reminders = await self._store.snapshot()
        active = [r for r in reminders if r.owner_id == owner_id and r.scheduled_at > now]
        return sorted(active, key=lambda r: r.scheduled_at)

    async def list_pending(self) -> list[Reminder]:
        reminders = await self._store.snapshot()
        return sorted(reminders, key=lambda r: r.scheduled_at)

    async def run_restorer(self) -> RestoreResult:
        """启动钩子: 必须在存储可用之后、接收用户指令之前调用一次"""
        restorer = Restorer(self._store, self._timers, self._fire, clock=self._clock)
        result = await restorer.run()
        for r in result.expired:
            self._set_state(r, ReminderState.EXPIRED)
        for r in result.rearmed:
            self._set_state(r, ReminderState.SCHEDULED)
        return result

    async def shutdown(self) -> None:
        """只关闭内存中的计时器，存储保持不变，下次启动时恢复"""
        await self._timers.close()
        logger.info("调度器已关闭")
